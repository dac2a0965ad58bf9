"""
Ticket Rush - Fault Classifier
Maps remote error codes to a retry / backoff / refresh / abort verdict.

The table is pure data: classify() has no hidden state and the same code
always yields the same verdict.
"""

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger("TicketRush.Faults")


class Outcome(enum.Enum):
    RETRY_IMMEDIATE = "retry_immediate"
    RETRY_AFTER_DELAY = "retry_after_delay"
    REFRESH_TOKEN = "refresh_token"
    TERMINAL_SUCCESS = "terminal_success"
    TERMINAL_FAILURE = "terminal_failure"
    SWITCH_TARGET = "switch_target"

    @property
    def is_retry(self) -> bool:
        return self in (Outcome.RETRY_IMMEDIATE, Outcome.RETRY_AFTER_DELAY)

    @property
    def is_terminal(self) -> bool:
        return self in (Outcome.TERMINAL_SUCCESS, Outcome.TERMINAL_FAILURE)


class FaultCategory(enum.Enum):
    TRANSIENT = "transient-retriable"
    REQUIRES_VERIFICATION = "requires-verification"
    TOKEN_STALE = "token-stale"
    TARGET_EXHAUSTED = "target-exhausted"
    TERMINAL_BENIGN = "terminal-benign"
    TERMINAL_CONFIGURATION = "terminal-configuration"
    TERMINAL_INTERNAL = "terminal-internal"
    SOFT_SUCCESS = "soft-success"


@dataclass(frozen=True)
class Verdict:
    code: int
    outcome: Outcome
    category: FaultCategory
    message: str
    delay: float = 0.0
    flagged: bool = False  # Worth a maintainer's attention


RISK_CODES = frozenset({401, -401})


def _verdict(outcome, category, message, delay=0.0, flagged=False):
    return outcome, category, message, delay, flagged


# ==================== Fault Table ====================

_RATE_LIMITED = _verdict(
    Outcome.RETRY_IMMEDIATE, FaultCategory.TRANSIENT, "Rate limited by the platform (expected under load)"
)
_TOKEN_EXPIRED = _verdict(
    Outcome.REFRESH_TOKEN, FaultCategory.TOKEN_STALE, "Token expired, acquiring a new one"
)
_WITHDRAWN = _verdict(
    Outcome.TERMINAL_FAILURE, FaultCategory.TERMINAL_BENIGN, "Project / screen / ticket type is no longer on sale"
)
_UNPAID_ORDER = _verdict(
    Outcome.TERMINAL_FAILURE,
    FaultCategory.TERMINAL_CONFIGURATION,
    "Buyer has an unpaid order; pay or cancel it before ordering again",
)
_BAD_SELECTION = _verdict(
    Outcome.TERMINAL_FAILURE,
    FaultCategory.TERMINAL_CONFIGURATION,
    "Project / screen / date selection is invalid, resubmit the task",
)

FAULT_TABLE = {
    100001: _RATE_LIMITED,
    429: _RATE_LIMITED,
    900001: _RATE_LIMITED,
    100009: _verdict(
        Outcome.RETRY_AFTER_DELAY, FaultCategory.TRANSIENT, "Ticket type momentarily out of stock", delay=0.6
    ),
    211: _verdict(Outcome.RETRY_IMMEDIATE, FaultCategory.TRANSIENT, "Narrowly lost the race, trying again"),
    3: _verdict(
        Outcome.RETRY_AFTER_DELAY, FaultCategory.TRANSIENT, "Throttled by anti-abuse, pausing 4.8s", delay=4.8
    ),
    100041: _TOKEN_EXPIRED,
    100050: _TOKEN_EXPIRED,
    900002: _TOKEN_EXPIRED,
    100017: _WITHDRAWN,
    100016: _WITHDRAWN,
    100039: _verdict(Outcome.TERMINAL_FAILURE, FaultCategory.TERMINAL_BENIGN, "Sale has ended"),
    1: _verdict(
        Outcome.TERMINAL_FAILURE,
        FaultCategory.TERMINAL_CONFIGURATION,
        "Single-buyer project or malformed order, resubmit the task",
    ),
    83000004: _verdict(
        Outcome.TERMINAL_FAILURE, FaultCategory.TERMINAL_CONFIGURATION, "No buyer profile configured"
    ),
    100079: _UNPAID_ORDER,
    100003: _UNPAID_ORDER,
    100048: _UNPAID_ORDER,
    209001: _verdict(
        Outcome.TERMINAL_FAILURE,
        FaultCategory.TERMINAL_CONFIGURATION,
        "Project allows only one buyer per order",
    ),
    919: _verdict(
        Outcome.TERMINAL_FAILURE,
        FaultCategory.TERMINAL_INTERNAL,
        "Internal error: unexpected real-name binding value",
        flagged=True,
    ),
    999: _verdict(
        Outcome.TERMINAL_FAILURE, FaultCategory.TERMINAL_INTERNAL, "Internal error: bad order parameters", flagged=True
    ),
    737: _verdict(
        Outcome.RETRY_IMMEDIATE,
        FaultCategory.TRANSIENT,
        "Platform returned a null payload, retrying",
        flagged=True,
    ),
    100080: _BAD_SELECTION,
    100082: _BAD_SELECTION,
}


def classify(code: int) -> Verdict:
    """
    Classify a remote error code.

    Unrecognized codes fail safe: terminal failure, flagged for triage.
    """
    entry = FAULT_TABLE.get(code)
    if entry is None:
        return Verdict(
            code=code,
            outcome=Outcome.TERMINAL_FAILURE,
            category=FaultCategory.TERMINAL_INTERNAL,
            message=f"Unrecognized error code {code}",
            flagged=True,
        )
    outcome, category, message, delay, flagged = entry
    return Verdict(code=code, outcome=outcome, category=category, message=message, delay=delay, flagged=flagged)


def transport_verdict(delay: float, message: str = "Request failed before the platform answered") -> Verdict:
    """Verdict for failures that carry no remote code (timeouts, resets, bad bodies)"""
    return Verdict(code=-1, outcome=Outcome.RETRY_AFTER_DELAY, category=FaultCategory.TRANSIENT, message=message, delay=delay)


def requires_verification(code: int) -> bool:
    return code in RISK_CODES


def log_verdict(verdict: Verdict, step: str) -> None:
    if verdict.flagged:
        logger.error(f"[{step}] code={verdict.code} {verdict.message} (flagged for triage)")
    elif verdict.outcome.is_terminal:
        logger.warning(f"[{step}] code={verdict.code} {verdict.message}")
    else:
        logger.info(f"[{step}] code={verdict.code} {verdict.message}")
