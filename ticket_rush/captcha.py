"""
Ticket Rush - Risk Verification
Clears the platform's captcha gate (gaia-vgate) when a token request is flagged.

The solving algorithm itself is pluggable: anything implementing
CaptchaSolver can be handed to a GrabTicketRequest.
"""

import abc
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import Config
from .errors import CaptchaError, RiskVerificationError
from .models import TokenRiskParam, as_bool, as_dict, as_int, as_str
from .session import Session

logger = logging.getLogger("TicketRush.Captcha")

GEETEST_CLICK = 33  # Third-generation click-to-select challenge


# ==============================================================================
# 1. STRATEGY PATTERN
# ==============================================================================

@dataclass(frozen=True)
class CaptchaSolution:
    challenge: str
    validate: str
    seccode: str


class CaptchaSolver(abc.ABC):
    """Shared across jobs: implementations must tolerate concurrent calls"""

    @abc.abstractmethod
    def solve(self, gt: str, challenge: str, referer: str, kind: int) -> CaptchaSolution:
        """Return the solved payload or raise CaptchaError"""
        pass

    def name(self) -> str:
        return self.__class__.__name__


# ==============================================================================
# 2. GAIA-VGATE FLOW
# ==============================================================================

class RiskVerifier:
    """register -> solve -> validate"""

    def __init__(self, session: Session, solver: Optional[CaptchaSolver], api_base: Optional[str] = None):
        self.session = session
        self.solver = solver
        base = (api_base or Config.API_BASE_URL).rstrip("/")
        self.register_url = f"{base}/x/gaia-vgate/v1/register"
        self.validate_url = f"{base}/x/gaia-vgate/v1/validate"

    def _post(self, url: str, body: Dict[str, Any], what: str) -> Dict[str, Any]:
        try:
            response = self.session.post(url, json=body)
        except Exception as e:
            raise RiskVerificationError(f"{what} request failed: {e}") from e
        if getattr(response, "status_code", 0) != 200:
            raise RiskVerificationError(f"{what} returned HTTP {getattr(response, 'status_code', 0)}")
        try:
            payload = response.json()
        except ValueError as e:
            raise RiskVerificationError(f"{what} returned bad JSON: {e}")
        payload = as_dict(payload)
        code = as_int(payload.get("code"), -1)
        if code != 0:
            raise RiskVerificationError(
                f"{what} rejected: {as_str(payload.get('message')) or 'unknown error'} (code: {code})"
            )
        return payload

    def verify(self, risk: TokenRiskParam) -> None:
        """
        Clear one risk challenge. Raises RiskVerificationError on any failure.

        Args:
            risk: The flagged prepare answer carrying riskParams
        """
        if not risk.risk_param:
            raise RiskVerificationError("Risk parameters are empty")
        if self.solver is None:
            raise RiskVerificationError("No captcha solver configured")

        logger.debug(f"[RISK] riskParams: {risk.risk_param}")
        registered = self._post(self.register_url, risk.risk_param, "register")
        data = as_dict(registered.get("data"))
        kind = as_str(data.get("type"))
        if kind != "geetest":
            raise RiskVerificationError(f"Unsupported captcha type: {kind or '<empty>'}")

        geetest = as_dict(data.get("geetest"))
        gt = as_str(geetest.get("gt"))
        challenge = as_str(geetest.get("challenge"))
        token = as_str(geetest.get("token")) or as_str(data.get("token"))
        if not (gt and challenge and token):
            raise RiskVerificationError("Captcha parameters missing from register answer")

        logger.info(f"[RISK] Solving geetest challenge with {self.solver.name()}")
        try:
            solution = self.solver.solve(gt, challenge, self.validate_url, GEETEST_CLICK)
        except CaptchaError as e:
            raise RiskVerificationError(f"Captcha solver failed: {e}") from e

        validated = self._post(
            self.validate_url,
            {
                "buvid": risk.buvid,
                "csrf": self.session.get_cookie("bili_jct") or "",
                "geetest_challenge": solution.challenge,
                "geetest_seccode": solution.seccode,
                "geetest_validate": solution.validate,
                "token": token,
            },
            "validate",
        )
        if not as_bool(as_dict(validated.get("data")).get("is_valid")):
            raise RiskVerificationError("Captcha answer was not accepted")
        logger.info("[RISK] ✅ Verification passed")
