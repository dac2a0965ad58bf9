"""
Ticket Rush - Acquisition State Machine
Drives one grab attempt: token -> confirm -> create order -> verify not fake.

Each step returns a Transition; the driver is a plain loop over them.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .api import TRANSPORT_FAILURE, PlatformApi
from .captcha import RiskVerifier
from .config import Config
from .errors import ApiError, RiskVerificationError
from .faults import Outcome, classify, log_verdict, requires_verification, transport_verdict
from .models import (
    ConfirmResult,
    GrabTicketRequest,
    GrabTicketResult,
    OrderCreated,
    OrderInfo,
    OrderRejected,
    TokenGrant,
)
from .session import TokenGenerator

logger = logging.getLogger("TicketRush.Engine")


class State(enum.Enum):
    ACQUIRE_TOKEN = "acquire_token"
    CONFIRM_ORDER = "confirm_order"
    CREATE_ORDER = "create_order"
    VERIFY_NOT_FAKE = "verify_not_fake"
    DONE = "done"


class TransitionKind(enum.Enum):
    CONTINUE = "continue"
    RETRY = "retry"
    SWITCH_TARGET = "switch_target"
    DONE = "done"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    state: State
    delay: float = 0.0
    result: Optional[GrabTicketResult] = None

    @classmethod
    def next(cls, state: State) -> "Transition":
        return cls(TransitionKind.CONTINUE, state)

    @classmethod
    def retry(cls, state: State, delay: float = 0.0) -> "Transition":
        return cls(TransitionKind.RETRY, state, delay=delay)

    @classmethod
    def switch_target(cls) -> "Transition":
        return cls(TransitionKind.SWITCH_TARGET, State.DONE)

    @classmethod
    def done(cls, result: GrabTicketResult) -> "Transition":
        return cls(TransitionKind.DONE, State.DONE, result=result)

    @property
    def is_final(self) -> bool:
        return self.kind in (TransitionKind.DONE, TransitionKind.SWITCH_TARGET)


@dataclass
class AttemptContext:
    """Mutable per-attempt data, owned by a single state machine"""
    token: str = ""
    ptoken: str = ""
    confirm: Optional[ConfirmResult] = None
    order: Optional[OrderInfo] = None
    token_retries: int = 0
    token_refreshes: int = 0
    confirm_retries: int = 0
    order_retries: int = 0
    fake_check_retries: int = 0
    steps: int = field(default=0, repr=False)


class AcquisitionStateMachine:
    """
    One sequential grab attempt for a single ticket type.

    Args:
        request: Immutable grab request (targets, buyers, budgets)
        api: Platform API wrapper
        generator: ctoken generator owned by this attempt (hot projects)
        risk_verifier: Clears 401 challenges; built from the request's solver when omitted
        task_id: Id stamped on the result
        switch_on_exhaustion: Report SWITCH_TARGET instead of failing when
            the confirm or order budget runs out or the token step hits a
            terminal code (leak mode)
        token_failures: Token failures already spent by earlier attempts of
            the same task; the token budget is shared across them
        confirm_retry_delay: Pause between confirm attempts
        sleep: Awaitable sleep, injectable for tests
        notifier: Optional success notifier
    """

    def __init__(
        self,
        request: GrabTicketRequest,
        api: PlatformApi,
        generator: Optional[TokenGenerator] = None,
        risk_verifier: Optional[RiskVerifier] = None,
        task_id: str = "",
        switch_on_exhaustion: bool = False,
        confirm_retry_delay: float = Config.CONFIRM_RETRY_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        notifier: Any = None,
        token_failures: int = 0,
    ):
        self.request = request
        self.api = api
        self.generator = generator
        self.risk_verifier = risk_verifier or RiskVerifier(api.session, request.captcha_solver)
        self.task_id = task_id or request.task_id
        self.switch_on_exhaustion = switch_on_exhaustion
        self.confirm_retry_delay = confirm_retry_delay
        self.sleep = sleep
        self.notifier = notifier if notifier is not None else request.notifier
        self.budget = request.budget
        self.ctx = AttemptContext(token_retries=token_failures)

    # ==================== Driver ====================

    async def run(self) -> Transition:
        """Loop until DONE or SWITCH_TARGET and return that transition"""
        state = State.ACQUIRE_TOKEN
        logger.info(
            f"[START] Task {self.task_id}: project={self.request.project_id} "
            f"screen={self.request.screen_id} ticket={self.request.ticket_id} x{self.request.count}"
        )
        while True:
            transition = await self.step(state)
            self.ctx.steps += 1
            if transition.is_final:
                if transition.result is not None and transition.result.success:
                    await self._notify(transition.result)
                return transition
            if transition.delay > 0:
                await self.sleep(transition.delay)
            state = transition.state

    async def step(self, state: State) -> Transition:
        if state is State.ACQUIRE_TOKEN:
            return await self._acquire_token()
        if state is State.CONFIRM_ORDER:
            return await self._confirm_order()
        if state is State.CREATE_ORDER:
            return await self._create_order()
        if state is State.VERIFY_NOT_FAKE:
            return await self._verify_not_fake()
        raise ValueError(f"No transition out of {state}")

    # ==================== Helpers ====================

    def _failure(self, message: str, code: Optional[int] = None) -> Transition:
        logger.error(f"[FAIL] Task {self.task_id}: {message}")
        return Transition.done(GrabTicketResult.failure(self.task_id, self.request.uid, message, code))

    def _exhausted(self, message: str, code: Optional[int] = None) -> Transition:
        if self.switch_on_exhaustion:
            logger.warning(f"[SWITCH] {message}; moving to the next ticket type")
            return Transition.switch_target()
        return self._failure(message, code)

    def _success(self, message: str, pay_result=None) -> Transition:
        order = self.ctx.order
        result = GrabTicketResult(
            task_id=self.task_id,
            uid=self.request.uid,
            success=True,
            message=message,
            order_id=order.order_id if order else None,
            pay_token=order.pay_token if order else None,
            confirm_result=self.ctx.confirm,
            pay_result=pay_result,
        )
        return Transition.done(result)

    async def _notify(self, result: GrabTicketResult) -> None:
        if self.notifier is None:
            return
        await asyncio.to_thread(self.notifier.notify_order_success, result)

    # ==================== Steps ====================

    async def _acquire_token(self) -> Transition:
        req = self.request
        outcome = await asyncio.to_thread(
            self.api.prepare_token,
            req.project_id,
            req.screen_id,
            req.ticket_id,
            req.count,
            req.is_hot,
            self.generator,
        )

        if isinstance(outcome, TokenGrant):
            logger.info(f"[TOKEN] ✅ Token acquired (ptoken: {outcome.ptoken or '-'})")
            self.ctx.token = outcome.token
            self.ctx.ptoken = outcome.ptoken
            self.ctx.confirm = None
            self.ctx.order = None
            self.ctx.confirm_retries = 0
            self.ctx.order_retries = 0
            return Transition.next(State.CONFIRM_ORDER)

        if requires_verification(outcome.code):
            logger.warning("[RISK] Token request flagged, running risk verification")
            try:
                await asyncio.to_thread(self.risk_verifier.verify, outcome)
            except RiskVerificationError as e:
                self.ctx.token_retries += 1
                logger.error(
                    f"[RISK] Verification failed ({self.ctx.token_retries}/{self.budget.max_token_retry}): {e}"
                )
                if self.ctx.token_retries >= self.budget.max_token_retry:
                    return self._failure(f"Risk verification failed, retry budget exhausted: {e}", outcome.code)
            return Transition.retry(State.ACQUIRE_TOKEN, Config.TOKEN_ERROR_BACKOFF)

        if outcome.code == TRANSPORT_FAILURE:
            verdict = transport_verdict(Config.TOKEN_ERROR_BACKOFF, outcome.message or "prepare request failed")
        else:
            verdict = classify(outcome.code)
        log_verdict(verdict, "TOKEN")

        self.ctx.token_retries += 1
        if verdict.outcome.is_terminal:
            message = f"Failed to get token (code {outcome.code}: {outcome.message or verdict.message}). {verdict.message}"
            if self.switch_on_exhaustion and self.ctx.token_retries < self.budget.max_token_retry:
                logger.warning(f"[SWITCH] {message}; moving to the next ticket type")
                return Transition.switch_target()
            return self._failure(message, outcome.code)

        if self.ctx.token_retries >= self.budget.max_token_retry:
            return self._failure(
                f"Failed to get token after {self.ctx.token_retries} attempts "
                f"(code {outcome.code}: {outcome.message or verdict.message})",
                outcome.code,
            )
        return Transition.retry(State.ACQUIRE_TOKEN, max(verdict.delay, Config.TOKEN_ERROR_BACKOFF))

    async def _confirm_order(self) -> Transition:
        try:
            confirm = await asyncio.to_thread(self.api.confirm_order, self.request.project_id, self.ctx.token)
        except ApiError as e:
            self.ctx.confirm_retries += 1
            logger.warning(
                f"[CONFIRM] Failed ({self.ctx.confirm_retries}/{self.budget.max_confirm_retry}): {e}"
            )
            if self.ctx.confirm_retries >= self.budget.max_confirm_retry:
                return self._exhausted("Order confirmation failed, retry budget exhausted", e.code)
            return Transition.retry(State.CONFIRM_ORDER, self.confirm_retry_delay)

        logger.info(
            f"[CONFIRM] ✅ {confirm.project_name} / {confirm.screen_name} / "
            f"{confirm.ticket_info.name} x{confirm.count}, pay {confirm.pay_money}"
        )
        self.ctx.confirm = confirm
        self.ctx.order_retries = 0
        return Transition.next(State.CREATE_ORDER)

    async def _create_order(self) -> Transition:
        need_retry = self.ctx.order_retries >= Config.NEED_RETRY_AFTER
        outcome = await asyncio.to_thread(
            self.api.create_order,
            self.request,
            self.ctx.token,
            self.ctx.ptoken,
            self.ctx.confirm,
            self.generator,
            need_retry,
        )

        if isinstance(outcome, OrderCreated):
            logger.info(f"[ORDER] ✅ Order {outcome.info.order_id} created, checking it is genuine")
            self.ctx.order = outcome.info
            self.ctx.fake_check_retries = 0
            return Transition.next(State.VERIFY_NOT_FAKE)

        if isinstance(outcome, OrderRejected):
            code = outcome.code
            verdict = classify(code)
            log_verdict(verdict, "ORDER")
            if verdict.outcome is Outcome.REFRESH_TOKEN:
                self.ctx.token_refreshes += 1
                if self.ctx.token_refreshes >= self.budget.max_token_retry:
                    return self._exhausted(
                        f"Order token kept expiring, refreshed {self.ctx.token_refreshes} times (last code {code})",
                        code,
                    )
                return Transition.retry(State.ACQUIRE_TOKEN, Config.TOKEN_ERROR_BACKOFF)
            if verdict.outcome.is_terminal:
                return self._failure(verdict.message, code)
        else:
            code = TRANSPORT_FAILURE
            verdict = transport_verdict(0.0, outcome.message)
            logger.warning(f"[ORDER] {outcome.message}")

        self.ctx.order_retries += 1
        if self.ctx.order_retries >= self.budget.max_order_retry:
            return self._exhausted(
                f"Order creation failed after {self.ctx.order_retries} attempts (last code {code})", code
            )
        return Transition.retry(State.CREATE_ORDER, verdict.delay + self.budget.retry_interval)

    async def _verify_not_fake(self) -> Transition:
        order = self.ctx.order
        try:
            status = await asyncio.to_thread(
                self.api.check_order_status, self.request.project_id, order.pay_token, order.order_id
            )
        except ApiError as e:
            return self._fake_check_failed(str(e))

        if status.is_fake:
            self.ctx.order = None
            self.ctx.order_retries += 1
            logger.error(f"[FAKE] Fake order detected (code {status.code}), ordering again")
            if self.ctx.order_retries >= self.budget.max_order_retry:
                return self._exhausted(
                    f"Order creation failed after {self.ctx.order_retries} attempts (fake orders)", status.code
                )
            return Transition.retry(State.CREATE_ORDER, self.budget.retry_interval)

        if status.pay_param is None:
            return self._fake_check_failed("payment details missing from status answer")

        logger.info(f"[DONE] 🎉 Order {order.order_id} confirmed genuine, pay now")
        return self._success("Ticket secured, please pay promptly", status.pay_param)

    def _fake_check_failed(self, reason: str) -> Transition:
        self.ctx.fake_check_retries += 1
        logger.error(
            f"[FAKE] Status check failed ({self.ctx.fake_check_retries}/{self.budget.max_fake_check_retry}): {reason}"
        )
        if self.ctx.fake_check_retries >= self.budget.max_fake_check_retry:
            # The order may already exist server-side; report it rather than fail
            logger.warning("[FAKE] Status check budget exhausted, presuming the order was placed")
            return self._success("Ticket secured but payment details are unavailable; pay from the order center")
        return Transition.retry(State.VERIFY_NOT_FAKE, Config.FAKE_CHECK_INTERVAL)
