"""
Ticket Rush - Data Model
Requests, results and typed views over the platform's JSON payloads.

Decoders never raise on malformed remote data: absent or wrong-typed fields
fall back to "", 0, -1, False or an empty tuple.
"""

import enum
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import Config


# ==================== Tolerant Field Parsers ====================

def as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    s = str(value).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return default


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def envelope_code(payload: Any) -> int:
    """errno when present and not -1, else code, else -1"""
    body = as_dict(payload)
    errno = as_int(body.get("errno"), -1)
    if errno != -1:
        return errno
    return as_int(body.get("code"), -1)


def envelope_message(payload: Any) -> str:
    body = as_dict(payload)
    return as_str(body.get("msg")) or as_str(body.get("message"))


# ==================== Enums ====================

class GrabMode(enum.IntEnum):
    TIMED = 0
    DIRECT = 1
    LEAK = 2


class TaskStatus(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


# ==================== Configuration Values ====================

@dataclass(frozen=True)
class RetryBudget:
    max_token_retry: int = 5
    max_confirm_retry: int = 4
    max_order_retry: int = 30
    max_fake_check_retry: int = 10
    retry_interval_ms: int = 400

    @classmethod
    def from_config(cls) -> "RetryBudget":
        return cls(
            max_token_retry=Config.MAX_TOKEN_RETRY,
            max_confirm_retry=Config.MAX_CONFIRM_RETRY,
            max_order_retry=Config.MAX_ORDER_RETRY,
            max_fake_check_retry=Config.MAX_FAKE_CHECK_RETRY,
            retry_interval_ms=Config.RETRY_INTERVAL_MS,
        )

    @property
    def retry_interval(self) -> float:
        return self.retry_interval_ms / 1000.0


# ==================== Buyers ====================

@dataclass(frozen=True)
class BuyerInfo:
    id: int
    uid: int = 0
    personal_id: str = ""
    name: str = ""
    tel: str = ""
    id_type: int = 0
    is_default: int = 0
    id_card_front: str = ""
    id_card_back: str = ""
    verify_status: int = 0
    is_buyer_info_verified: bool = False
    is_buyer_valid: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "BuyerInfo":
        d = as_dict(data)
        return cls(
            id=as_int(d.get("id")),
            uid=as_int(d.get("uid")),
            personal_id=as_str(d.get("personal_id")),
            name=as_str(d.get("name")),
            tel=as_str(d.get("tel")),
            id_type=as_int(d.get("id_type")),
            is_default=as_int(d.get("is_default")),
            id_card_front=as_str(d.get("id_card_front")),
            id_card_back=as_str(d.get("id_card_back")),
            verify_status=as_int(d.get("verify_status")),
            is_buyer_info_verified=as_bool(d.get("isBuyerInfoVerified")),
            is_buyer_valid=as_bool(d.get("isBuyerValid")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape expected inside the createV2 ``buyer_info`` string"""
        return {
            "id": self.id,
            "uid": self.uid,
            "personal_id": self.personal_id,
            "name": self.name,
            "tel": self.tel,
            "id_type": self.id_type,
            "is_default": self.is_default,
            "id_card_front": self.id_card_front,
            "id_card_back": self.id_card_back,
            "verify_status": self.verify_status,
            "isBuyerInfoVerified": self.is_buyer_info_verified,
            "isBuyerValid": self.is_buyer_valid,
        }


@dataclass(frozen=True)
class NoBindBuyerInfo:
    name: str
    tel: str
    uid: int = 0


def buyers_to_json(buyers) -> str:
    return json.dumps([b.to_dict() for b in buyers], ensure_ascii=False, separators=(",", ":"))


# ==================== Project Listing ====================

@dataclass(frozen=True)
class ScreenTicket:
    id: int
    project_id: int = 0
    screen_id: int = 0
    price: int = 0
    desc: str = ""
    screen_name: str = ""
    sale_start: str = ""
    sale_end: str = ""
    is_sale: int = 0
    num: int = 0
    clickable: bool = False
    sale_flag_number: int = 0

    @classmethod
    def from_dict(cls, data: Any, screen_id: int = 0) -> "ScreenTicket":
        d = as_dict(data)
        return cls(
            id=as_int(d.get("id")),
            project_id=as_int(d.get("project_id")),
            screen_id=as_int(d.get("screen_id"), screen_id),
            price=as_int(d.get("price")),
            desc=as_str(d.get("desc")),
            screen_name=as_str(d.get("screen_name")),
            sale_start=as_str(d.get("sale_start")),
            sale_end=as_str(d.get("sale_end")),
            is_sale=as_int(d.get("is_sale")),
            num=as_int(d.get("num")),
            clickable=as_bool(d.get("clickable")),
            sale_flag_number=as_int(d.get("sale_flag_number")),
        )


@dataclass(frozen=True)
class ScreenInfo:
    id: int
    name: str = ""
    start_time: int = 0
    sale_start: int = 0
    sale_end: int = 0
    sale_flag_number: int = 0
    clickable: bool = False
    show_date: str = ""
    ticket_list: Tuple[ScreenTicket, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "ScreenInfo":
        d = as_dict(data)
        screen_id = as_int(d.get("id"))
        return cls(
            id=screen_id,
            name=as_str(d.get("name")),
            start_time=as_int(d.get("start_time")),
            sale_start=as_int(d.get("sale_start")),
            sale_end=as_int(d.get("sale_end")),
            sale_flag_number=as_int(d.get("sale_flag_number")),
            clickable=as_bool(d.get("clickable")),
            show_date=as_str(d.get("show_date")),
            ticket_list=tuple(ScreenTicket.from_dict(t, screen_id) for t in as_list(d.get("ticket_list"))),
        )


@dataclass(frozen=True)
class ProjectInfo:
    id: int
    name: str = ""
    is_sale: int = 0
    start_time: int = 0
    end_time: int = 0
    sale_begin: int = 0
    sale_end: int = 0
    sale_flag_number: int = 0
    sale_flag: str = ""
    id_bind: int = 0
    is_hot: bool = False
    screen_list: Tuple[ScreenInfo, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "ProjectInfo":
        d = as_dict(data)
        return cls(
            id=as_int(d.get("id")),
            name=as_str(d.get("name")),
            is_sale=as_int(d.get("is_sale")),
            start_time=as_int(d.get("start_time")),
            end_time=as_int(d.get("end_time")),
            sale_begin=as_int(d.get("sale_begin")),
            sale_end=as_int(d.get("sale_end")),
            sale_flag_number=as_int(d.get("sale_flag_number")),
            sale_flag=as_str(d.get("sale_flag")),
            id_bind=as_int(d.get("id_bind")),
            is_hot=as_bool(d.get("hotProject")),
            screen_list=tuple(ScreenInfo.from_dict(s) for s in as_list(d.get("screen_list"))),
        )


# ==================== Acquisition Steps ====================

@dataclass(frozen=True)
class TokenGrant:
    token: str
    ptoken: str = ""


@dataclass(frozen=True)
class TokenRiskParam:
    """Returned by prepare instead of a token when the attempt is flagged"""
    code: int
    message: str = ""
    mid: str = ""
    decision_type: str = ""
    buvid: str = ""
    ip: str = ""
    scene: str = ""
    ua: str = ""
    v_voucher: str = ""
    risk_param: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Any) -> "TokenRiskParam":
        data = as_dict(as_dict(payload).get("data"))
        ga_data = as_dict(data.get("ga_data"))
        risk = as_dict(ga_data.get("riskParams"))
        return cls(
            code=envelope_code(payload),
            message=envelope_message(payload),
            mid=as_str(risk.get("mid")),
            decision_type=as_str(risk.get("decision_type")),
            buvid=as_str(risk.get("buvid")),
            ip=as_str(risk.get("ip")),
            scene=as_str(risk.get("scene")),
            ua=as_str(risk.get("ua")),
            v_voucher=as_str(risk.get("v_voucher")),
            risk_param=risk,
        )


TokenOutcome = Union[TokenGrant, TokenRiskParam]


@dataclass(frozen=True)
class ConfirmTicketInfo:
    name: str = ""
    count: int = 0
    price: int = 0


@dataclass(frozen=True)
class ConfirmResult:
    count: int
    pay_money: int
    project_name: str = ""
    screen_name: str = ""
    ticket_info: ConfirmTicketInfo = field(default_factory=ConfirmTicketInfo)

    @classmethod
    def from_dict(cls, data: Any) -> "ConfirmResult":
        d = as_dict(data)
        ticket = as_dict(d.get("ticket_info"))
        return cls(
            count=as_int(d.get("count")),
            pay_money=as_int(d.get("pay_money")),
            project_name=as_str(d.get("project_name")),
            screen_name=as_str(d.get("screen_name")),
            ticket_info=ConfirmTicketInfo(
                name=as_str(ticket.get("name")),
                count=as_int(ticket.get("count")),
                price=as_int(ticket.get("price")),
            ),
        )


@dataclass(frozen=True)
class OrderInfo:
    order_id: str
    pay_token: str
    order_create_time: int = 0


@dataclass(frozen=True)
class OrderCreated:
    info: OrderInfo


@dataclass(frozen=True)
class OrderRejected:
    code: int
    message: str = ""


@dataclass(frozen=True)
class OrderTransportError:
    message: str


OrderOutcome = Union[OrderCreated, OrderRejected, OrderTransportError]


@dataclass(frozen=True)
class PayParam:
    sign: str = ""
    code_url: str = ""


@dataclass(frozen=True)
class OrderStatus:
    """createstatus answer; a non-zero code means the order is fake"""
    code: int
    message: str = ""
    pay_param: Optional[PayParam] = None

    @property
    def is_fake(self) -> bool:
        return self.code != 0

    @classmethod
    def from_response(cls, payload: Any) -> "OrderStatus":
        code = envelope_code(payload)
        pay = as_dict(as_dict(as_dict(payload).get("data")).get("payParam"))
        return cls(
            code=code,
            message=envelope_message(payload),
            pay_param=PayParam(sign=as_str(pay.get("sign")), code_url=as_str(pay.get("code_url"))) if pay else None,
        )


# ==================== Requests & Results ====================

TokenGeneratorFactory = Callable[[int, int, int], Any]


@dataclass(frozen=True)
class GrabTicketRequest:
    project_id: str
    screen_id: str
    ticket_id: str
    count: int = 1
    buyers: Tuple[BuyerInfo, ...] = ()
    no_bind_buyer: Optional[NoBindBuyerInfo] = None
    mode: GrabMode = GrabMode.TIMED
    budget: RetryBudget = field(default_factory=RetryBudget)
    skip_words: Tuple[str, ...] = ()
    is_hot: bool = False
    id_bind: int = 1
    uid: int = 0
    task_id: str = ""
    project_info: Optional[ProjectInfo] = None
    # Collaborators, shared across jobs and never compared
    session: Any = field(default=None, compare=False, repr=False)
    captcha_solver: Any = field(default=None, compare=False, repr=False)
    token_generator_factory: Optional[TokenGeneratorFactory] = field(default=None, compare=False, repr=False)
    notifier: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GrabTicketResult:
    task_id: str
    uid: int
    success: bool
    message: str
    order_id: Optional[str] = None
    pay_token: Optional[str] = None
    confirm_result: Optional[ConfirmResult] = None
    pay_result: Optional[PayParam] = None
    code: Optional[int] = None

    @classmethod
    def failure(cls, task_id: str, uid: int, message: str, code: Optional[int] = None) -> "GrabTicketResult":
        return cls(task_id=task_id, uid=uid, success=False, message=message, code=code)


@dataclass(frozen=True)
class GetTicketInfoRequest:
    project_id: str
    uid: int = 0
    task_id: str = ""
    session: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GetTicketInfoResult:
    task_id: str
    uid: int
    success: bool
    message: str
    ticket_info: Optional[ProjectInfo] = None


@dataclass(frozen=True)
class GetBuyerInfoRequest:
    uid: int = 0
    task_id: str = ""
    session: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GetBuyerInfoResult:
    task_id: str
    uid: int
    success: bool
    message: str
    buyers: Tuple[BuyerInfo, ...] = ()


AnyRequest = Union[GrabTicketRequest, GetTicketInfoRequest, GetBuyerInfoRequest]
AnyResult = Union[GrabTicketResult, GetTicketInfoResult, GetBuyerInfoResult]


@dataclass
class Task:
    """Supervisor-owned record; mutated only under the supervisor lock"""
    task_id: str
    request: Any
    status: TaskStatus = TaskStatus.PENDING
    handle: Any = field(default=None, repr=False)
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    message: str = ""


def new_task_id() -> str:
    return str(uuid.uuid4())
