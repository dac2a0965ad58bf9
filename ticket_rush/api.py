"""
Ticket Rush - Platform API
Typed wrappers over the ticketing platform's HTTP endpoints.

Responses are decoded once here; callers receive dataclasses or sum types
instead of raw JSON.
"""

import json
import logging
import random
import time
from typing import Any, Dict, Optional, Tuple

from .config import Config
from .errors import ApiError
from .models import (
    BuyerInfo,
    ConfirmResult,
    GrabTicketRequest,
    OrderCreated,
    OrderInfo,
    OrderOutcome,
    OrderRejected,
    OrderStatus,
    OrderTransportError,
    ProjectInfo,
    TokenGrant,
    TokenOutcome,
    TokenRiskParam,
    as_dict,
    as_int,
    as_list,
    as_str,
    buyers_to_json,
    envelope_code,
    envelope_message,
)
from .session import Session, TokenGenerator

logger = logging.getLogger("TicketRush.Api")

# Code reported for failures that never reached the platform's envelope
TRANSPORT_FAILURE = -1
# Locally detected contract violations
BAD_BUYER_BINDING = 919
BAD_ORDER_PARAMS = 999

REQUEST_SOURCE = "neul-next"


# ==================== Click Position Signal ====================

def random_click_position(
    need_retry: bool = False,
    fast_mode: bool = False,
    screen_size: Optional[Tuple[int, int]] = None,
    now_ms: Optional[int] = None,
) -> Dict[str, int]:
    """
    Synthesize the behavioural "click position and dwell" signal sent with an order.

    Args:
        need_retry: Aim at the "try again" button instead of the confirm button
        fast_mode: Dwell 0.8-4.6s instead of 4-12s
        screen_size: (width, height), defaults to a 1080x2400 phone
        now_ms: Override the current time (milliseconds)

    Returns:
        {"x", "y", "origin", "now"}
    """
    width, height = screen_size or (Config.SCREEN_WIDTH, Config.SCREEN_HEIGHT)
    if need_retry:
        x = int(width * random.uniform(0.33, 0.67))
        y = int(height * random.uniform(0.6, 0.7))
        offset = min(width, 30) // 4
    else:
        x = int(width * random.uniform(0.55, 0.9))
        y = int(height * random.uniform(0.9, 0.95))
        offset = min(width, 20) // 4

    x += random.randint(-offset, offset)
    y += random.randint(-offset, offset)

    now = now_ms if now_ms is not None else int(time.time() * 1000)
    dwell = random.randrange(800, 4600) if fast_mode else random.randrange(4000, 12000)
    return {"x": x, "y": y, "origin": now - dwell, "now": now}


# ==================== API Client ====================

class PlatformApi:
    """Synchronous client; the engine runs each call off the event loop"""

    def __init__(self, session: Session, show_base: Optional[str] = None, api_base: Optional[str] = None):
        self.session = session
        self.show_base = (show_base or Config.SHOW_BASE_URL).rstrip("/")
        self.api_base = (api_base or Config.API_BASE_URL).rstrip("/")

    # ---------- helpers ----------

    @staticmethod
    def _json(response: Any, what: str) -> Dict[str, Any]:
        status = getattr(response, "status_code", 0)
        if status != 200:
            raise ApiError(f"{what}: HTTP {status}")
        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"{what}: bad JSON body ({e})")
        if not isinstance(payload, dict):
            raise ApiError(f"{what}: unexpected body type {type(payload).__name__}")
        return payload

    def _get_json(self, url: str, what: str) -> Dict[str, Any]:
        try:
            response = self.session.get(url)
        except Exception as e:
            raise ApiError(f"{what}: request failed ({e})") from e
        return self._json(response, what)

    # ---------- clock / catalogue ----------

    def fetch_server_time(self) -> int:
        """Platform clock in unix seconds, 0 when unavailable"""
        url = f"{self.api_base}/x/click-interface/click/now"
        try:
            payload = self._get_json(url, "clock")
        except ApiError as e:
            logger.debug(f"[CLOCK] Server time unavailable: {e}")
            return 0
        now = as_int(as_dict(payload.get("data")).get("now"))
        logger.debug(f"[CLOCK] Server time: {now}")
        return now

    def get_project(self, project_id: str) -> ProjectInfo:
        payload = self._get_json(f"{self.show_base}/api/ticket/project/getV2?id={project_id}", "project")
        code = envelope_code(payload)
        if code != 0:
            raise ApiError(f"project {project_id}: {envelope_message(payload) or 'rejected'}", code=code)
        return ProjectInfo.from_dict(payload.get("data"))

    def get_buyer_info(self) -> Tuple[BuyerInfo, ...]:
        payload = self._get_json(f"{self.show_base}/api/ticket/buyer/list", "buyer list")
        code = envelope_code(payload)
        if code != 0:
            raise ApiError(f"buyer list: {envelope_message(payload) or 'rejected'}", code=code)
        return tuple(BuyerInfo.from_dict(b) for b in as_list(as_dict(payload.get("data")).get("list")))

    # ---------- acquisition steps ----------

    def prepare_token(
        self,
        project_id: str,
        screen_id: str,
        ticket_id: str,
        count: int,
        is_hot: bool = False,
        generator: Optional[TokenGenerator] = None,
    ) -> TokenOutcome:
        """
        Request an order token.

        Returns a TokenGrant on success, otherwise a TokenRiskParam whose code is
        401/-401 for risk challenges, the platform code for other rejections, or
        TRANSPORT_FAILURE when the platform never answered with an envelope.
        """
        ctoken = generator.generate_ctoken(False) if (is_hot and generator is not None) else ""
        body = {
            "project_id": project_id,
            "screen_id": screen_id,
            "sku_id": ticket_id,
            "count": count,
            "order_type": 1,
            "token": ctoken,
            "requestSource": REQUEST_SOURCE,
            "newRisk": "true",
        }
        url = f"{self.show_base}/api/ticket/order/prepare?project_id={project_id}"
        try:
            response = self.session.post(url, json=body)
            payload = self._json(response, "prepare")
        except ApiError as e:
            logger.warning(f"[TOKEN] {e}")
            return TokenRiskParam(code=TRANSPORT_FAILURE, message=str(e))
        except Exception as e:
            logger.warning(f"[TOKEN] prepare request failed: {e}")
            return TokenRiskParam(code=TRANSPORT_FAILURE, message=str(e))

        logger.debug(f"[TOKEN] prepare answer: {payload}")
        code = envelope_code(payload)
        if code == 0:
            data = as_dict(payload.get("data"))
            return TokenGrant(
                token=as_str(data.get("token")),
                ptoken=as_str(data.get("ptoken")) if is_hot else "",
            )
        if code in (401, -401):
            return TokenRiskParam.from_response(payload)
        return TokenRiskParam(code=code, message=envelope_message(payload) or "unknown error")

    def confirm_order(self, project_id: str, token: str) -> ConfirmResult:
        url = (
            f"{self.show_base}/api/ticket/order/confirmInfo?token={token}&voucher="
            f"&project_id={project_id}&requestSource={REQUEST_SOURCE}"
        )
        payload = self._get_json(url, "confirm")
        logger.debug(f"[CONFIRM] answer: {payload}")
        code = envelope_code(payload)
        if code != 0:
            raise ApiError(f"confirm rejected: {envelope_message(payload) or 'unknown error'}", code=code)
        return ConfirmResult.from_dict(payload.get("data"))

    def build_order_body(
        self,
        request: GrabTicketRequest,
        token: str,
        ptoken: str,
        confirm: ConfirmResult,
        generator: Optional[TokenGenerator] = None,
        need_retry: bool = False,
    ) -> Dict[str, Any]:
        """
        Assemble the createV2 body. Raises ValueError carrying the local
        rejection code (BAD_ORDER_PARAMS / BAD_BUYER_BINDING) as its argument.
        """
        try:
            sku_id = int(str(request.ticket_id).strip())
        except ValueError:
            raise ValueError(BAD_ORDER_PARAMS)

        body: Dict[str, Any] = {
            "project_id": as_int(request.project_id),
            "screen_id": as_int(request.screen_id),
            "sku_id": sku_id,
            "token": token,
        }
        if request.id_bind == 0:
            if request.no_bind_buyer is None:
                raise ValueError(BAD_BUYER_BINDING)
            body["buyer"] = request.no_bind_buyer.name
            body["tel"] = request.no_bind_buyer.tel
        elif request.id_bind in (1, 2):
            if request.is_hot:
                body["ctoken"] = generator.generate_ctoken(True) if generator is not None else ""
                body["ptoken"] = ptoken
            body["buyer_info"] = buyers_to_json(request.buyers)
        else:
            raise ValueError(BAD_BUYER_BINDING)

        body.update(
            {
                "clickPosition": json.dumps(
                    random_click_position(need_retry, Config.FAST_CLICK_MODE), separators=(",", ":")
                ),
                "newRisk": True,
                "requestSource": REQUEST_SOURCE,
                "deviceId": self.session.get_cookie("deviceFingerprint") or "",
                "pay_money": confirm.pay_money,
                "count": confirm.count,
                "timestamp": int(time.time() * 1000),
                "order_type": 1,
            }
        )
        return body

    def create_order(
        self,
        request: GrabTicketRequest,
        token: str,
        ptoken: str,
        confirm: ConfirmResult,
        generator: Optional[TokenGenerator] = None,
        need_retry: bool = False,
    ) -> OrderOutcome:
        try:
            body = self.build_order_body(request, token, ptoken, confirm, generator, need_retry)
        except ValueError as e:
            code = e.args[0] if e.args and isinstance(e.args[0], int) else BAD_ORDER_PARAMS
            logger.error(f"[ORDER] Rejected locally with code {code} (id_bind={request.id_bind})")
            return OrderRejected(code=code, message="order parameters rejected locally")

        url = f"{self.show_base}/api/ticket/order/createV2?project_id={request.project_id}"
        if request.is_hot:
            url += f"&ptoken={ptoken}"
        risk_header = "platform/h5 uid/{} deviceId/{}".format(
            self.session.get_cookie("DedeUserID") or "",
            self.session.get_cookie("buvid3") or "",
        )

        logger.debug(f"[ORDER] createV2 body: {body}")
        try:
            response = self.session.post_with_headers(url, {"X-Risk-Header": risk_header}, json=body)
        except Exception as e:
            return OrderTransportError(message=f"createV2 request failed: {e}")

        status = getattr(response, "status_code", 0)
        if status == 429:
            return OrderRejected(code=429, message="HTTP 429")
        if status != 200:
            return OrderTransportError(message=f"createV2: HTTP {status}")
        try:
            payload = response.json()
        except ValueError as e:
            return OrderTransportError(message=f"createV2: bad JSON body ({e})")
        if not isinstance(payload, dict):
            return OrderTransportError(message="createV2: unexpected body type")

        logger.info(f"[ORDER] createV2 answer: {payload}")
        code = envelope_code(payload)
        if code != 0:
            return OrderRejected(code=code, message=envelope_message(payload))

        data = as_dict(payload.get("data"))
        return OrderCreated(
            OrderInfo(
                order_id=str(as_int(data.get("orderId"))),
                pay_token=as_str(data.get("token")),
                order_create_time=as_int(data.get("orderCreateTime")),
            )
        )

    def check_order_status(self, project_id: str, pay_token: str, order_id: str = "") -> OrderStatus:
        url = (
            f"{self.show_base}/api/ticket/order/createstatus?project_id={project_id}"
            f"&token={pay_token}&timestamp={int(time.time())}"
        )
        if order_id and order_id != "0":
            url += f"&orderId={order_id}"
        try:
            response = self.session.get(url)
        except Exception as e:
            raise ApiError(f"createstatus: request failed ({e})") from e
        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(f"createstatus: bad JSON body ({e})")
        if not isinstance(payload, dict):
            raise ApiError("createstatus: unexpected body type")
        logger.debug(f"[FAKE] createstatus answer: {payload}")
        return OrderStatus.from_response(payload)
