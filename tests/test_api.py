import pytest

from ticket_rush.api import (
    BAD_BUYER_BINDING,
    BAD_ORDER_PARAMS,
    TRANSPORT_FAILURE,
    PlatformApi,
    random_click_position,
)
from ticket_rush.errors import ApiError
from ticket_rush.models import (
    BuyerInfo,
    ConfirmResult,
    GrabTicketRequest,
    NoBindBuyerInfo,
    OrderCreated,
    OrderRejected,
    OrderTransportError,
    TokenGrant,
    TokenRiskParam,
)

from fakes import FakeResponse, FakeSession, order_error, order_ok, risk_challenge, token_ok

CONFIRM = ConfirmResult(count=1, pay_money=38000)


def _request(**overrides):
    fields = dict(project_id="100", screen_id="200", ticket_id="5001", buyers=(BuyerInfo(id=1, name="Alice"),))
    fields.update(overrides)
    return GrabTicketRequest(**fields)


def test_click_position_confirm_button_ranges():
    for _ in range(50):
        pos = random_click_position(now_ms=100_000)
        assert int(1080 * 0.55) - 5 <= pos["x"] <= int(1080 * 0.9) + 5
        assert int(2400 * 0.9) - 5 <= pos["y"] <= int(2400 * 0.95) + 5
        assert 4000 <= pos["now"] - pos["origin"] < 12000
        assert pos["now"] == 100_000


def test_click_position_retry_button_and_fast_mode():
    for _ in range(50):
        pos = random_click_position(need_retry=True, fast_mode=True, screen_size=(1000, 2000), now_ms=50_000)
        assert 330 - 7 <= pos["x"] <= 670 + 7
        assert 1200 - 7 <= pos["y"] <= 1400 + 7
        assert 800 <= pos["now"] - pos["origin"] < 4600


def test_prepare_returns_grant():
    api = PlatformApi(FakeSession({"order/prepare": token_ok("tok-9", ptoken="pt")}))
    grant = api.prepare_token("100", "200", "5001", 2)
    assert grant == TokenGrant(token="tok-9", ptoken="")


def test_prepare_risk_and_rejection_codes():
    api = PlatformApi(FakeSession({"order/prepare": [risk_challenge(), order_error(100080)]}))

    risk = api.prepare_token("100", "200", "5001", 1)
    assert isinstance(risk, TokenRiskParam)
    assert risk.code == -401
    assert risk.risk_param["v_voucher"] == "vv"

    rejected = api.prepare_token("100", "200", "5001", 1)
    assert rejected.code == 100080
    assert rejected.risk_param == {}


@pytest.mark.parametrize("failure", [ConnectionError("down"), FakeResponse(status_code=503), FakeResponse(None)])
def test_prepare_transport_failures_map_to_transport_code(failure):
    api = PlatformApi(FakeSession({"order/prepare": failure}))
    outcome = api.prepare_token("100", "200", "5001", 1)
    assert isinstance(outcome, TokenRiskParam)
    assert outcome.code == TRANSPORT_FAILURE


def test_confirm_raises_on_rejection():
    api = PlatformApi(FakeSession({"order/confirmInfo": order_error(100001, "busy")}))
    with pytest.raises(ApiError) as info:
        api.confirm_order("100", "tok-1")
    assert info.value.code == 100001


def test_order_body_for_unbound_projects():
    api = PlatformApi(FakeSession({}))
    request = _request(id_bind=0, no_bind_buyer=NoBindBuyerInfo(name="Bob", tel="139"), buyers=())

    body = api.build_order_body(request, "tok-1", "", CONFIRM)

    assert body["buyer"] == "Bob"
    assert body["tel"] == "139"
    assert "buyer_info" not in body
    assert body["newRisk"] is True
    assert body["requestSource"] == "neul-next"


@pytest.mark.parametrize(
    "overrides,code",
    [
        ({"ticket_id": "abc"}, BAD_ORDER_PARAMS),
        ({"id_bind": 5}, BAD_BUYER_BINDING),
        ({"id_bind": 0}, BAD_BUYER_BINDING),
    ],
)
def test_create_rejects_bad_parameters_locally(overrides, code):
    session = FakeSession({})
    outcome = PlatformApi(session).create_order(_request(**overrides), "tok-1", "", CONFIRM)

    assert outcome == OrderRejected(code=code, message="order parameters rejected locally")
    assert session.calls == []


def test_create_order_outcomes():
    session = FakeSession(
        {
            "order/createV2": [
                FakeResponse(status_code=429),
                FakeResponse(status_code=500),
                order_error(100009),
                ConnectionError("reset"),
                order_ok(77, "pt-77"),
            ]
        }
    )
    api = PlatformApi(session)
    request = _request()

    assert api.create_order(request, "t", "", CONFIRM) == OrderRejected(code=429, message="HTTP 429")
    assert isinstance(api.create_order(request, "t", "", CONFIRM), OrderTransportError)
    assert api.create_order(request, "t", "", CONFIRM).code == 100009
    assert isinstance(api.create_order(request, "t", "", CONFIRM), OrderTransportError)
    created = api.create_order(request, "t", "", CONFIRM)
    assert isinstance(created, OrderCreated)
    assert created.info.order_id == "77"
    assert created.info.pay_token == "pt-77"


def test_server_time():
    api = PlatformApi(FakeSession({"click/now": [{"code": 0, "data": {"now": 1_700_000_000}}, ConnectionError("x")]}))
    assert api.fetch_server_time() == 1_700_000_000
    assert api.fetch_server_time() == 0


def test_check_order_status_url_and_errors():
    session = FakeSession({"order/createstatus": [{"errno": 0, "data": {}}, FakeResponse(None)]})
    api = PlatformApi(session)

    api.check_order_status("100", "pay-tok", "9001")
    assert session.calls[0][1].endswith("&orderId=9001")
    with pytest.raises(ApiError):
        api.check_order_status("100", "pay-tok", "0")
    assert "orderId" not in session.calls[1][1]
