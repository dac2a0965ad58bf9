import pytest

from ticket_rush.captcha import GEETEST_CLICK, RiskVerifier
from ticket_rush.errors import RiskVerificationError
from ticket_rush.models import TokenRiskParam
from ticket_rush.session import RequestsSession

from fakes import FakeSession, FakeSolver, risk_challenge

REGISTER_OK = {"code": 0, "data": {"type": "geetest", "geetest": {"gt": "gt-1", "challenge": "ch-1", "token": "tk"}}}


def _risk():
    return TokenRiskParam.from_response(risk_challenge())


def test_verification_round_trip():
    session = FakeSession({"v1/register": REGISTER_OK, "v1/validate": {"code": 0, "data": {"is_valid": 1}}})
    solver = FakeSolver()

    RiskVerifier(session, solver).verify(_risk())

    assert solver.calls[0][3] == GEETEST_CLICK
    assert session.bodies("v1/validate")[0]["buvid"] == "buvid-x"


@pytest.mark.parametrize(
    "routes,solver,fragment",
    [
        ({"v1/register": {"code": 0, "data": {"type": "sms"}}}, FakeSolver(), "Unsupported captcha type"),
        ({"v1/register": {"code": -352, "message": "blocked"}}, FakeSolver(), "blocked"),
        ({"v1/register": REGISTER_OK}, FakeSolver(fail=True), "solver failed"),
        (
            {"v1/register": REGISTER_OK, "v1/validate": {"code": 0, "data": {"is_valid": False}}},
            FakeSolver(),
            "not accepted",
        ),
        ({}, None, "No captcha solver"),
    ],
)
def test_verification_failures(routes, solver, fragment):
    with pytest.raises(RiskVerificationError, match=fragment):
        RiskVerifier(FakeSession(routes), solver).verify(_risk())


def test_empty_risk_params_are_rejected():
    with pytest.raises(RiskVerificationError):
        RiskVerifier(FakeSession({}), FakeSolver()).verify(TokenRiskParam(code=-401))


def test_requests_session_parses_cookie_header():
    session = RequestsSession("DedeUserID=42; bili_jct=abc; buvid3=xyz")
    try:
        assert session.get_cookie("bili_jct") == "abc"
        assert session.get_cookie("DedeUserID") == "42"
        assert session.get_cookie("missing") is None
        assert session.session.headers["cookie"].startswith("DedeUserID=42")
    finally:
        session.close()
