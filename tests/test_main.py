import json

import pytest

from ticket_rush.config import Config
from ticket_rush.main import build_parser, main, parse_mode, request_from_dict
from ticket_rush.models import GrabMode


@pytest.mark.parametrize(
    "value,mode",
    [("timed", GrabMode.TIMED), ("Direct", GrabMode.DIRECT), (" LEAK ", GrabMode.LEAK), (2, GrabMode.LEAK), ("1", GrabMode.DIRECT), (None, GrabMode.TIMED)],
)
def test_parse_mode(value, mode):
    assert parse_mode(value) is mode


def test_parse_mode_rejects_unknown_numbers():
    with pytest.raises(ValueError):
        parse_mode(9)


def test_request_from_dict_applies_defaults():
    request = request_from_dict({"project_id": 100, "screen_id": "200", "ticket_id": 5001, "mode": "leak"})

    assert request.project_id == "100"
    assert request.ticket_id == "5001"
    assert request.mode is GrabMode.LEAK
    assert request.count == 1
    assert request.id_bind == 1
    assert request.no_bind_buyer is None
    assert request.budget.max_token_retry == Config.MAX_TOKEN_RETRY
    assert request.budget.max_order_retry == Config.MAX_ORDER_RETRY
    assert request.budget.retry_interval_ms == Config.RETRY_INTERVAL_MS


def test_request_from_dict_full_description():
    request = request_from_dict(
        {
            "project_id": "100",
            "screen_id": "200",
            "ticket_id": "5001",
            "count": 2,
            "buyers": [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}],
            "skip_words": ["VIP", "", 3],
            "budget": {"max_order_retry": 8, "retry_interval_ms": 100},
            "is_hot": "true",
            "id_bind": 0,
            "no_bind_buyer": {"name": "Carol", "tel": "137"},
            "task_id": "mine",
        }
    )

    assert [b.name for b in request.buyers] == ["Alice", "Bob"]
    assert request.skip_words == ("VIP", "3")
    assert request.budget.max_order_retry == 8
    assert request.budget.retry_interval == pytest.approx(0.1)
    assert request.is_hot
    assert request.no_bind_buyer.name == "Carol"
    assert request.task_id == "mine"


def test_parser_accepts_lookup_flags():
    args = build_parser().parse_args(["--info", "100", "--cookie", "a=b"])
    assert args.info == "100"
    assert args.cookie == "a=b"
    assert args.task is None


def test_main_without_arguments_is_usage_error(capsys):
    assert main([]) == 2


def test_main_without_cookie_is_usage_error(tmp_path):
    task = tmp_path / "task.json"
    task.write_text(json.dumps({"project_id": "1"}), encoding="utf-8")
    assert main([str(task), "--cookie", ""]) == 2
