"""
Ticket Rush - Main Entry Point

Usage:
    python -m ticket_rush.main task.json
    python -m ticket_rush.main --info <project_id>
    python -m ticket_rush.main --buyers

The task file describes one grab request:
    {"mode": "timed", "project_id": "...", "screen_id": "...", "ticket_id": "...",
     "count": 1, "buyers": [...], "skip_words": [], "budget": {"max_order_retry": 30}}
"""

import argparse
import dataclasses
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from .config import Config
from .models import (
    BuyerInfo,
    GetBuyerInfoRequest,
    GetTicketInfoRequest,
    GrabMode,
    GrabTicketRequest,
    NoBindBuyerInfo,
    RetryBudget,
    as_bool,
    as_dict,
    as_int,
    as_list,
    as_str,
)
from .notifier import TelegramNotifier
from .session import RequestsSession
from .supervisor import TaskSupervisor

logger = logging.getLogger("TicketRush.Main")

_MODE_NAMES = {"timed": GrabMode.TIMED, "direct": GrabMode.DIRECT, "leak": GrabMode.LEAK}


def setup_logging(level: str = Config.LOG_LEVEL, log_file: str = Config.LOG_FILE) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s.%(msecs)03d [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )


def parse_mode(value: Any) -> GrabMode:
    if isinstance(value, str) and value.strip().lower() in _MODE_NAMES:
        return _MODE_NAMES[value.strip().lower()]
    return GrabMode(as_int(value, int(GrabMode.TIMED)))


def request_from_dict(data: Dict[str, Any], notifier: Optional[TelegramNotifier] = None) -> GrabTicketRequest:
    """Build a grab request from a task description"""
    defaults = RetryBudget.from_config()
    budget = as_dict(data.get("budget"))
    no_bind = as_dict(data.get("no_bind_buyer"))
    return GrabTicketRequest(
        project_id=as_str(data.get("project_id")),
        screen_id=as_str(data.get("screen_id")),
        ticket_id=as_str(data.get("ticket_id")),
        count=as_int(data.get("count"), 1),
        buyers=tuple(BuyerInfo.from_dict(b) for b in as_list(data.get("buyers"))),
        no_bind_buyer=NoBindBuyerInfo(
            name=as_str(no_bind.get("name")), tel=as_str(no_bind.get("tel")), uid=as_int(no_bind.get("uid"))
        ) if no_bind else None,
        mode=parse_mode(data.get("mode", 0)),
        budget=RetryBudget(
            max_token_retry=as_int(budget.get("max_token_retry"), defaults.max_token_retry),
            max_confirm_retry=as_int(budget.get("max_confirm_retry"), defaults.max_confirm_retry),
            max_order_retry=as_int(budget.get("max_order_retry"), defaults.max_order_retry),
            max_fake_check_retry=as_int(budget.get("max_fake_check_retry"), defaults.max_fake_check_retry),
            retry_interval_ms=as_int(budget.get("retry_interval_ms"), defaults.retry_interval_ms),
        ),
        skip_words=tuple(as_str(w) for w in as_list(data.get("skip_words")) if as_str(w)),
        is_hot=as_bool(data.get("is_hot")),
        id_bind=as_int(data.get("id_bind"), 1),
        uid=as_int(data.get("uid")),
        task_id=as_str(data.get("task_id")),
        notifier=notifier,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ticket-rush", description="Grab-ticket orchestration engine")
    parser.add_argument("task", nargs="?", help="Path to a JSON task description")
    parser.add_argument("--info", metavar="PROJECT_ID", help="Print a project's screens and ticket types")
    parser.add_argument("--buyers", action="store_true", help="Print the account's buyer profiles")
    parser.add_argument("--cookie", default=Config.COOKIE, help="Raw cookie header (default: COOKIE env)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if not (args.task or args.info or args.buyers):
        build_parser().print_help()
        return 2
    if not args.cookie:
        logger.error("[CONFIG] No cookie configured (set COOKIE or pass --cookie)")
        return 2

    session = RequestsSession(args.cookie)
    notifier = TelegramNotifier()
    supervisor = TaskSupervisor(default_session=session)

    def signal_handler(signum, frame):
        logger.info(f"🛑 Received signal {signum} - initiating graceful shutdown")
        supervisor.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if args.info:
            task_id = supervisor.submit(GetTicketInfoRequest(project_id=args.info))
        elif args.buyers:
            task_id = supervisor.submit(GetBuyerInfoRequest())
        else:
            with open(args.task, "r", encoding="utf-8") as fh:
                description = json.load(fh)
            request = request_from_dict(description, notifier if notifier.configured else None)
            logger.info(f"[MAIN] Mode {request.mode.name}, project {request.project_id}")
            task_id = supervisor.submit(request)

        supervisor.join(task_id)
        results = supervisor.drain_results()
        for result in results:
            print(json.dumps(_printable(result), ensure_ascii=False, indent=2, default=str))
        return 0 if results and results[-1].success else 1
    finally:
        supervisor.shutdown()
        session.close()


def _printable(result: Any) -> Dict[str, Any]:
    return dataclasses.asdict(result)


if __name__ == "__main__":
    sys.exit(main())
