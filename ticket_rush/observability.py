"""
Ticket Rush - Observability Sink
The supervisor reports submissions and terminal states here.
"""

import abc
import logging
from typing import Any

from .models import TaskStatus

logger = logging.getLogger("TicketRush.Events")


class ObservabilitySink(abc.ABC):
    @abc.abstractmethod
    def task_submitted(self, task_id: str, request: Any) -> None:
        pass

    @abc.abstractmethod
    def task_finished(self, task_id: str, status: TaskStatus, message: str = "") -> None:
        pass


class LoggingSink(ObservabilitySink):
    """Default sink: one log line per event"""

    def task_submitted(self, task_id: str, request: Any) -> None:
        kind = type(request).__name__
        mode = getattr(request, "mode", None)
        suffix = f" mode={getattr(mode, 'name', mode)}" if mode is not None else ""
        logger.info(f"[SUBMIT] {task_id} {kind}{suffix}")

    def task_finished(self, task_id: str, status: TaskStatus, message: str = "") -> None:
        level = logging.INFO if status is TaskStatus.COMPLETED else logging.WARNING
        logger.log(level, f"[{status.name}] {task_id} {message}".rstrip())
