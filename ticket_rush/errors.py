"""
Ticket Rush - Exceptions
"""

from typing import Optional


class TicketRushError(RuntimeError):
    pass


class ApiError(TicketRushError):
    """Transport, HTTP-status or decode failure of a platform call"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class CaptchaError(TicketRushError):
    pass


class RiskVerificationError(TicketRushError):
    pass


class CountdownError(TicketRushError):
    pass


class TaskNotFoundError(TicketRushError, KeyError):
    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"
