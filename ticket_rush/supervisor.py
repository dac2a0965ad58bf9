"""
TaskSupervisor - Runs grab and lookup jobs as cancellable concurrent tasks
One event loop in a daemon thread hosts every job; results from all jobs are
funneled onto a single thread-safe stream.
"""
import asyncio
import concurrent.futures
import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .api import PlatformApi
from .errors import TaskNotFoundError, TicketRushError
from .models import (
    AnyRequest,
    AnyResult,
    GetBuyerInfoRequest,
    GetBuyerInfoResult,
    GetTicketInfoRequest,
    GetTicketInfoResult,
    GrabTicketRequest,
    GrabTicketResult,
    Task,
    TaskStatus,
    new_task_id,
)
from .observability import LoggingSink, ObservabilitySink
from .strategies import fetch_buyer_info, fetch_ticket_info, strategy_for

logger = logging.getLogger("TicketRush.Supervisor")

ResultListener = Callable[[AnyResult], None]


def failure_result(request: AnyRequest, task_id: str, message: str) -> AnyResult:
    uid = getattr(request, "uid", 0)
    if isinstance(request, GetTicketInfoRequest):
        return GetTicketInfoResult(task_id=task_id, uid=uid, success=False, message=message)
    if isinstance(request, GetBuyerInfoRequest):
        return GetBuyerInfoResult(task_id=task_id, uid=uid, success=False, message=message)
    return GrabTicketResult.failure(task_id, uid, message)


class TaskSupervisor:
    """
    Args:
        sink: Receives submission and terminal-state events (default: logging)
        default_session: Used for requests that carry no session of their own
        sleep: Awaitable sleep handed to the strategies
    """

    def __init__(
        self,
        sink: Optional[ObservabilitySink] = None,
        default_session: Any = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.sink = sink or LoggingSink()
        self.default_session = default_session
        self.sleep = sleep

        self._lock = threading.RLock()
        self._tasks: Dict[str, Task] = {}
        self._results: "queue.Queue[AnyResult]" = queue.Queue()
        self._listeners: List[ResultListener] = []
        self._closed = False

        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, name="TicketRush-Supervisor")
        self._thread.daemon = True
        self._thread.start()
        self._ready.wait()
        logger.info("[START] Supervisor worker loop running")

    # ==================== Worker Loop ====================

    def _run_loop(self):
        asyncio.set_event_loop(self._loop)
        self._loop.call_soon(self._ready.set)
        try:
            self._loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self._loop)
            for job in pending:
                job.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self._loop.close()
            logger.info("[STOP] Supervisor worker loop closed")

    # ==================== Public API ====================

    def submit(self, request: AnyRequest) -> str:
        """Schedule a request and return its task id"""
        if not isinstance(request, (GrabTicketRequest, GetTicketInfoRequest, GetBuyerInfoRequest)):
            raise TypeError(f"Unsupported request type: {type(request).__name__}")

        task_id = request.task_id or new_task_id()
        with self._lock:
            if self._closed:
                raise TicketRushError("Supervisor is shut down")
            existing = self._tasks.get(task_id)
            if existing is not None and not existing.status.is_terminal:
                raise TicketRushError(f"Task {task_id} is already active")
            task = Task(task_id=task_id, request=request)
            self._tasks[task_id] = task
            task.handle = asyncio.run_coroutine_threadsafe(self._job(task, request), self._loop)

        self._report(self.sink.task_submitted, task_id, request)
        return task_id

    def cancel(self, task_id: str) -> None:
        """
        Stop a task at its next suspension point.

        Raises:
            TaskNotFoundError: Unknown task id
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.status.is_terminal:
                logger.debug(f"[CANCEL] {task_id} already {task.status.name}")
                return
            task.status = TaskStatus.CANCELLED
            task.finished_at = time.time()
            task.message = "Cancelled by caller"
            handle = task.handle

        if handle is not None:
            handle.cancel()
        logger.info(f"[CANCEL] Task {task_id} cancelled")
        self._report(self.sink.task_finished, task_id, TaskStatus.CANCELLED, "Cancelled by caller")

    def status(self, task_id: str) -> Optional[TaskStatus]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.status if task else None

    def drain_results(self) -> List[AnyResult]:
        """Everything emitted so far, without blocking"""
        drained = []
        while True:
            try:
                drained.append(self._results.get_nowait())
            except queue.Empty:
                return drained

    def get_result(self, timeout: Optional[float] = None) -> Optional[AnyResult]:
        """Block for the next result; None on timeout"""
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def join(self, task_id: str, timeout: Optional[float] = None) -> Optional[TaskStatus]:
        """Wait until the task's job has exited and return its status"""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            handle = task.handle
        if handle is not None:
            concurrent.futures.wait([handle], timeout=timeout)
        return self.status(task_id)

    def add_listener(self, listener: ResultListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def evict(self, task_id: str) -> bool:
        """Forget a finished task. Returns False while it is still live."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if not task.status.is_terminal:
                return False
            del self._tasks[task_id]
            return True

    def shutdown(self, timeout: float = 5.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            live = [t.task_id for t in self._tasks.values() if not t.status.is_terminal]
        for task_id in live:
            self.cancel(task_id)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        logger.info(f"[STOP] Supervisor shut down ({len(live)} live task(s) cancelled)")

    def __enter__(self) -> "TaskSupervisor":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ==================== Jobs ====================

    async def _job(self, task: Task, request: AnyRequest) -> None:
        task_id = task.task_id
        with self._lock:
            if self._tasks.get(task_id) is not task or task.status is not TaskStatus.PENDING:
                return
            task.status = TaskStatus.RUNNING

        try:
            result = await self._dispatch(task_id, request)
        except asyncio.CancelledError:
            logger.debug(f"[CANCEL] Job {task_id} unwound")
            raise
        except Exception as e:
            logger.error(f"[CRASH] Task {task_id} crashed: {e}", exc_info=True)
            self._finish(task, failure_result(request, task_id, f"Internal error: {e}"), TaskStatus.FAILED)
            return

        self._finish(task, result, TaskStatus.COMPLETED if result.success else TaskStatus.FAILED)

    async def _dispatch(self, task_id: str, request: AnyRequest) -> AnyResult:
        session = request.session if request.session is not None else self.default_session
        if session is None:
            return failure_result(request, task_id, "No session configured for this request")
        api = PlatformApi(session)

        if isinstance(request, GetTicketInfoRequest):
            return await fetch_ticket_info(request, api, task_id)
        if isinstance(request, GetBuyerInfoRequest):
            return await fetch_buyer_info(request, api, task_id)
        return await strategy_for(request.mode, api, self.sleep).run(request, task_id)

    def _finish(self, task: Task, result: AnyResult, status: TaskStatus) -> None:
        task_id = task.task_id
        with self._lock:
            if self._tasks.get(task_id) is not task or task.status is TaskStatus.CANCELLED:
                logger.debug(f"[DROP] Result for stale or cancelled task {task_id} discarded")
                return
            task.status = status
            task.finished_at = time.time()
            task.message = result.message
            self._results.put(result)
            listeners = list(self._listeners)
            for listener in listeners:
                try:
                    listener(result)
                except Exception as e:
                    logger.error(f"[LISTENER] Result listener failed: {e}", exc_info=True)

        done_tag = "[DONE]" if status is TaskStatus.COMPLETED else "[END]"
        logger.info(f"{done_tag} Task {task_id}: {result.message}")
        self._report(self.sink.task_finished, task_id, status, result.message)

    def _report(self, hook: Callable, *args) -> None:
        try:
            hook(*args)
        except Exception as e:
            logger.error(f"[SINK] Observability sink failed: {e}")
