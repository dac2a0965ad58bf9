import threading
import time

import pytest

from ticket_rush.errors import TaskNotFoundError, TicketRushError
from ticket_rush.models import (
    BuyerInfo,
    GetBuyerInfoRequest,
    GetTicketInfoRequest,
    GetTicketInfoResult,
    GrabMode,
    GrabTicketRequest,
    RetryBudget,
    TaskStatus,
)
from ticket_rush.observability import ObservabilitySink
from ticket_rush.supervisor import TaskSupervisor, failure_result

from fakes import FakeSession, happy_routes, order_error, project_payload, screen, ticket, token_ok


async def no_sleep(delay):
    return None


class RecordingSink(ObservabilitySink):
    def __init__(self):
        self.submitted = []
        self.finished = []

    def task_submitted(self, task_id, request):
        self.submitted.append(task_id)

    def task_finished(self, task_id, status, message=""):
        self.finished.append((task_id, status))


@pytest.fixture
def supervisor():
    sup = TaskSupervisor(sink=RecordingSink(), sleep=no_sleep)
    yield sup
    sup.shutdown()


def _grab(session, **overrides):
    fields = dict(
        project_id="100",
        screen_id="200",
        ticket_id="5001",
        buyers=(BuyerInfo(id=1, name="Alice"),),
        mode=GrabMode.DIRECT,
        session=session,
    )
    fields.update(overrides)
    return GrabTicketRequest(**fields)


def test_lookup_job_completes_with_one_result(supervisor):
    session = FakeSession({"project/getV2": project_payload(screens=[screen(200, tickets=[ticket(5001)])])})

    task_id = supervisor.submit(GetTicketInfoRequest(project_id="100", session=session))

    assert supervisor.join(task_id, timeout=5) is TaskStatus.COMPLETED
    results = supervisor.drain_results()
    assert len(results) == 1
    assert isinstance(results[0], GetTicketInfoResult)
    assert results[0].task_id == task_id
    assert supervisor.sink.submitted == [task_id]
    assert supervisor.sink.finished == [(task_id, TaskStatus.COMPLETED)]


def test_caller_task_id_is_kept_and_reusable_once_finished(supervisor):
    session = FakeSession({"buyer/list": {"errno": 0, "data": {"list": []}}})

    first = supervisor.submit(GetBuyerInfoRequest(task_id="mine", session=session))
    assert first == "mine"
    supervisor.join("mine", timeout=5)

    assert supervisor.submit(GetBuyerInfoRequest(task_id="mine", session=session)) == "mine"
    supervisor.join("mine", timeout=5)
    assert len(supervisor.drain_results()) == 2


def test_direct_grab_through_supervisor(supervisor):
    session = FakeSession(happy_routes())

    task_id = supervisor.submit(_grab(session))

    assert supervisor.join(task_id, timeout=5) is TaskStatus.COMPLETED
    (result,) = supervisor.drain_results()
    assert result.success
    assert result.order_id == "9001"


def test_order_exhaustion_emits_exactly_one_failure(supervisor):
    routes = happy_routes()
    routes["order/createV2"] = order_error(100009)
    session = FakeSession(routes)

    task_id = supervisor.submit(_grab(session, budget=RetryBudget(max_order_retry=4)))

    assert supervisor.join(task_id, timeout=5) is TaskStatus.FAILED
    results = supervisor.drain_results()
    assert len(results) == 1
    assert not results[0].success
    assert session.count("order/createV2") == 4


def test_cancel_blocked_task_emits_nothing(supervisor):
    entered = threading.Event()
    release = threading.Event()

    def blocking_prepare(method, url, body):
        entered.set()
        release.wait(5)
        return token_ok()

    routes = happy_routes()
    routes["order/prepare"] = blocking_prepare
    session = FakeSession(routes)

    task_id = supervisor.submit(_grab(session))
    assert entered.wait(5)

    supervisor.cancel(task_id)
    release.set()
    supervisor.join(task_id, timeout=5)
    time.sleep(0.2)

    assert supervisor.status(task_id) is TaskStatus.CANCELLED
    assert supervisor.drain_results() == []
    assert session.count("order/confirmInfo") == 0
    assert (task_id, TaskStatus.CANCELLED) in supervisor.sink.finished


def test_cancel_finished_task_is_noop(supervisor):
    session = FakeSession(happy_routes())
    task_id = supervisor.submit(_grab(session))
    supervisor.join(task_id, timeout=5)

    supervisor.cancel(task_id)

    assert supervisor.status(task_id) is TaskStatus.COMPLETED


def test_cancel_unknown_task_raises(supervisor):
    with pytest.raises(TaskNotFoundError):
        supervisor.cancel("nope")
    assert supervisor.status("nope") is None


def test_crashing_job_is_reported_as_failed(supervisor):
    task_id = supervisor.submit(_grab(FakeSession(happy_routes()), mode=7))

    assert supervisor.join(task_id, timeout=5) is TaskStatus.FAILED
    (result,) = supervisor.drain_results()
    assert not result.success
    assert result.message.startswith("Internal error")


def test_missing_session_fails_the_task(supervisor):
    task_id = supervisor.submit(_grab(None))

    assert supervisor.join(task_id, timeout=5) is TaskStatus.FAILED
    (result,) = supervisor.drain_results()
    assert "No session" in result.message


def test_default_session_is_used():
    sup = TaskSupervisor(sink=RecordingSink(), default_session=FakeSession(happy_routes()), sleep=no_sleep)
    try:
        task_id = sup.submit(_grab(None))
        assert sup.join(task_id, timeout=5) is TaskStatus.COMPLETED
    finally:
        sup.shutdown()


def test_listeners_receive_results(supervisor):
    seen = []
    supervisor.add_listener(seen.append)

    task_id = supervisor.submit(_grab(FakeSession(happy_routes())))
    supervisor.join(task_id, timeout=5)

    assert [r.task_id for r in seen] == [task_id]
    assert supervisor.get_result(timeout=1).task_id == task_id


def test_evict_only_finished_tasks(supervisor):
    release = threading.Event()

    def blocking_prepare(method, url, body):
        release.wait(5)
        return token_ok()

    routes = happy_routes()
    routes["order/prepare"] = blocking_prepare
    task_id = supervisor.submit(_grab(FakeSession(routes)))

    assert supervisor.evict(task_id) is False
    release.set()
    supervisor.join(task_id, timeout=5)
    assert supervisor.evict(task_id) is True
    with pytest.raises(TaskNotFoundError):
        supervisor.evict(task_id)


def test_submit_rejects_unknown_request_types(supervisor):
    with pytest.raises(TypeError):
        supervisor.submit({"project_id": "100"})


def test_submit_after_shutdown_raises():
    sup = TaskSupervisor(sink=RecordingSink(), sleep=no_sleep)
    sup.shutdown()
    with pytest.raises(TicketRushError):
        sup.submit(GetBuyerInfoRequest(session=FakeSession({})))


def test_late_result_from_replaced_task_is_discarded(supervisor):
    session = FakeSession({"buyer/list": {"errno": 0, "data": {"list": []}}})
    supervisor.submit(GetBuyerInfoRequest(task_id="mine", session=session))
    supervisor.join("mine", timeout=5)
    old = supervisor._tasks["mine"]

    supervisor.submit(GetBuyerInfoRequest(task_id="mine", session=session))
    assert supervisor.join("mine", timeout=5) is TaskStatus.COMPLETED
    assert len(supervisor.drain_results()) == 2

    supervisor._finish(old, failure_result(old.request, "mine", "stale"), TaskStatus.FAILED)

    assert supervisor.drain_results() == []
    assert supervisor.status("mine") is TaskStatus.COMPLETED
