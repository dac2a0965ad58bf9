import time

import pytest

from ticket_rush.countdown import CountdownSynchronizer, normalize_timestamp
from ticket_rush.errors import CountdownError
from ticket_rush.models import ProjectInfo

from fakes import RecordingSleep


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now


def _clock_down():
    raise ConnectionError("clock endpoint unreachable")


def test_fallback_to_local_clock_on_failure():
    sync = CountdownSynchronizer(server_clock=_clock_down)
    remaining = sync.remaining_seconds(int(time.time()) + 25)
    assert remaining == pytest.approx(25, abs=1)


def test_zero_server_time_falls_back_to_local():
    local = FakeClock(1_700_000_000)
    sync = CountdownSynchronizer(server_clock=lambda: 0, local_clock=local)
    assert sync.remaining_seconds(1_700_000_030) == pytest.approx(30)


def test_server_clock_preferred_when_available():
    sync = CountdownSynchronizer(server_clock=lambda: 1_700_000_000, local_clock=FakeClock(1_600_000_000))
    assert sync.remaining_seconds(1_700_000_005) == pytest.approx(5)


def test_millisecond_timestamp_normalized():
    local = FakeClock(1_699_999_990)
    sync = CountdownSynchronizer(local_clock=local)
    assert normalize_timestamp(1_700_000_000_000) == 1_700_000_000
    assert sync.remaining_seconds(1_700_000_000_000) == sync.remaining_seconds(1_700_000_000)
    assert sync.remaining_seconds(1_700_000_000) == pytest.approx(10)


def test_sale_begin_taken_from_project_snapshot():
    sync = CountdownSynchronizer(local_clock=FakeClock(1_000))
    assert sync.remaining_seconds(project_info=ProjectInfo(id=1, sale_begin=1_060)) == pytest.approx(60)


def test_missing_sale_begin_raises():
    sync = CountdownSynchronizer(local_clock=FakeClock(1_000))
    with pytest.raises(CountdownError):
        sync.remaining_seconds(None, ProjectInfo(id=1))


@pytest.mark.asyncio
async def test_two_phase_wait_schedule():
    mono = FakeClock(0.0)
    sleep = RecordingSleep()

    async def advancing_sleep(delay):
        await sleep(delay)
        mono.now += delay

    sync = CountdownSynchronizer(local_clock=FakeClock(1_000), monotonic=mono, sleep=advancing_sleep)
    remaining = await sync.wait_until_open(1_050)

    assert remaining == pytest.approx(50)
    assert sleep.calls == [15.0, 15.0] + [1.0] * 19 + [0.8]


@pytest.mark.asyncio
async def test_no_wait_when_sale_already_open():
    sleep = RecordingSleep()
    sync = CountdownSynchronizer(local_clock=FakeClock(2_000), sleep=sleep)
    remaining = await sync.wait_until_open(1_000)
    assert remaining < 0
    assert sleep.calls == []
