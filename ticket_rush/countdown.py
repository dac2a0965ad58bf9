"""
Ticket Rush - Countdown Synchronizer
Reconciles the platform clock with the local one and sleeps until sale opening.
"""

import asyncio
import datetime
import logging
import time
from typing import Awaitable, Callable, Optional

import pytz

from .config import Config
from .errors import CountdownError
from .models import ProjectInfo

logger = logging.getLogger("TicketRush.Countdown")


def normalize_timestamp(ts: int) -> int:
    """Millisecond timestamps (> 10^10) are reduced to seconds"""
    if ts > Config.MILLISECOND_TIMESTAMP_FLOOR:
        logger.debug(f"[WAIT] Millisecond timestamp detected, converting: {ts}")
        return ts // 1000
    return ts


class CountdownSynchronizer:
    def __init__(
        self,
        server_clock: Optional[Callable[[], int]] = None,
        local_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            server_clock: Returns platform unix seconds, 0 when unavailable
                (PlatformApi.fetch_server_time). None means local time only.
            local_clock: Fallback wall clock
            monotonic: Clock the wait loop measures against
            sleep: Awaitable sleep, injectable for tests
        """
        self.server_clock = server_clock
        self.local_clock = local_clock
        self.monotonic = monotonic
        self.sleep = sleep
        self.timezone = pytz.timezone(Config.TIMEZONE)

    # ==================== Time Management ====================

    def now(self) -> float:
        server_now = 0
        if self.server_clock is not None:
            try:
                server_now = int(self.server_clock() or 0)
            except Exception as e:
                logger.debug(f"[WAIT] Server clock failed: {e}")
                server_now = 0
        if server_now <= 0:
            logger.debug("[WAIT] Using local clock")
            return self.local_clock()
        return float(server_now)

    def format_local(self, ts: float) -> str:
        moment = datetime.datetime.fromtimestamp(ts, tz=pytz.UTC).astimezone(self.timezone)
        return moment.strftime("%Y-%m-%d %H:%M:%S %Z")

    def remaining_seconds(self, sale_begin_ts: Optional[int] = None, project_info: Optional[ProjectInfo] = None) -> float:
        """
        Seconds until sale opening (negative once open).

        Raises CountdownError when neither a timestamp nor a project snapshot
        carrying one is available.
        """
        if not sale_begin_ts and project_info is not None:
            sale_begin_ts = project_info.sale_begin
        if not sale_begin_ts:
            raise CountdownError("Sale start time unknown: no timestamp and no project snapshot")

        sale_begin = normalize_timestamp(int(sale_begin_ts))
        now = self.now()
        remaining = sale_begin - now
        logger.debug(f"[WAIT] sale_begin={sale_begin} now={now:.0f} remaining={remaining:.1f}s")
        return float(remaining)

    async def wait_until_open(
        self, sale_begin_ts: Optional[int] = None, project_info: Optional[ProjectInfo] = None
    ) -> float:
        """
        Sleep until the sale opens: 15s steps while far out, 1s steps inside
        the last 20s, then one short final sleep.

        Returns:
            The remaining seconds measured before waiting
        """
        remaining = await asyncio.to_thread(self.remaining_seconds, sale_begin_ts, project_info)
        if remaining <= 0:
            logger.info("[WAIT] Sale already open")
            return remaining

        opens_at = self.local_clock() + remaining
        logger.info(f"[WAIT] ⏳ Sale opens at {self.format_local(opens_at)} ({remaining:.1f}s)")
        deadline = self.monotonic() + remaining

        left = deadline - self.monotonic()
        while left > Config.COUNTDOWN_COARSE_THRESHOLD:
            await self.sleep(Config.COUNTDOWN_COARSE_STEP)
            left = deadline - self.monotonic()
            logger.info(f"[WAIT] {left:.1f}s to go")

        while left > Config.COUNTDOWN_FINE_THRESHOLD:
            await self.sleep(Config.COUNTDOWN_FINE_STEP)
            left = deadline - self.monotonic()
            logger.info(f"[WAIT] {left:.1f}s to go")

        await self.sleep(Config.COUNTDOWN_FINAL_SLEEP)
        logger.info("[WAIT] 🚀 Sale open, starting")
        return remaining
