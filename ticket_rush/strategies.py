"""
Ticket Rush - Mode Strategies
Timed, Direct and Leak drivers over the acquisition state machine, plus the
auxiliary project / buyer lookups.
"""

import abc
import asyncio
import dataclasses
import logging
import time
from typing import Awaitable, Callable, Optional

from .api import PlatformApi
from .config import Config
from .countdown import CountdownSynchronizer
from .engine import AcquisitionStateMachine, TransitionKind
from .errors import ApiError, CountdownError
from .models import (
    GetBuyerInfoRequest,
    GetBuyerInfoResult,
    GetTicketInfoRequest,
    GetTicketInfoResult,
    GrabMode,
    GrabTicketRequest,
    GrabTicketResult,
    ProjectInfo,
    ScreenTicket,
)
from .session import TokenGenerator, random_salt

logger = logging.getLogger("TicketRush.Strategy")

Sleep = Callable[[float], Awaitable[None]]


def build_generator(request: GrabTicketRequest, sale_begin: int = 0) -> Optional[TokenGenerator]:
    """Fresh ctoken generator seeded from the sale start (or now)"""
    if request.token_generator_factory is None:
        return None
    seed = sale_begin if sale_begin > 0 else int(time.time())
    return request.token_generator_factory(seed, 0, random_salt())


def matches_skip_words(ticket: ScreenTicket, skip_words) -> Optional[str]:
    """Return the matched keyword, if the screen or ticket title contains one"""
    screen_title = ticket.screen_name.lower()
    ticket_title = ticket.desc.lower()
    for word in skip_words:
        needle = word.lower()
        if not needle:
            continue
        if needle in screen_title or needle in ticket_title:
            return word
    return None


# ==================== Strategies ====================

class ModeStrategy(abc.ABC):
    def __init__(self, api: PlatformApi, sleep: Sleep = asyncio.sleep):
        self.api = api
        self.sleep = sleep

    @abc.abstractmethod
    async def run(self, request: GrabTicketRequest, task_id: str) -> GrabTicketResult:
        pass

    def _machine(self, request: GrabTicketRequest, task_id: str, generator, **kwargs) -> AcquisitionStateMachine:
        return AcquisitionStateMachine(request, self.api, generator=generator, task_id=task_id, sleep=self.sleep, **kwargs)

    async def _attempt(self, request: GrabTicketRequest, task_id: str, sale_begin: int) -> GrabTicketResult:
        machine = self._machine(request, task_id, build_generator(request, sale_begin))
        transition = await machine.run()
        return transition.result


class DirectStrategy(ModeStrategy):
    """Attempt immediately"""

    async def run(self, request: GrabTicketRequest, task_id: str) -> GrabTicketResult:
        logger.info(f"[DIRECT] Task {task_id} starting immediately")
        sale_begin = request.project_info.sale_begin if request.project_info else 0
        return await self._attempt(request, task_id, sale_begin)


class TimedStrategy(ModeStrategy):
    """Wait for the sale to open, then attempt"""

    def __init__(self, api: PlatformApi, sleep: Sleep = asyncio.sleep, countdown: Optional[CountdownSynchronizer] = None):
        super().__init__(api, sleep)
        self.countdown = countdown or CountdownSynchronizer(server_clock=api.fetch_server_time, sleep=sleep)

    async def run(self, request: GrabTicketRequest, task_id: str) -> GrabTicketResult:
        project = request.project_info
        if project is None:
            logger.info(f"[TIMED] No project snapshot, fetching {request.project_id} for its start time")
            try:
                project = await asyncio.to_thread(self.api.get_project, request.project_id)
            except ApiError as e:
                logger.error(f"[TIMED] Could not load project {request.project_id}: {e}")
                return GrabTicketResult.failure(
                    task_id, request.uid, f"Could not load project details to learn the sale start: {e}", e.code
                )
            request = dataclasses.replace(request, project_info=project)

        try:
            await self.countdown.wait_until_open(project_info=project)
        except CountdownError as e:
            logger.error(f"[TIMED] {e}")
            return GrabTicketResult.failure(task_id, request.uid, f"Countdown failed: {e}")

        return await self._attempt(request, task_id, project.sale_begin)


class LeakStrategy(ModeStrategy):
    """
    Poll the project listing and attempt every clickable ticket type,
    moving on when a ticket's order budget runs out or its token request is
    refused. Token failures share one budget across the whole task.
    """

    def __init__(
        self,
        api: PlatformApi,
        sleep: Sleep = asyncio.sleep,
        poll_interval: float = Config.LEAK_POLL_INTERVAL,
        require_sale_flag: Optional[bool] = None,
    ):
        super().__init__(api, sleep)
        self.poll_interval = poll_interval
        self.require_sale_flag = Config.LEAK_REQUIRE_SALE_FLAG if require_sale_flag is None else require_sale_flag

    def _gate(self, project: ProjectInfo, request: GrabTicketRequest, task_id: str) -> Optional[GrabTicketResult]:
        if project.id_bind not in Config.REAL_NAME_BINDINGS:
            logger.error(f"[LEAK] Project {project.id} is not real-name bound (id_bind={project.id_bind})")
            return GrabTicketResult.failure(
                task_id, request.uid, "Leak mode only supports real-name ticket projects"
            )
        if self.require_sale_flag and project.sale_flag_number not in Config.LEAK_SALE_FLAGS:
            logger.error(f"[LEAK] Project {project.id} sale flag {project.sale_flag_number} not eligible")
            return GrabTicketResult.failure(
                task_id, request.uid, f"Project is not on sale (sale flag {project.sale_flag_number})"
            )
        return None

    async def run(self, request: GrabTicketRequest, task_id: str) -> GrabTicketResult:
        logger.info(f"[LEAK] Task {task_id} watching project {request.project_id}")
        token_failures = 0
        while True:
            try:
                project = await asyncio.to_thread(self.api.get_project, request.project_id)
            except ApiError as e:
                logger.error(f"[LEAK] Failed to load project: {e}")
                await self.sleep(Config.LEAK_PROJECT_ERROR_BACKOFF)
                continue

            rejected = self._gate(project, request, task_id)
            if rejected is not None:
                return rejected

            for screen in project.screen_list:
                if not screen.clickable:
                    continue
                for ticket in screen.ticket_list:
                    if not ticket.clickable:
                        continue
                    word = matches_skip_words(ticket, request.skip_words)
                    if word is not None:
                        logger.info(f"[LEAK] Skipping {ticket.screen_name} {ticket.desc} (keyword '{word}')")
                        continue

                    logger.info(f"[LEAK] 🎯 {ticket.screen_name or screen.name} {ticket.desc} available, attempting")
                    target = dataclasses.replace(
                        request,
                        screen_id=str(screen.id),
                        ticket_id=str(ticket.id),
                        is_hot=project.is_hot,
                        id_bind=project.id_bind,
                        project_info=project,
                    )
                    machine = self._machine(
                        target,
                        task_id,
                        build_generator(request, screen.sale_start or project.sale_begin),
                        switch_on_exhaustion=True,
                        confirm_retry_delay=Config.LEAK_CONFIRM_INTERVAL,
                        token_failures=token_failures,
                    )
                    transition = await machine.run()
                    token_failures = machine.ctx.token_retries
                    if transition.kind is TransitionKind.DONE:
                        return transition.result

            logger.info(f"[LEAK] All screens checked, polling again in {self.poll_interval}s")
            await self.sleep(self.poll_interval)


def strategy_for(mode: GrabMode, api: PlatformApi, sleep: Sleep = asyncio.sleep) -> ModeStrategy:
    if mode == GrabMode.TIMED:
        return TimedStrategy(api, sleep)
    if mode == GrabMode.DIRECT:
        return DirectStrategy(api, sleep)
    if mode == GrabMode.LEAK:
        return LeakStrategy(api, sleep)
    raise ValueError(f"Unknown grab mode: {mode}")


# ==================== Auxiliary Jobs ====================

async def fetch_ticket_info(request: GetTicketInfoRequest, api: PlatformApi, task_id: str) -> GetTicketInfoResult:
    try:
        project = await asyncio.to_thread(api.get_project, request.project_id)
    except ApiError as e:
        logger.error(f"[INFO] Project {request.project_id} lookup failed: {e}")
        return GetTicketInfoResult(task_id=task_id, uid=request.uid, success=False, message=str(e))
    return GetTicketInfoResult(
        task_id=task_id, uid=request.uid, success=True, message=f"Loaded {project.name}", ticket_info=project
    )


async def fetch_buyer_info(request: GetBuyerInfoRequest, api: PlatformApi, task_id: str) -> GetBuyerInfoResult:
    try:
        buyers = await asyncio.to_thread(api.get_buyer_info)
    except ApiError as e:
        logger.error(f"[INFO] Buyer list lookup failed: {e}")
        return GetBuyerInfoResult(task_id=task_id, uid=request.uid, success=False, message=str(e))
    return GetBuyerInfoResult(
        task_id=task_id, uid=request.uid, success=True, message=f"{len(buyers)} buyer(s)", buyers=buyers
    )
