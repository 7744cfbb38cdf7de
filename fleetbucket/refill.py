"""Background task that keeps a bucket topped up while it holds the lease."""

from __future__ import annotations

import asyncio
from enum import Enum

import structlog

from .fault import FaultCell
from .lease import LeaseManager
from .token_queue import TokenQueue

logger = structlog.get_logger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    ACTIVE = "active"
    STOPPED = "stopped"
    FAULTED = "faulted"


class RefillLoop:
    """Acquiring/Active state machine run as an owned, stoppable task.

    While acquiring, the loop sleeps one cadence and then tries to claim the
    lease. Once active it ticks immediately and then once per cadence: check
    the queue length, push one token when under capacity, renew the lease. The
    first store error is posted to the fault cell and ends the loop for good;
    nothing is retried.
    """

    def __init__(
        self,
        *,
        lease: LeaseManager,
        queue: TokenQueue,
        capacity: int,
        cadence: float,
        faults: FaultCell,
        name: str = "",
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if cadence <= 0:
            raise ValueError("cadence must be positive")
        self._lease = lease
        self._queue = queue
        self._capacity = capacity
        self._cadence = cadence
        self._faults = faults
        self._state = LoopState.IDLE
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._log = logger.bind(bucket=name, owner=lease.owner_id)

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._state = LoopState.ACQUIRING
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Signal the loop to stop, wait for it and give up the lease."""
        self._stop_event.set()
        await self.join()
        if not self._lease.held:
            return
        try:
            await self._lease.release()
        except Exception:
            self._log.exception("lease_release_failed")

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        self._log.info("refill_loop_started", capacity=self._capacity, cadence=self._cadence)
        loop = asyncio.get_running_loop()
        next_tick = 0.0
        try:
            while not self._stop_event.is_set():
                if self._state is LoopState.ACQUIRING:
                    if not await self._sleep(self._cadence):
                        break
                    lease = await self._lease.try_acquire_or_takeover()
                    if lease is None:
                        continue
                    self._log.info("lease_acquired", expiry=lease.expiry)
                    self._state = LoopState.ACTIVE
                    # first tick fires as soon as the lease is taken
                    next_tick = loop.time()
                    continue

                if not await self._sleep(next_tick - loop.time()):
                    break
                next_tick = self._advance(next_tick, loop.time())
                await self._tick()
        except Exception as exc:
            self._state = LoopState.FAULTED
            self._faults.post(exc)
            self._log.error("refill_loop_faulted", error=str(exc), exc_info=True)
            return
        self._state = LoopState.STOPPED
        self._log.info("refill_loop_stopped")

    async def _tick(self) -> None:
        tokens = await self._queue.length()
        if tokens < self._capacity:
            await self._queue.push()
            self._log.debug("token_pushed", tokens=tokens + 1)
        if not await self._lease.renew():
            self._log.warning("lease_lost")
            self._state = LoopState.ACQUIRING

    def _advance(self, scheduled: float, now: float) -> float:
        # ticks missed while a tick ran late are dropped, not replayed
        scheduled += self._cadence
        if scheduled <= now:
            missed = int((now - scheduled) // self._cadence) + 1
            scheduled += missed * self._cadence
        return scheduled

    async def _sleep(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; ``False`` if a stop was requested meanwhile."""
        if delay <= 0:
            return not self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False
