"""
Minute-aligned tick loop.

Uses APScheduler's AsyncIOScheduler with a cron trigger on second 0, so
ticks stay on minute boundaries instead of drifting from the start time.
Late ticks are coalesced and dropped after a short grace period: minutes
missed while the process was suspended are never evaluated afterwards.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

TICK_JOB_ID = "taskexec-tick"


def minute_floor(moment: datetime) -> datetime:
    """Truncate a datetime to the start of its minute."""
    return moment.replace(second=0, microsecond=0)


class Ticker:
    """
    Calls `on_tick(now)` once per minute, at second 0.

    `start()` needs a running event loop. Calling it again while started
    keeps a single tick job.
    """

    def __init__(
        self,
        on_tick: Callable[[datetime], Awaitable[None]],
        clock: Callable[[], datetime] = datetime.now,
        misfire_grace_time: int = 5
    ):
        """
        Initialize the ticker.

        Args:
            on_tick: Coroutine function run on every tick
            clock: Source of the current local time
            misfire_grace_time: Seconds a late tick may still run
        """
        self.on_tick = on_tick
        self.clock = clock
        self.misfire_grace_time = misfire_grace_time
        self.scheduler: Optional[AsyncIOScheduler] = None

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
            self._setup_event_listeners(self.scheduler)
        if not self.scheduler.running:
            self.scheduler.start()
        return self.scheduler

    def _setup_event_listeners(self, scheduler: AsyncIOScheduler):
        """Log tick failures and dropped ticks."""

        def tick_error_listener(event):
            logger.error(f"Tick raised exception: {event.exception}")

        def tick_missed_listener(event):
            logger.warning(f"Tick for {event.scheduled_run_time} missed, skipping it")

        scheduler.add_listener(tick_error_listener, EVENT_JOB_ERROR)
        scheduler.add_listener(tick_missed_listener, EVENT_JOB_MISSED)

    async def _fire(self):
        await self.on_tick(minute_floor(self.clock()))

    def start(self):
        """Arm the tick for the next minute boundary."""
        scheduler = self._ensure_scheduler()
        scheduler.add_job(
            self._fire,
            CronTrigger(second=0),
            id=TICK_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=self.misfire_grace_time
        )
        logger.debug(f"Tick armed, next at {self.next_tick}")

    def stop(self):
        """Cancel pending ticks. `start()` re-arms."""
        if self.scheduler is not None and self.scheduler.get_job(TICK_JOB_ID):
            self.scheduler.remove_job(TICK_JOB_ID)
            logger.debug("Tick disarmed")

    def shutdown(self):
        """Stop ticking and release the underlying scheduler."""
        self.stop()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.get_job(TICK_JOB_ID) is not None

    @property
    def next_tick(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        job = self.scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job else None
