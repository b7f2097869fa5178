"""
Session countdown driven by an absolute deadline
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Callable, Optional

from exam_proctor.config import settings
from exam_proctor.models.session import utcnow

logger = logging.getLogger(__name__)

WARNING_THRESHOLD_SECONDS = 300
DANGER_THRESHOLD_SECONDS = 60


def format_duration(seconds: int) -> str:
    """mm:ss, or h:mm:ss once an hour or more remains"""
    seconds = max(0, int(seconds))
    hrs, rest = divmod(seconds, 3600)
    mins, secs = divmod(rest, 60)
    if hrs > 0:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"


class SessionTimer:
    """
    Countdown to `deadline_at`.

    Remaining time is recomputed from the deadline on every tick instead of
    being decremented, so a suspended loop never drifts. `on_expire` fires
    exactly once.
    """

    def __init__(
        self,
        deadline_at: datetime,
        on_expire: Callable[[], None],
        clock: Callable[[], datetime] = utcnow,
        tick_seconds: Optional[float] = None
    ):
        self.deadline_at = deadline_at
        self.on_expire = on_expire
        self.clock = clock
        self.tick_seconds = settings.TIMER_TICK_SECONDS if tick_seconds is None else tick_seconds
        self._expired = False
        self._task: Optional[asyncio.Task] = None

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remaining_seconds(self) -> int:
        delta = (self.deadline_at - self.clock()).total_seconds()
        return max(0, math.ceil(delta))

    def tick(self) -> int:
        remaining = self.remaining_seconds()
        if remaining <= 0 and not self._expired:
            self._expired = True
            logger.info("Session timer expired")
            self.on_expire()
        return remaining

    def format_remaining(self) -> str:
        return format_duration(self.remaining_seconds())

    def urgency(self) -> str:
        remaining = self.remaining_seconds()
        if remaining <= DANGER_THRESHOLD_SECONDS:
            return "danger"
        if remaining <= WARNING_THRESHOLD_SECONDS:
            return "warning"
        return "normal"

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="session-timer")

    async def _run(self) -> None:
        while True:
            self.tick()
            if self._expired:
                return
            await asyncio.sleep(self.tick_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
