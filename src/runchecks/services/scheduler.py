"""Delayed-call scheduling on the event loop.

``ScheduledTask`` owns at most one pending run. Scheduling again cancels the
pending run first, so a reschedule can never produce two concurrent firings.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def seconds_until_local_midnight(now: datetime, tz: tzinfo) -> float:
    """Seconds from ``now`` until the next midnight in ``tz``.

    The difference is taken between UTC instants: subtracting two datetimes
    that share a tzinfo compares wall-clock times and would be off by the DST
    shift on transition days.
    """

    local_now = now.astimezone(tz)
    next_midnight = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    delta = next_midnight.astimezone(timezone.utc) - local_now.astimezone(timezone.utc)
    return max(delta.total_seconds(), 0.0)


def local_date_string(now: datetime, tz: tzinfo) -> str:
    """``YYYY-MM-DD`` for ``now`` in ``tz``."""
    return now.astimezone(tz).strftime("%Y-%m-%d")


class ScheduledTask:
    def __init__(self, name: str) -> None:
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        """Run ``callback`` after ``delay_seconds``, replacing any pending run."""
        self.cancel()
        delay_seconds = max(delay_seconds, 0.0)
        self._task = asyncio.create_task(self._run(delay_seconds, callback), name=self._name)
        logger.debug("Scheduled %s in %.0f seconds", self._name, delay_seconds)

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        # A callback that reschedules itself must not cancel its own run.
        if task is asyncio.current_task():
            return
        task.cancel()
        logger.debug("Cancelled pending %s", self._name)

    async def _run(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(delay_seconds)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task %s failed", self._name)
