"""In-memory store of today's run checks.

The cache is the authority for the current day. When a Google Sheets store is
configured every new check is also appended there, best-effort: a failed
append is logged and reported to the caller, the in-memory record stays.

At local midnight (configured timezone) the cache is cleared and, if a store
is configured, reloaded from the new day's spreadsheet.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional, Protocol

from runchecks.common.models.messages import RunCheck, RunCheckInput
from runchecks.services.scheduler import ScheduledTask, seconds_until_local_midnight

logger = logging.getLogger(__name__)


class RunCheckStore(Protocol):
    async def load_today_checks(self) -> list[RunCheck]: ...

    async def append_run_check(self, check: RunCheck) -> None: ...


def new_check_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(5)}"


class RunCheckCache:
    def __init__(
        self,
        *,
        tz: tzinfo,
        store: Optional[RunCheckStore] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._tz = tz
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._checks: list[RunCheck] = []
        self._last_refresh = self._clock()
        self._last_save_ok: Optional[bool] = None
        self._midnight_reload = ScheduledTask("midnight-reload")

    @property
    def store(self) -> Optional[RunCheckStore]:
        return self._store

    @property
    def last_refresh(self) -> datetime:
        return self._last_refresh

    @property
    def last_save_ok(self) -> Optional[bool]:
        """Outcome of the most recent store append; ``None`` before the first one."""
        return self._last_save_ok

    @property
    def reload_pending(self) -> bool:
        return self._midnight_reload.pending

    async def initialize(self) -> None:
        if self._store is not None:
            await self._load_from_store()
            logger.info("Run check cache initialized with %d checks from Google Sheets", len(self._checks))
        else:
            logger.info("Run check cache initialized (in-memory only)")
        self.schedule_midnight_reload()

    def get_checks(self) -> list[RunCheck]:
        return list(self._checks)

    async def add_check(self, check_input: RunCheckInput) -> tuple[RunCheck, bool]:
        """Append a check; returns it with whether the store append succeeded."""

        check = RunCheck(
            id=new_check_id(),
            run_name=check_input.run_name,
            section=check_input.section,
            patroller=check_input.patroller,
            check_time=check_input.check_time,
            created_at=self._clock(),
        )
        self._checks.append(check)

        if self._store is None:
            return check, False

        try:
            await self._store.append_run_check(check)
        except Exception as e:
            logger.error("Failed to append check %s to sheet (kept in memory): %s", check.id, e)
            self._last_save_ok = False
            return check, False

        self._last_save_ok = True
        return check, True

    def clear_cache(self) -> None:
        self._checks = []
        self._last_refresh = self._clock()

    async def reload_for_new_day(self) -> None:
        """Clear, then repopulate from the store if one is configured."""

        logger.info("Midnight reload triggered")
        self.clear_cache()
        self._last_save_ok = None
        if self._store is not None:
            await self._load_from_store()

    def schedule_midnight_reload(self) -> None:
        delay = seconds_until_local_midnight(self._clock(), self._tz)
        self._midnight_reload.schedule(delay, self._on_midnight)
        logger.debug("Scheduled midnight reload in %d minutes", round(delay / 60))

    async def _on_midnight(self) -> None:
        try:
            await self.reload_for_new_day()
        finally:
            self.schedule_midnight_reload()

    async def _load_from_store(self) -> None:
        try:
            loaded = await self._store.load_today_checks()
        except Exception as e:
            logger.error("Error loading checks from spreadsheet: %s", e)
            return
        self._checks = loaded + self._checks
        self._last_refresh = self._clock()

    def shutdown(self) -> None:
        self._midnight_reload.cancel()
