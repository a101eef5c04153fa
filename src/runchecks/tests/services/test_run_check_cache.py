from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from runchecks.common.errors import ExternalStoreError
from runchecks.common.models.messages import RunCheck, RunCheckInput
from runchecks.services.run_check_cache import RunCheckCache

LA = ZoneInfo("America/Los_Angeles")
NOW = datetime(2025, 1, 15, 18, 0, tzinfo=timezone.utc)


class _FakeStore:
    def __init__(self, loaded: list[RunCheck] | None = None, *, fail_append: bool = False) -> None:
        self.loaded = loaded or []
        self.fail_append = fail_append
        self.appended: list[RunCheck] = []
        self.loads = 0

    async def load_today_checks(self) -> list[RunCheck]:
        self.loads += 1
        return list(self.loaded)

    async def append_run_check(self, check: RunCheck) -> None:
        if self.fail_append:
            raise ExternalStoreError("sheet unavailable")
        self.appended.append(check)


def _input(run_name: str = "Bear Claw") -> RunCheckInput:
    return RunCheckInput(run_name=run_name, section="Front Side", patroller="Sam", check_time=NOW)


def _stored(check_id: str, run_name: str = "Grizzly") -> RunCheck:
    return RunCheck(
        id=check_id,
        run_name=run_name,
        section="Front Side",
        patroller="Alex",
        check_time=NOW - timedelta(minutes=5),
        created_at=NOW - timedelta(minutes=5),
    )


@pytest.mark.asyncio
async def test_in_memory_only_add_reports_not_saved() -> None:
    cache = RunCheckCache(tz=LA, clock=lambda: NOW)

    check, saved = await cache.add_check(_input())

    assert saved is False
    assert cache.get_checks() == [check]
    assert check.created_at == NOW
    assert cache.last_save_ok is None


@pytest.mark.asyncio
async def test_ids_are_unique() -> None:
    cache = RunCheckCache(tz=LA, clock=lambda: NOW)

    for _ in range(200):
        await cache.add_check(_input())

    ids = [c.id for c in cache.get_checks()]
    assert len(set(ids)) == 200


@pytest.mark.asyncio
async def test_store_append_success() -> None:
    store = _FakeStore()
    cache = RunCheckCache(tz=LA, store=store, clock=lambda: NOW)

    check, saved = await cache.add_check(_input())

    assert saved is True
    assert store.appended == [check]
    assert cache.last_save_ok is True


@pytest.mark.asyncio
async def test_failed_append_keeps_check_in_memory() -> None:
    store = _FakeStore(fail_append=True)
    cache = RunCheckCache(tz=LA, store=store, clock=lambda: NOW)

    check, saved = await cache.add_check(_input())

    assert saved is False
    assert cache.get_checks() == [check]
    assert cache.last_save_ok is False


@pytest.mark.asyncio
async def test_get_checks_returns_a_copy() -> None:
    cache = RunCheckCache(tz=LA, clock=lambda: NOW)
    await cache.add_check(_input())

    cache.get_checks().clear()

    assert len(cache.get_checks()) == 1


@pytest.mark.asyncio
async def test_initialize_loads_from_store_and_schedules_reload() -> None:
    store = _FakeStore([_stored("2025-01-15-0")])
    cache = RunCheckCache(tz=LA, store=store, clock=lambda: NOW)

    await cache.initialize()
    try:
        assert [c.id for c in cache.get_checks()] == ["2025-01-15-0"]
        assert cache.reload_pending
    finally:
        cache.shutdown()
    assert not cache.reload_pending


@pytest.mark.asyncio
async def test_reload_for_new_day_replaces_checks() -> None:
    store = _FakeStore()
    cache = RunCheckCache(tz=LA, store=store, clock=lambda: NOW)
    await cache.add_check(_input())

    store.loaded = [_stored("2025-01-16-0")]
    await cache.reload_for_new_day()

    assert [c.id for c in cache.get_checks()] == ["2025-01-16-0"]
    assert cache.last_save_ok is None


@pytest.mark.asyncio
async def test_reload_without_store_just_clears() -> None:
    cache = RunCheckCache(tz=LA, clock=lambda: NOW)
    await cache.add_check(_input())

    await cache.reload_for_new_day()

    assert cache.get_checks() == []


@pytest.mark.asyncio
async def test_midnight_reload_fires_in_configured_zone() -> None:
    # 23:59:59.9 in Los Angeles; UTC is already on the next day.
    clock = {"now": datetime(2025, 1, 16, 7, 59, 59, 900000, tzinfo=timezone.utc)}
    store = _FakeStore()
    cache = RunCheckCache(tz=LA, store=store, clock=lambda: clock["now"])

    await cache.initialize()
    await cache.add_check(_input())
    store.loaded = [_stored("2025-01-16-0")]
    clock["now"] = datetime(2025, 1, 16, 8, 0, 1, tzinfo=timezone.utc)

    try:
        await asyncio.sleep(0.3)
        assert store.loads == 2
        assert [c.id for c in cache.get_checks()] == ["2025-01-16-0"]
        # Rescheduled for the following midnight.
        assert cache.reload_pending
    finally:
        cache.shutdown()


@pytest.mark.asyncio
async def test_store_load_failure_leaves_cache_usable() -> None:
    class _BrokenStore(_FakeStore):
        async def load_today_checks(self) -> list[RunCheck]:
            raise ExternalStoreError("offline")

    cache = RunCheckCache(tz=LA, store=_BrokenStore(), clock=lambda: NOW)
    await cache.initialize()
    try:
        assert cache.get_checks() == []
        _, saved = await cache.add_check(_input())
        assert saved is True
    finally:
        cache.shutdown()
