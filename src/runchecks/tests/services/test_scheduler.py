from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from runchecks.services.scheduler import ScheduledTask, local_date_string, seconds_until_local_midnight


def test_seconds_until_midnight_in_utc() -> None:
    now = datetime(2025, 1, 15, 23, 0, tzinfo=timezone.utc)
    assert seconds_until_local_midnight(now, timezone.utc) == 3600


def test_seconds_until_midnight_uses_configured_zone() -> None:
    # 22:30 in Los Angeles (PST, UTC-8).
    now = datetime(2025, 1, 16, 6, 30, tzinfo=timezone.utc)
    assert seconds_until_local_midnight(now, ZoneInfo("America/Los_Angeles")) == 90 * 60


def test_seconds_until_midnight_on_spring_forward_day() -> None:
    # 2025-03-09 00:00 PST -> the day is only 23 hours long.
    now = datetime(2025, 3, 9, 8, 0, tzinfo=timezone.utc)
    assert seconds_until_local_midnight(now, ZoneInfo("America/Los_Angeles")) == 23 * 3600


def test_seconds_until_midnight_on_fall_back_day() -> None:
    # 2025-11-02 00:00 PDT -> the day is 25 hours long.
    now = datetime(2025, 11, 2, 7, 0, tzinfo=timezone.utc)
    assert seconds_until_local_midnight(now, ZoneInfo("America/Los_Angeles")) == 25 * 3600


def test_seconds_until_midnight_with_fractional_offset() -> None:
    # 23:00 in Kolkata (UTC+5:30).
    now = datetime(2025, 1, 15, 17, 30, tzinfo=timezone.utc)
    assert seconds_until_local_midnight(now, ZoneInfo("Asia/Kolkata")) == 3600


def test_local_date_string_crosses_utc_date() -> None:
    now = datetime(2025, 1, 16, 3, 0, tzinfo=timezone.utc)
    assert local_date_string(now, ZoneInfo("America/Los_Angeles")) == "2025-01-15"
    assert local_date_string(now, timezone.utc) == "2025-01-16"


@pytest.mark.asyncio
async def test_reschedule_replaces_pending_run() -> None:
    fired: list[str] = []
    task = ScheduledTask("test")

    async def first() -> None:
        fired.append("first")

    async def second() -> None:
        fired.append("second")

    task.schedule(0.05, first)
    task.schedule(0.05, second)
    await asyncio.sleep(0.2)

    assert fired == ["second"]
    assert not task.pending


@pytest.mark.asyncio
async def test_cancel_prevents_firing() -> None:
    fired: list[int] = []
    task = ScheduledTask("test")

    async def callback() -> None:
        fired.append(1)

    task.schedule(0.05, callback)
    assert task.pending
    task.cancel()
    await asyncio.sleep(0.1)

    assert fired == []
    assert not task.pending


@pytest.mark.asyncio
async def test_callback_can_reschedule_itself() -> None:
    runs: list[int] = []
    task = ScheduledTask("loop")

    async def callback() -> None:
        runs.append(len(runs))
        if len(runs) < 3:
            task.schedule(0.01, callback)

    task.schedule(0.01, callback)
    await asyncio.sleep(0.2)

    assert runs == [0, 1, 2]


@pytest.mark.asyncio
async def test_failing_callback_is_contained() -> None:
    task = ScheduledTask("boom")

    async def callback() -> None:
        raise RuntimeError("boom")

    task.schedule(0, callback)
    await asyncio.sleep(0.05)

    assert not task.pending
