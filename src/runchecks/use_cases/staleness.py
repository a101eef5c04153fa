"""Run freshness classification.

Pure functions of (runs, checks, now): no clock reads, no shared state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from runchecks.common.models.messages import Run, RunCheck

FRESH_MINUTES = 60
STALE_MINUTES = 120


class StalenessTier(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"

    @property
    def color(self) -> str:
        return {"fresh": "green", "aging": "yellow", "stale": "red"}[self.value]


@dataclass(frozen=True, slots=True)
class RunStatus:
    run: Run
    tier: StalenessTier
    last_check: RunCheck | None
    minutes_since_check: float | None

    @property
    def color(self) -> str:
        return self.tier.color

    @property
    def time_since(self) -> str:
        return format_time_since(self.minutes_since_check)


def classify_minutes(minutes: float | None) -> StalenessTier:
    if minutes is None:
        return StalenessTier.STALE
    if minutes < FRESH_MINUTES:
        return StalenessTier.FRESH
    if minutes < STALE_MINUTES:
        return StalenessTier.AGING
    return StalenessTier.STALE


def latest_checks_by_run(checks: Iterable[RunCheck]) -> dict[tuple[str, str], RunCheck]:
    """Most recent check (by check time) per exact (run name, section) pair."""

    latest: dict[tuple[str, str], RunCheck] = {}
    for check in checks:
        key = (check.run_name, check.section)
        current = latest.get(key)
        if current is None or check.check_time > current.check_time:
            latest[key] = check
    return latest


def calculate_run_statuses(
    runs: Iterable[Run], checks: Iterable[RunCheck], *, now: datetime
) -> list[RunStatus]:
    latest = latest_checks_by_run(checks)
    statuses: list[RunStatus] = []
    for run in runs:
        last_check = latest.get((run.name, run.section))
        minutes = (
            (now - last_check.check_time).total_seconds() / 60 if last_check is not None else None
        )
        statuses.append(
            RunStatus(
                run=run,
                tier=classify_minutes(minutes),
                last_check=last_check,
                minutes_since_check=minutes,
            )
        )
    return statuses


def group_runs_by_section(statuses: Iterable[RunStatus]) -> dict[str, list[RunStatus]]:
    grouped: dict[str, list[RunStatus]] = {}
    for status in statuses:
        grouped.setdefault(status.run.section, []).append(status)
    return grouped


def format_time_since(minutes: float | None) -> str:
    if minutes is None:
        return "Never"
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{math.floor(minutes)}m ago"

    hours = math.floor(minutes / 60)
    mins = math.floor(minutes % 60)
    if hours < 24:
        return f"{hours}h {mins}m ago" if mins > 0 else f"{hours}h ago"

    return f"{hours // 24}d ago"
