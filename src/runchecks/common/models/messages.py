"""
Domain records and wire models for runs and run checks.

"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Run:
    name: str
    section: str


@dataclass(frozen=True, slots=True)
class RunCheckInput:
    run_name: str
    section: str
    patroller: str
    check_time: datetime


@dataclass(frozen=True, slots=True)
class RunCheck:
    id: str
    run_name: str
    section: str
    patroller: str
    check_time: datetime
    created_at: datetime


def to_epoch_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def from_epoch_seconds(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class WebsocketMessageType(str, Enum):
    RUNCHECK_NEW = "runcheck:new"


class NotificationType(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunDTO(CamelModel):
    name: str
    section: str

    @classmethod
    def from_run(cls, run: Run) -> "RunDTO":
        return cls(name=run.name, section=run.section)


class RunCheckDTO(CamelModel):
    id: str
    run_name: str
    section: str
    patroller: str
    check_time: int
    created_at: int

    @classmethod
    def from_check(cls, check: RunCheck) -> "RunCheckDTO":
        return cls(
            id=check.id,
            run_name=check.run_name,
            section=check.section,
            patroller=check.patroller,
            check_time=to_epoch_seconds(check.check_time),
            created_at=to_epoch_seconds(check.created_at),
        )


class RunCheckSubmitItem(CamelModel):
    """One submitted check; fields are optional so validation can report them."""

    run_name: str | None = None
    section: str | None = None
    patroller: str | None = None
    check_time: float | None = None


class RunCheckSubmitRequest(CamelModel):
    checks: list[RunCheckSubmitItem] | None = None


class RunCheckSubmitResponse(CamelModel):
    checks: list[RunCheckDTO]
    google_drive_saved: bool


class RunStatusDTO(CamelModel):
    """Freshness of one run: tier, display color and a human 'time since'."""

    name: str
    section: str
    tier: str
    color: str
    time_since: str
    last_check_time: int | None = None
    last_patroller: str | None = None


class Notification(BaseModel):
    type: Literal["info", "warning", "error"]
    message: str


class RunStatusResponse(BaseModel):
    runs: list[RunDTO]
    checks: list[RunCheckDTO]
    patrollers: list[str]
    timezone: str
    statuses: list[RunStatusDTO] = Field(default_factory=list)
    notifications: list[Notification] = Field(default_factory=list)
