"""Validation of submitted run check batches.

The whole batch is checked before anything is stored; the first bad item
rejects the batch.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

from runchecks.common.errors import SubmissionValidationError
from runchecks.common.models.messages import RunCheckInput, from_epoch_seconds

MAX_FUTURE = timedelta(minutes=15)
MAX_PAST = timedelta(hours=24)


def validate_check_time(check_time: datetime, *, now: datetime) -> None:
    if check_time > now + MAX_FUTURE:
        raise SubmissionValidationError("Check time cannot be more than 15 minutes in the future")
    if check_time < now - MAX_PAST:
        raise SubmissionValidationError("Check time cannot be more than 24 hours in the past")


def validate_submission(items: Iterable[Any] | None, *, now: datetime) -> list[RunCheckInput]:
    """Turn submitted items into check inputs, in order, or raise.

    Items need ``run_name``, ``section``, ``patroller`` and ``check_time``
    (epoch seconds) attributes.
    """

    items = list(items or [])
    if not items:
        raise SubmissionValidationError("Checks array is required")

    validated: list[RunCheckInput] = []
    for item in items:
        run_name = (item.run_name or "").strip()
        section = (item.section or "").strip()
        patroller = (item.patroller or "").strip()
        if not run_name or not section or not patroller or not item.check_time:
            raise SubmissionValidationError("Missing required fields")

        try:
            check_time = from_epoch_seconds(item.check_time)
        except (OverflowError, OSError, ValueError) as e:
            raise SubmissionValidationError("Invalid check time") from e
        validate_check_time(check_time, now=now)

        validated.append(
            RunCheckInput(
                run_name=run_name,
                section=section,
                patroller=patroller,
                check_time=check_time,
            )
        )
    return validated
