"""Run Checks API Router.

Run catalog, today's checks, check submission and the combined status view
used by the dashboard.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from runchecks.auth.auth_utils import AuthenticatedUser, get_current_user
from runchecks.common.database.repositories import GoogleOAuthRepository
from runchecks.common.errors import SubmissionValidationError
from runchecks.common.models.messages import (
    Notification,
    RunCheckDTO,
    RunCheckSubmitRequest,
    RunCheckSubmitResponse,
    RunDTO,
    RunStatusDTO,
    RunStatusResponse,
    WebsocketMessageType,
    to_epoch_seconds,
)
from runchecks.services.user_service import get_all_patrollers
from runchecks.use_cases.staleness import RunStatus, calculate_run_statuses
from runchecks.use_cases.submission import validate_submission

logger = logging.getLogger(__name__)

runcheck_router = APIRouter(prefix="/api", tags=["Run Checks"])


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _status_dto(status: RunStatus) -> RunStatusDTO:
    last = status.last_check
    return RunStatusDTO(
        name=status.run.name,
        section=status.run.section,
        tier=status.tier.value,
        color=status.color,
        time_since=status.time_since,
        last_check_time=to_epoch_seconds(last.check_time) if last else None,
        last_patroller=last.patroller if last else None,
    )


async def _collect_notifications(request: Request) -> list[Notification]:
    state = request.app.state
    config = state.config
    notifications: list[Notification] = []

    if config.RUN_PROVIDER == "sheets" and not config.is_production:
        notifications.append(
            Notification(
                type="info",
                message="Google Sheets is disabled outside production; run checks are kept in memory only.",
            )
        )

    if state.cache.last_save_ok is False:
        notifications.append(
            Notification(
                type="warning",
                message="Recent run checks could not be saved to Google Drive. They are kept in memory for today.",
            )
        )

    try:
        async with state.db.session() as session:
            record = await GoogleOAuthRepository(session).get_latest()
            inactive = record is not None and not record.is_active
    except Exception as e:
        logger.error("Failed to read Google OAuth status: %s", e)
        inactive = False
    if inactive:
        notifications.append(
            Notification(
                type="error",
                message="Google Drive connection needs attention. An admin should re-link Google Drive.",
            )
        )
    return notifications


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@runcheck_router.get("/runs")
async def get_runs(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    runs = request.app.state.run_provider.get_runs()
    return {"runs": [RunDTO.from_run(r).model_dump(by_alias=True) for r in runs]}


@runcheck_router.get("/runchecks/today")
async def get_today_checks(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    checks = request.app.state.cache.get_checks()
    return {"checks": [RunCheckDTO.from_check(c).model_dump(by_alias=True) for c in checks]}


@runcheck_router.get("/patrollers")
async def get_patrollers(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    try:
        patrollers = await get_all_patrollers(request.app.state.db, request.app.state.config)
    except Exception as e:
        logger.error("Error fetching patrollers: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"patrollers": patrollers}


@runcheck_router.get("/run_status", response_model=RunStatusResponse)
async def get_run_status(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    """Everything the dashboard needs in one call."""

    state = request.app.state
    runs = state.run_provider.get_runs()
    checks = state.cache.get_checks()
    try:
        patrollers = await get_all_patrollers(state.db, state.config)
    except Exception as e:
        logger.error("Error fetching patrollers: %s", e)
        patrollers = list(state.config.patrollers)

    statuses = calculate_run_statuses(runs, checks, now=_now())
    return RunStatusResponse(
        runs=[RunDTO.from_run(r) for r in runs],
        checks=[RunCheckDTO.from_check(c) for c in checks],
        patrollers=patrollers,
        timezone=state.config.TIMEZONE,
        statuses=[_status_dto(s) for s in statuses],
        notifications=await _collect_notifications(request),
    )


@runcheck_router.post("/runchecks", response_model=RunCheckSubmitResponse)
async def submit_run_checks(
    body: RunCheckSubmitRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Validate the whole batch, record it, then broadcast ``runcheck:new``."""

    state = request.app.state
    try:
        inputs = validate_submission(body.checks, now=_now())
    except SubmissionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        saved = []
        all_saved = True
        for check_input in inputs:
            check, stored = await state.cache.add_check(check_input)
            saved.append(RunCheckDTO.from_check(check))
            all_saved = all_saved and stored
    except Exception as e:
        logger.exception("Error submitting run checks: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info("%s submitted %d run check(s) (saved to sheet: %s)", user.email, len(saved), all_saved)

    await state.connections.broadcast(
        WebsocketMessageType.RUNCHECK_NEW,
        {"checks": [c.model_dump(by_alias=True) for c in saved]},
    )
    return RunCheckSubmitResponse(checks=saved, google_drive_saved=all_saved)
