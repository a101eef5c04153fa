"""Google Drive linking API Router.

OAuth authorize/callback for the admin-linked Drive account, token
maintenance endpoints, and a manual reload of the sheets-backed run list.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.auth.auth_utils import AuthenticatedUser, get_current_user, get_db_session, require_admin
from runchecks.common.database.repositories import GoogleOAuthRepository
from runchecks.common.models.db_models import GoogleOAuth, User
from runchecks.integrations.google_oauth import GoogleOAuthService
from runchecks.integrations.google_sheets import ensure_drive_workspace

logger = logging.getLogger(__name__)

google_router = APIRouter(prefix="/api/google", tags=["Google"])

OAUTH_STATE_KEY = "oauth_state"


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _oauth_service(request: Request) -> GoogleOAuthService:
    service = getattr(request.app.state, "oauth_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Google OAuth is not configured")
    return service


async def _require_record(session: AsyncSession, user_id: str) -> GoogleOAuth:
    record = await GoogleOAuthRepository(session).get_by_user_id(user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="OAuth not configured")
    return record


# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------


@google_router.get("/oauth/authorize")
async def authorize(request: Request, admin: AuthenticatedUser = Depends(require_admin)):
    service = _oauth_service(request)
    state = secrets.token_urlsafe(24)
    request.session[OAUTH_STATE_KEY] = state
    return RedirectResponse(url=service.client.authorization_url(state), status_code=302)


@google_router.get("/oauth/callback")
async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    user: AuthenticatedUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    expected_state = request.session.pop(OAUTH_STATE_KEY, None)
    if not state or state != expected_state:
        return PlainTextResponse("Invalid state parameter", status_code=400)
    if not code:
        return PlainTextResponse("Missing authorization code", status_code=400)

    service = _oauth_service(request)
    client = service.client
    try:
        tokens = await asyncio.to_thread(client.exchange_code, code)
        google_email = await asyncio.to_thread(client.fetch_user_email, tokens.access_token)
        workspace = await ensure_drive_workspace(client.build_credentials(tokens))

        repo = GoogleOAuthRepository(session)
        record = await repo.get_by_user_id(user.id)
        if record is None:
            record = GoogleOAuth(user_id=user.id)
            session.add(record)
        record.access_token = tokens.access_token
        record.refresh_token = tokens.refresh_token
        record.token_expires_at = tokens.expires_at
        record.google_email = google_email
        record.google_drive_folder_id = workspace.folder_id
        record.google_sheets_id = workspace.sheets_id
        record.last_tested_at = datetime.now(timezone.utc)
        record.is_active = True
        await session.commit()
        logger.info("OAuth tokens stored successfully for user %s (%s)", user.id, google_email)

        await service.schedule_next_refresh()
    except Exception as e:
        logger.error("OAuth callback error: %s", e)
        return RedirectResponse(url="/?tab=admin&oauth=error", status_code=302)

    return RedirectResponse(url="/?tab=admin&oauth=success", status_code=302)


# ---------------------------------------------------------------------------
# Token maintenance
# ---------------------------------------------------------------------------


@google_router.post("/oauth/folder")
async def update_folder(
    payload: dict[str, Any] | None = Body(default=None),
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    payload = payload or {}
    folder_id = payload.get("folderId")
    if not folder_id:
        raise HTTPException(status_code=400, detail="Folder ID is required")

    record = await _require_record(session, admin.id)
    record.google_drive_folder_id = folder_id
    record.google_sheets_id = payload.get("sheetsId") or None
    logger.info("Google Drive folder updated for user %s: %s", admin.id, folder_id)
    return {"success": True, "folder": {"id": folder_id, "name": payload.get("folderName")}}


@google_router.post("/oauth/refresh")
async def refresh_token(
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    service = _oauth_service(request)
    record = await _require_record(session, admin.id)
    try:
        tokens = await asyncio.to_thread(service.client.refresh, record.refresh_token)
    except Exception as e:
        logger.error("Error refreshing token: %s", e)
        raise HTTPException(status_code=500, detail="Failed to refresh token")

    tested_at = datetime.now(timezone.utc)
    record.access_token = tokens.access_token
    record.refresh_token = tokens.refresh_token
    record.token_expires_at = tokens.expires_at
    record.last_tested_at = tested_at
    await session.commit()
    logger.info("OAuth token refreshed manually by user %s", admin.id)

    await service.schedule_next_refresh()
    return {"success": True, "expiresAt": tokens.expires_at.isoformat(), "lastTestedAt": tested_at.isoformat()}


@google_router.get("/oauth/status")
async def oauth_status(
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    record = await GoogleOAuthRepository(session).get_active()
    if record is None:
        return {"configured": False, "needsRefresh": False}

    linked_user = await session.get(User, record.user_id)
    return {
        "configured": True,
        "linkedUser": {"email": linked_user.email, "name": linked_user.name} if linked_user else None,
        "googleEmail": record.google_email,
        "folderId": record.google_drive_folder_id,
        "sheetsId": record.google_sheets_id,
        "tokenExpiresAt": record.token_expires_at.isoformat(),
        "isActive": record.is_active,
    }


@google_router.delete("/oauth/disconnect")
async def disconnect(
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    await GoogleOAuthRepository(session).delete_for_user(admin.id)
    await session.commit()
    logger.info("OAuth disconnected for user %s", admin.id)

    service = getattr(request.app.state, "oauth_service", None)
    if service is not None:
        await service.schedule_next_refresh()
    return {"success": True}


@google_router.post("/oauth/test-mark-inactive")
async def test_mark_inactive(
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    record = await GoogleOAuthRepository(session).get_active()
    if record is None:
        raise HTTPException(status_code=404, detail="No active OAuth configuration found")

    record.is_active = False
    logger.info("OAuth manually marked as inactive for testing by user %s", admin.id)
    return {
        "success": True,
        "message": "OAuth marked as inactive for testing. Next successful API call will reactivate it.",
    }


# ---------------------------------------------------------------------------
# Run catalog
# ---------------------------------------------------------------------------


@google_router.post("/admin/refresh-runs")
async def refresh_runs(request: Request, admin: AuthenticatedUser = Depends(require_admin)):
    provider = request.app.state.run_provider
    try:
        await provider.initialize()
    except Exception as e:
        logger.error("Error refreshing run list: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to refresh runs: {e}")

    count = len(provider.get_runs())
    logger.info("Run list refreshed by %s: %d runs", admin.email, count)
    return {"success": True, "runCount": count, "message": f"Loaded {count} runs"}
