"""Auth API Router.

Magic-link login, session verification and logout. ``/auth/dev-login`` is
only reachable when password-less login is enabled in the config.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.auth.auth_utils import (
    SESSION_USER_KEY,
    AuthenticatedUser,
    get_current_user,
    get_db_session,
)
from runchecks.auth.magic_link import generate_magic_link, validate_token
from runchecks.common.database.repositories import UserRepository
from runchecks.common.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    email: str | None = None


def _require_email(body: LoginRequest) -> str:
    email = (body.email or "").strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    return email


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@auth_router.post("/login")
async def login(body: LoginRequest, request: Request, session: AsyncSession = Depends(get_db_session)):
    email = _require_email(body)
    user = await UserRepository(session).get_by_email(email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    token = await generate_magic_link(session, email)
    config = request.app.state.config

    if config.DISABLE_MAGIC_LINK:
        return {
            "message": "Magic link generated (email disabled in dev mode)",
            "token": token,
            "loginUrl": request.app.state.email_sender.login_url(token),
        }

    try:
        await request.app.state.email_sender.send_magic_link(email, token)
    except EmailDeliveryError as e:
        logger.error("Failed to send magic link email: %s", e)
        raise HTTPException(status_code=500, detail="Failed to send email. Please contact an administrator.")
    return {"message": "Magic link sent to your email"}


@auth_router.get("/verify")
async def verify(request: Request, token: str | None = None, session: AsyncSession = Depends(get_db_session)):
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")

    email = await validate_token(session, token)
    if email is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await UserRepository(session).get_by_email(email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    request.session[SESSION_USER_KEY] = user.id
    logger.info("User %s logged in via magic link", user.email)
    return RedirectResponse(url="/", status_code=302)


@auth_router.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out successfully"}


@auth_router.get("/me")
async def me(user: AuthenticatedUser = Depends(get_current_user)):
    return {"user": user.to_dict()}


@auth_router.post("/dev-login")
async def dev_login(body: LoginRequest, request: Request, session: AsyncSession = Depends(get_db_session)):
    """Start a session without a magic link (development only)."""

    if not request.app.state.config.ENABLE_LOGIN_WITHOUT_PASSWORD:
        raise HTTPException(status_code=404, detail="Not Found")

    email = _require_email(body)
    user = await UserRepository(session).get_by_email(email)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    request.session[SESSION_USER_KEY] = user.id
    return {
        "message": "Logged in successfully (DEV MODE)",
        "user": {"id": user.id, "email": user.email, "name": user.name},
    }
