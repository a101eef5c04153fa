"""Users API Router (admin only)."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.auth.auth_utils import AuthenticatedUser, get_db_session, require_admin
from runchecks.auth.magic_link import generate_magic_link
from runchecks.common.database.repositories import UserRepository
from runchecks.common.errors import EmailDeliveryError
from runchecks.common.models.db_models import User

logger = logging.getLogger(__name__)

user_router = APIRouter(prefix="/api/users", tags=["Users"])


class CreateUserRequest(BaseModel):
    email: str | None = None
    name: str | None = None


def _user_dict(user: User, *, is_superuser: bool) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "isAdmin": user.is_admin,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "isSuperuser": is_superuser,
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@user_router.get("")
async def list_users(
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    config = request.app.state.config
    users = await UserRepository(session).list_by_name()
    return {"users": [_user_dict(u, is_superuser=config.is_superuser(u.email)) for u in users]}


@user_router.post("")
async def create_user(
    body: CreateUserRequest,
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    email = (body.email or "").strip().lower()
    name = (body.name or "").strip()
    if not email or not name:
        raise HTTPException(status_code=400, detail="Email and name are required")

    repo = UserRepository(session)
    if await repo.get_by_email(email) is not None:
        raise HTTPException(status_code=409, detail="User already exists")

    user = await repo.add(User(email=email, name=name, is_admin=False))
    token = await generate_magic_link(session, email)
    # The welcome link must be usable as soon as the email arrives.
    await session.commit()

    if request.app.state.config.DISABLE_MAGIC_LINK:
        message = "User created (email disabled in dev mode)"
    else:
        try:
            await request.app.state.email_sender.send_welcome_email(email, token)
            message = "User created and welcome email sent"
        except EmailDeliveryError as e:
            logger.error("Failed to send welcome email: %s", e)
            message = "User created (email sending failed - please check SMTP configuration)"

    logger.info("Admin %s created user %s", admin.email, email)
    return {"user": _user_dict(user, is_superuser=False), "message": message}


@user_router.patch("/{user_id}/admin")
async def set_admin(
    user_id: str,
    request: Request,
    payload: dict[str, Any] | None = Body(default=None),
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    is_admin = (payload or {}).get("isAdmin")
    if not isinstance(is_admin, bool):
        raise HTTPException(status_code=400, detail="isAdmin must be a boolean")

    user = await UserRepository(session).get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if request.app.state.config.is_superuser(user.email):
        raise HTTPException(status_code=403, detail="Cannot modify superuser admin status")

    user.is_admin = is_admin
    await session.flush()
    return {"user": _user_dict(user, is_superuser=False)}


@user_router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    admin: AuthenticatedUser = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    repo = UserRepository(session)
    user = await repo.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if request.app.state.config.is_superuser(user.email):
        raise HTTPException(status_code=403, detail="Cannot delete superuser")

    email = user.email
    await repo.delete(user)
    logger.info("Admin %s deleted user %s", admin.email, email)
    return {"message": "User deleted successfully"}
