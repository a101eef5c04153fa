"""Session-based authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.common.database.repositories import UserRepository

SESSION_USER_KEY = "user_id"


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    id: str
    email: str
    name: str
    is_admin: bool
    is_superuser: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "isAdmin": self.is_admin,
            "isSuperuser": self.is_superuser,
        }


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding an AsyncSession from the app's DatabaseManager."""
    async with request.app.state.db.session() as session:
        yield session


async def get_current_user(
    request: Request, session: AsyncSession = Depends(get_db_session)
) -> AuthenticatedUser:
    user_id = request.session.get(SESSION_USER_KEY)
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = await UserRepository(session).get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    is_superuser = request.app.state.config.is_superuser(user.email)
    return AuthenticatedUser(
        id=user.id,
        email=user.email,
        name=user.name,
        is_admin=user.is_admin or is_superuser,
        is_superuser=is_superuser,
    )


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
