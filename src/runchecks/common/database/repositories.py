"""Repositories over the admin/auth tables.

No commits are performed here - the session context from
``DatabaseManager.session()`` commits when the request finishes.
"""

from __future__ import annotations

from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.common.models.db_models import Base, GoogleOAuth, MagicLink, User

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    model: Type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, entity: T) -> T:
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def get_by_id(self, id_value: str) -> Optional[T]:
        return await self.session.get(self.model, id_value)

    async def delete(self, entity: T) -> None:
        await self.session.delete(entity)
        await self.session.flush()


class UserRepository(BaseRepository[User]):
    model = User

    async def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_name(self) -> List[User]:
        result = await self.session.execute(select(User).order_by(User.name))
        return list(result.scalars().all())

    async def list_names(self) -> List[str]:
        result = await self.session.execute(select(User.name))
        return [name for name in result.scalars().all() if name]


class MagicLinkRepository(BaseRepository[MagicLink]):
    model = MagicLink


class GoogleOAuthRepository(BaseRepository[GoogleOAuth]):
    model = GoogleOAuth

    async def get_active(self) -> Optional[GoogleOAuth]:
        stmt = select(GoogleOAuth).where(GoogleOAuth.is_active.is_(True)).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest(self) -> Optional[GoogleOAuth]:
        """The linked account, active or not (there is at most one per admin)."""
        stmt = select(GoogleOAuth).order_by(GoogleOAuth.is_active.desc()).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: str) -> Optional[GoogleOAuth]:
        stmt = select(GoogleOAuth).where(GoogleOAuth.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def delete_for_user(self, user_id: str) -> None:
        await self.session.execute(delete(GoogleOAuth).where(GoogleOAuth.user_id == user_id))
