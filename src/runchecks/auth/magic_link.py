"""Single-use login tokens delivered by email."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from runchecks.common.database.repositories import MagicLinkRepository
from runchecks.common.models.db_models import MagicLink, as_utc

MAGIC_LINK_EXPIRY = timedelta(minutes=15)


async def generate_magic_link(session: AsyncSession, email: str, *, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    token = secrets.token_hex(32)
    await MagicLinkRepository(session).add(
        MagicLink(token=token, email=email.strip().lower(), expires_at=now + MAGIC_LINK_EXPIRY, used=False)
    )
    return token


async def validate_token(session: AsyncSession, token: str, *, now: datetime | None = None) -> Optional[str]:
    """Consume ``token``; returns its email, or ``None`` if unknown, used or expired."""

    now = now or datetime.now(timezone.utc)
    link = await MagicLinkRepository(session).get_by_id(token)
    if link is None or link.used:
        return None
    if as_utc(link.expires_at) < now:
        return None

    link.used = True
    await session.flush()
    return link.email
