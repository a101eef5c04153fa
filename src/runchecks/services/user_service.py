"""Patroller names and superuser bookkeeping."""

from __future__ import annotations

import logging
from typing import Any

from runchecks.common.database.database import DatabaseManager
from runchecks.common.database.repositories import UserRepository
from runchecks.common.models.db_models import User

logger = logging.getLogger(__name__)


def merge_patroller_names(user_names: list[str], configured: list[str]) -> list[str]:
    """Union of both lists, de-duplicated, sorted case-insensitively."""
    return sorted(set(user_names) | set(configured), key=lambda n: (n.casefold(), n))


async def get_all_patrollers(db: DatabaseManager, config: Any) -> list[str]:
    async with db.session() as session:
        names = await UserRepository(session).list_names()
    return merge_patroller_names(names, config.patrollers)


async def sync_superusers(db: DatabaseManager, config: Any) -> None:
    """Create or update each configured superuser as an admin."""

    logger.info("Syncing %d superusers from config...", len(config.superusers))
    for superuser in config.superusers:
        try:
            async with db.session() as session:
                repo = UserRepository(session)
                existing = await repo.get_by_email(superuser.email)
                if existing is not None:
                    existing.name = superuser.name
                    existing.is_admin = True
                    logger.debug("Updated superuser: %s", superuser.email)
                else:
                    await repo.add(User(email=superuser.email, name=superuser.name, is_admin=True))
                    logger.info("Created superuser: %s", superuser.email)
        except Exception as e:
            logger.error("Failed to sync superuser %s: %s", superuser.email, e)
