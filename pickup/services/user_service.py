"""
User lookups for the identity rows referenced by groups, sessions and matches.

Account management (sign-up, passwords, providers) lives outside this
service; users only need to exist so events and read models can carry names.
"""

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.models import User

logger = logging.getLogger(__name__)


def _user_to_dict(user: User) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def create_user(session: AsyncSession, username: str) -> int:
    """
    Create a user row.

    Args:
        session: Database session
        username: Display name

    Returns:
        User ID of the created user
    """
    new_user = User(username=username)
    session.add(new_user)
    await session.flush()
    user_id = new_user.id
    await session.commit()
    logger.info(f"Created user {user_id} ({username!r})")
    return user_id


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_usernames(session: AsyncSession, user_ids: Iterable[int]) -> Dict[int, str]:
    """Map user ids to usernames in a single query (unknown ids are omitted)."""
    ids = set(user_ids)
    if not ids:
        return {}
    result = await session.execute(select(User.id, User.username).where(User.id.in_(ids)))
    return {row.id: row.username for row in result}


async def get_user_by_username(session: AsyncSession, username: str) -> Optional[Dict]:
    """Oldest user with this username, or None."""
    result = await session.execute(
        select(User).where(User.username == username).order_by(User.id).limit(1)
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None
