#!/usr/bin/env python3
"""
Generate a bearer token for any local user, for impersonation in dev testing.

Looks up by user ID (all digits) or by username.

Usage (after ``pip install -e .``):
    python scripts/dev_login.py 3
    python scripts/dev_login.py alice
"""

import asyncio
import sys
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.db import AsyncSessionLocal
from pickup.database.models import User
from pickup.services import auth_service, user_service

DEV_TOKEN_LIFETIME = timedelta(hours=24)


async def find_user(session: AsyncSession, identifier: str) -> Optional[Dict]:
    """Resolve a user by numeric ID first, then by username."""
    if identifier.isdigit():
        user = await user_service.get_user_by_id(session, int(identifier))
        if user:
            return user
    return await user_service.get_user_by_username(session, identifier)


async def list_users(session: AsyncSession) -> None:
    """Print available users for reference."""
    print("\nAvailable users:")
    result = await session.execute(select(User.id, User.username).order_by(User.id).limit(20))
    for user_id, username in result.all():
        print(f"  #{user_id:<4} {username}")
    print()


async def main(identifier: str = ""):
    if not identifier:
        print("Usage: python scripts/dev_login.py <user id | username>")
        async with AsyncSessionLocal() as session:
            await list_users(session)
        return

    async with AsyncSessionLocal() as session:
        user = await find_user(session, identifier)
        if user is None:
            print(f"No user matches {identifier!r}")
            await list_users(session)
            return

    token = auth_service.create_access_token({"user_id": user["id"]}, expires_delta=DEV_TOKEN_LIFETIME)
    print(f"\nUser #{user['id']} ({user['username']})")
    print(f"Authorization: Bearer {token}\n")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else ""))
