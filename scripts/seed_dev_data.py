#!/usr/bin/env python3
"""
Seed a local dev database with a group of test users for manual testing.

Creates six users and a "Dev Pickup" group they all belong to, then prints
the group's invite code and a bearer token per user. Idempotent: existing
users and the existing group are reused.

Usage (after ``pip install -e .``):
    python scripts/seed_dev_data.py
"""

import asyncio
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.db import AsyncSessionLocal, init_database
from pickup.database.models import Group
from pickup.services import auth_service, group_service, user_service

TEST_USERNAMES = ["alice", "bob", "carol", "dave", "erin", "frank"]
DEV_GROUP_NAME = "Dev Pickup"


async def seed(session: AsyncSession) -> Dict:
    """
    Create (or reuse) the test users and the dev group.

    Returns:
        ``{"group_id", "invite_code", "users": {username: user_id}}``
    """
    users: Dict[str, int] = {}
    for username in TEST_USERNAMES:
        existing = await user_service.get_user_by_username(session, username)
        users[username] = existing["id"] if existing else await user_service.create_user(session, username)

    result = await session.execute(
        select(Group).where(Group.name == DEV_GROUP_NAME).order_by(Group.id).limit(1)
    )
    group = result.scalar_one_or_none()
    if group is None:
        created = await group_service.create_group(session, users[TEST_USERNAMES[0]], DEV_GROUP_NAME)
        if not created["success"]:
            raise RuntimeError(created["error"])
        group_id, invite_code = created["group"]["id"], created["group"]["invite_code"]
    else:
        group_id, invite_code = group.id, group.invite_code

    for user_id in users.values():
        if not await group_service.is_group_member(session, group_id, user_id):
            joined = await group_service.join_group(session, user_id, invite_code)
            if not joined["success"]:
                raise RuntimeError(joined["error"])

    return {"group_id": group_id, "invite_code": invite_code, "users": users}


async def main():
    """Seed the configured database and print credentials."""
    await init_database()
    async with AsyncSessionLocal() as session:
        seeded = await seed(session)

    print(f"\nGroup '{DEV_GROUP_NAME}' (#{seeded['group_id']}), invite code {seeded['invite_code']}\n")
    for username, user_id in seeded["users"].items():
        token = auth_service.create_access_token({"user_id": user_id})
        print(f"  {username:<8} user #{user_id:<4} token: {token}")
    print()


if __name__ == "__main__":
    asyncio.run(main())
