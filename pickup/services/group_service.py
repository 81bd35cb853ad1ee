"""
Group membership, invite codes and group-wide read models.

Also provides the membership checks the session and match controllers use
for their "members only" rules.
"""

import logging
import secrets
from typing import Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.models import (
    Group,
    GroupMember,
    Match,
    MatchParticipant,
    PlaySession,
    RatingRecord,
    SessionParticipant,
    User,
)
from pickup.services.errors import (
    OperationDeclined,
    conflict,
    forbidden,
    not_found,
    returns_result,
)
from pickup.utils.constants import INVITE_CODE_BYTES

logger = logging.getLogger(__name__)


def generate_invite_code() -> str:
    """Random upper-case hex invite code (two characters per byte)."""
    return secrets.token_hex(INVITE_CODE_BYTES).upper()


def _group_to_dict(group: Group) -> Dict:
    return {
        "id": group.id,
        "name": group.name,
        "invite_code": group.invite_code,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }


def win_percentage(games_won: int, total_games: int) -> str:
    """Win rate as a one-decimal percentage string ("0.0" with no games)."""
    if not total_games:
        return "0.0"
    return f"{games_won / total_games * 100:.1f}"


# ---------------------------------------------------------------------------
# Membership checks
# ---------------------------------------------------------------------------


async def is_group_member(session: AsyncSession, group_id: int, user_id: int) -> bool:
    result = await session.execute(
        select(GroupMember.id)
        .where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def require_group_member(session: AsyncSession, group_id: int, user_id: int) -> None:
    """Raise a forbidden decline unless the user belongs to the group."""
    if not await is_group_member(session, group_id, user_id):
        raise forbidden("Not a member of this group")


async def get_group_or_decline(session: AsyncSession, group_id: int) -> Group:
    group = await session.get(Group, group_id)
    if group is None:
        raise not_found("Group not found")
    return group


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@returns_result
async def create_group(session: AsyncSession, user_id: int, name: Optional[str] = None) -> Dict:
    """
    Create a group with a fresh invite code; the creator becomes its first member.

    Returns:
        ``{"group": {...}}``
    """
    if await session.get(User, user_id) is None:
        raise not_found("User not found")

    group = Group(name=name, invite_code=generate_invite_code(), created_by=user_id)
    session.add(group)
    await session.flush()
    session.add(GroupMember(group_id=group.id, user_id=user_id))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("Could not allocate an invite code, try again")

    await session.refresh(group)
    logger.info(f"User {user_id} created group {group.id}")
    return {"group": _group_to_dict(group)}


@returns_result
async def join_group(session: AsyncSession, user_id: int, invite_code: str) -> Dict:
    """Join a group by its invite code. Joining twice is a conflict."""
    code = (invite_code or "").strip().upper()
    if not code:
        raise OperationDeclined("Invite code is required")

    result = await session.execute(select(Group).where(Group.invite_code == code))
    group = result.scalar_one_or_none()
    if group is None:
        raise not_found("Invalid invite code")

    if await is_group_member(session, group.id, user_id):
        raise conflict("Already a member of this group")

    session.add(GroupMember(group_id=group.id, user_id=user_id))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("Already a member of this group")

    logger.info(f"User {user_id} joined group {group.id}")
    return {"group": _group_to_dict(group)}


async def _teardown_group(session: AsyncSession, group_id: int) -> None:
    """Delete a group and everything scoped to it, children first."""
    session_ids = select(PlaySession.id).where(PlaySession.group_id == group_id)
    match_ids = select(Match.id).where(Match.session_id.in_(session_ids))

    await session.execute(delete(MatchParticipant).where(MatchParticipant.match_id.in_(match_ids)))
    await session.execute(delete(Match).where(Match.session_id.in_(session_ids)))
    await session.execute(
        delete(SessionParticipant).where(SessionParticipant.session_id.in_(session_ids))
    )
    await session.execute(delete(PlaySession).where(PlaySession.group_id == group_id))
    await session.execute(delete(RatingRecord).where(RatingRecord.group_id == group_id))
    await session.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
    await session.execute(delete(Group).where(Group.id == group_id))


@returns_result
async def leave_group(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """
    Leave a group, dropping the leaver's rating record.

    When the last member leaves, the group is torn down entirely (sessions,
    matches, participants and ratings included).

    Returns:
        ``{"group_id": ..., "group_deleted": bool}``
    """
    await get_group_or_decline(session, group_id)

    result = await session.execute(
        delete(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    )
    if result.rowcount == 0:
        raise not_found("Not a member of this group")

    await session.execute(
        delete(RatingRecord).where(RatingRecord.group_id == group_id, RatingRecord.user_id == user_id)
    )

    remaining = await session.execute(
        select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group_id)
    )
    group_deleted = (remaining.scalar() or 0) == 0
    if group_deleted:
        await _teardown_group(session, group_id)

    await session.commit()
    if group_deleted:
        logger.info(f"Group {group_id} deleted after its last member ({user_id}) left")
    else:
        logger.info(f"User {user_id} left group {group_id}")
    return {"group_id": group_id, "group_deleted": group_deleted}


@returns_result
async def regenerate_invite_code(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """Replace a group's invite code (members only)."""
    group = await get_group_or_decline(session, group_id)
    await require_group_member(session, group_id, user_id)

    group.invite_code = generate_invite_code()
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("Could not allocate an invite code, try again")
    return {"invite_code": group.invite_code}


@returns_result
async def list_user_groups(session: AsyncSession, user_id: int) -> Dict:
    """
    Groups the user belongs to, most recently joined first.

    Returns:
        ``{"groups": [{id, name, invite_code, ..., joined_at}]}``
    """
    result = await session.execute(
        select(Group, GroupMember.joined_at)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(GroupMember.joined_at.desc(), GroupMember.id.desc())
    )
    groups = []
    for group, joined_at in result.all():
        group_dict = _group_to_dict(group)
        group_dict["joined_at"] = joined_at.isoformat() if joined_at else None
        groups.append(group_dict)
    return {"groups": groups}


@returns_result
async def get_group(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """Group details with its member list (members only)."""
    group = await get_group_or_decline(session, group_id)
    await require_group_member(session, group_id, user_id)

    result = await session.execute(
        select(GroupMember.user_id, User.username, GroupMember.joined_at)
        .join(User, User.id == GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.id)
    )
    group_dict = _group_to_dict(group)
    group_dict["members"] = [
        {
            "user_id": member_id,
            "username": username,
            "joined_at": joined_at.isoformat() if joined_at else None,
        }
        for member_id, username, joined_at in result.all()
    ]
    return {"group": group_dict}


@returns_result
async def get_group_leaderboard(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """
    Rating records of a group ordered by elo, highest first.

    Returns:
        ``{"leaderboard": [{user_id, username, elo, games_won, ..., win_percentage}]}``
    """
    await get_group_or_decline(session, group_id)
    await require_group_member(session, group_id, user_id)

    result = await session.execute(
        select(RatingRecord, User.username)
        .join(User, User.id == RatingRecord.user_id)
        .where(RatingRecord.group_id == group_id)
        .order_by(RatingRecord.elo.desc(), RatingRecord.user_id)
    )
    leaderboard = []
    for record, username in result.all():
        leaderboard.append(
            {
                "user_id": record.user_id,
                "username": username,
                "elo": record.elo,
                "games_won": record.games_won,
                "games_lost": record.games_lost,
                "games_tied": record.games_tied,
                "total_games": record.total_games,
                "current_streak": record.current_streak,
                "highest_streak": record.highest_streak,
                "last_played_at": record.last_played_at.isoformat() if record.last_played_at else None,
                "win_percentage": win_percentage(record.games_won, record.total_games),
            }
        )
    return {"leaderboard": leaderboard}


@returns_result
async def get_group_match_history(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """Every match played in the group's sessions, newest first."""
    from pickup.services.match_service import load_match_details

    await get_group_or_decline(session, group_id)
    await require_group_member(session, group_id, user_id)

    result = await session.execute(
        select(Match)
        .join(PlaySession, PlaySession.id == Match.session_id)
        .where(PlaySession.group_id == group_id)
        .order_by(Match.started_at.desc(), Match.id.desc())
    )
    matches = result.scalars().all()
    return {"matches": await load_match_details(session, matches)}
