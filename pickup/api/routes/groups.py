"""Group route handlers: membership, invite codes, leaderboard and history."""


from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.api.auth_dependencies import get_current_user
from pickup.api.routes import unwrap_result
from pickup.database.db import get_db_session
from pickup.models.schemas import GroupCreate, GroupJoin
from pickup.services import group_service, play_session_service

router = APIRouter()


@router.post("/api/groups")
async def create_group(
    body: GroupCreate,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a group; the caller becomes its first member."""
    return unwrap_result(await group_service.create_group(session, user["id"], body.name))


@router.post("/api/groups/join")
async def join_group(
    body: GroupJoin,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Join a group by invite code."""
    return unwrap_result(await group_service.join_group(session, user["id"], body.invite_code))


@router.get("/api/groups")
async def list_user_groups(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's groups, most recently joined first."""
    return unwrap_result(await group_service.list_user_groups(session, user["id"]))


@router.get("/api/groups/{group_id}")
async def get_group(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await group_service.get_group(session, user["id"], group_id))


@router.post("/api/groups/{group_id}/leave")
async def leave_group(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Leave a group. The last member leaving deletes the group and all of its
    sessions, matches and ratings.
    """
    return unwrap_result(await group_service.leave_group(session, user["id"], group_id))


@router.post("/api/groups/{group_id}/invite-code")
async def regenerate_invite_code(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await group_service.regenerate_invite_code(session, user["id"], group_id))


@router.get("/api/groups/{group_id}/leaderboard")
async def get_group_leaderboard(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await group_service.get_group_leaderboard(session, user["id"], group_id))


@router.get("/api/groups/{group_id}/matches")
async def get_group_match_history(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """All matches played in the group, newest first."""
    return unwrap_result(
        await group_service.get_group_match_history(session, user["id"], group_id)
    )


@router.get("/api/groups/{group_id}/play-sessions")
async def list_active_play_sessions(
    group_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Active play sessions of a group."""
    return unwrap_result(
        await play_session_service.list_active_play_sessions(session, user["id"], group_id)
    )
