"""Play session route handlers."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.api.auth_dependencies import get_current_user, get_event_hub
from pickup.api.routes import unwrap_result
from pickup.database.db import get_db_session
from pickup.models.schemas import PlaySessionCreate, PlaySessionInvite, SpectatorUpdate
from pickup.services import play_session_service
from pickup.services.event_hub import EventHub

router = APIRouter()


@router.post("/api/play-sessions")
async def create_play_session(
    body: PlaySessionCreate,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Open a play session in a group; the caller hosts it."""
    return unwrap_result(
        await play_session_service.create_play_session(session, user["id"], body.group_id)
    )


@router.get("/api/play-sessions/{session_id}")
async def get_play_session(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await play_session_service.get_play_session(session, user["id"], session_id))


@router.post("/api/play-sessions/{session_id}/join")
async def join_play_session(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    return unwrap_result(
        await play_session_service.join_play_session(session, hub, user["id"], session_id)
    )


@router.post("/api/play-sessions/{session_id}/invite")
async def invite_to_play_session(
    session_id: int,
    body: PlaySessionInvite,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    """Host adds group members to the session."""
    return unwrap_result(
        await play_session_service.invite_to_play_session(
            session, hub, user["id"], session_id, body.user_ids
        )
    )


@router.post("/api/play-sessions/{session_id}/leave")
async def leave_play_session(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    return unwrap_result(
        await play_session_service.leave_play_session(session, hub, user["id"], session_id)
    )


@router.post("/api/play-sessions/{session_id}/spectator")
async def set_spectator(
    session_id: int,
    body: SpectatorUpdate,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    """Host toggles a participant between player and spectator."""
    return unwrap_result(
        await play_session_service.set_spectator(
            session, hub, user["id"], session_id, body.user_id, body.is_spectator
        )
    )


@router.post("/api/play-sessions/{session_id}/end")
async def end_play_session(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    return unwrap_result(
        await play_session_service.end_play_session(session, hub, user["id"], session_id)
    )


@router.post("/api/play-sessions/{session_id}/heartbeat")
async def heartbeat(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Host liveness ping; sessions without one for too long are ended."""
    return unwrap_result(await play_session_service.heartbeat(session, user["id"], session_id))
