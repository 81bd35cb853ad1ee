"""Match route handlers."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.api.auth_dependencies import get_current_user, get_event_hub
from pickup.api.routes import unwrap_result
from pickup.database.db import get_db_session
from pickup.models.schemas import MatchComplete, MatchStart, PenalizeRequest
from pickup.services import match_service
from pickup.services.event_hub import EventHub

router = APIRouter()


@router.post("/api/play-sessions/{session_id}/matches")
async def start_match(
    session_id: int,
    body: MatchStart,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    """
    Start a match in a play session (host only).

    Players are picked by fewest games played in the session and split into
    the two most evenly rated teams.
    """
    return unwrap_result(
        await match_service.start_match(session, hub, user["id"], session_id, body.match_size)
    )


@router.get("/api/play-sessions/{session_id}/active-match")
async def get_active_match(
    session_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await match_service.get_active_match(session, user["id"], session_id))


@router.get("/api/matches/{match_id}")
async def get_match(
    match_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(await match_service.get_match(session, user["id"], match_id))


@router.post("/api/matches/{match_id}/complete")
async def complete_match(
    match_id: int,
    body: MatchComplete,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    """Record the winning team and update ratings (host only)."""
    return unwrap_result(
        await match_service.complete_match(session, hub, user["id"], match_id, body.winning_team)
    )


@router.post("/api/matches/{match_id}/cancel")
async def cancel_match(
    match_id: int,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    hub: Optional[EventHub] = Depends(get_event_hub),
):
    return unwrap_result(await match_service.cancel_match(session, hub, user["id"], match_id))


@router.post("/api/matches/{match_id}/penalize")
async def penalize_participant(
    match_id: int,
    body: PenalizeRequest,
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return unwrap_result(
        await match_service.penalize_participant(
            session, user["id"], match_id, body.user_id, body.penalized
        )
    )
