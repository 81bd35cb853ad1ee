"""
WebSocket endpoints streaming play session and match events.

Clients authenticate with ``?token=<jwt>``, receive a ``connected`` greeting,
and then get every event broadcast to their scopes. Clients send "ping" and
get "pong"; the server sends "ping" after WEBSOCKET_PING_SECONDS of silence.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pickup.database import db
from pickup.database.models import Match, PlaySession
from pickup.services import auth_service, group_service
from pickup.services.event_hub import EventHub, EventType, serialize_event
from pickup.utils.constants import WEBSOCKET_PING_SECONDS

logger = logging.getLogger(__name__)
router = APIRouter()


async def _authenticate(websocket: WebSocket) -> Optional[int]:
    """Resolve ``?token=`` to a user id, closing the socket with 1008 on failure."""
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=1008, reason="Missing authentication token")
        return None

    payload = auth_service.verify_token(token)
    if payload is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return None

    user_id = payload.get("user_id")
    if user_id is None:
        await websocket.close(code=1008, reason="Invalid token payload")
        return None
    return user_id


async def _serve(
    websocket: WebSocket,
    hub: EventHub,
    user_id: int,
    session_id: int,
    match_id: Optional[int] = None,
) -> None:
    """Register the connection, run the keep-alive loop, deregister on exit."""
    connection_id = await hub.register_connection(
        user_id, websocket, session_id=session_id, match_id=match_id
    )
    try:
        await websocket.send_text(
            serialize_event(
                EventType.CONNECTED,
                {"user_id": user_id, "session_id": session_id, "match_id": match_id},
            )
        )
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(), timeout=WEBSOCKET_PING_SECONDS
                )
                await hub.update_activity(connection_id)
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                try:
                    await websocket.send_text("ping")
                except Exception:
                    break
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user_id}")
    except Exception as e:
        logger.error(f"WebSocket error for user {user_id}: {e}")
    finally:
        await hub.deregister_connection(connection_id)


@router.websocket("/api/ws/play-sessions/{session_id}")
async def play_session_events(websocket: WebSocket, session_id: int):
    """Events for one play session (joins, invites, matches, session end)."""
    await websocket.accept()
    user_id = await _authenticate(websocket)
    if user_id is None:
        return

    async with db.AsyncSessionLocal() as session:
        play_session = await session.get(PlaySession, session_id)
        allowed = play_session is not None and await group_service.is_group_member(
            session, play_session.group_id, user_id
        )
    if not allowed:
        await websocket.close(code=1008, reason="Not allowed to view this play session")
        return

    hub: Optional[EventHub] = getattr(websocket.app.state, "event_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Event hub unavailable")
        return
    await _serve(websocket, hub, user_id, session_id)


@router.websocket("/api/ws/matches/{match_id}")
async def match_events(websocket: WebSocket, match_id: int):
    """Events for one match (plus its play session)."""
    await websocket.accept()
    user_id = await _authenticate(websocket)
    if user_id is None:
        return

    session_id = None
    async with db.AsyncSessionLocal() as session:
        match = await session.get(Match, match_id)
        if match is not None:
            play_session = await session.get(PlaySession, match.session_id)
            if play_session is not None and await group_service.is_group_member(
                session, play_session.group_id, user_id
            ):
                session_id = play_session.id
    if session_id is None:
        await websocket.close(code=1008, reason="Not allowed to view this match")
        return

    hub: Optional[EventHub] = getattr(websocket.app.state, "event_hub", None)
    if hub is None:
        await websocket.close(code=1011, reason="Event hub unavailable")
        return
    await _serve(websocket, hub, user_id, session_id, match_id=match_id)
