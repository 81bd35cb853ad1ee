"""
Play session lifecycle: create, join, invite, leave, spectator toggling,
host heartbeat and termination.

A session is Active until its ``ended_at`` is set; ending is irreversible.
Every operation commits once and publishes its event only after the commit.
"""

import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.models import EndReason, Match, PlaySession, SessionParticipant, User
from pickup.services import group_service, user_service
from pickup.services.errors import (
    OperationDeclined,
    conflict,
    forbidden,
    not_found,
    returns_result,
)
from pickup.services.event_hub import EventHub, EventType, publish, publish_to_scopes
from pickup.utils.datetime_utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)


def _play_session_to_dict(play_session: PlaySession) -> Dict:
    return {
        "id": play_session.id,
        "group_id": play_session.group_id,
        "host_id": play_session.host_id,
        "created_at": isoformat_or_none(play_session.created_at),
        "ended_at": isoformat_or_none(play_session.ended_at),
        "end_reason": play_session.end_reason,
        "host_last_seen_at": isoformat_or_none(play_session.host_last_seen_at),
        "is_active": play_session.is_active,
    }


async def get_play_session_or_decline(session: AsyncSession, session_id: int) -> PlaySession:
    play_session = await session.get(PlaySession, session_id)
    if play_session is None:
        raise not_found("Play session not found")
    return play_session


def require_host(play_session: PlaySession, user_id: int, action: str) -> None:
    """Raise a forbidden decline unless the user hosts the session."""
    if play_session.host_id != user_id:
        raise forbidden(f"Only the host can {action}")


def require_active(play_session: PlaySession) -> None:
    if not play_session.is_active:
        raise conflict("Play session has ended")


async def _get_participant(
    session: AsyncSession, session_id: int, user_id: int
) -> Optional[SessionParticipant]:
    result = await session.execute(
        select(SessionParticipant).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Termination (shared with the reaper)
# ---------------------------------------------------------------------------


async def terminate_play_session(
    session: AsyncSession,
    hub: Optional[EventHub],
    session_id: int,
    reason: EndReason,
) -> bool:
    """
    End a session if it is still active, cancelling any in-progress match.

    The end is a conditional update on ``ended_at IS NULL``, so when an End
    request and a reaper sweep race, exactly one of them wins and only the
    winner commits and broadcasts.

    Returns:
        True if this call ended the session, False if it had already ended
    """
    now = utcnow()
    result = await session.execute(
        update(PlaySession)
        .where(PlaySession.id == session_id, PlaySession.ended_at.is_(None))
        .values(ended_at=now, end_reason=EndReason(reason).value)
    )
    if result.rowcount == 0:
        await session.rollback()
        return False

    active = await session.execute(
        select(Match.id).where(
            Match.session_id == session_id,
            Match.ended_at.is_(None),
            Match.cancelled.is_(False),
        )
    )
    cancelled_match_id = active.scalar_one_or_none()
    if cancelled_match_id is not None:
        await session.execute(
            update(Match)
            .where(Match.id == cancelled_match_id, Match.ended_at.is_(None))
            .values(ended_at=now, cancelled=True)
        )

    await session.commit()
    logger.info(
        f"Play session {session_id} ended ({EndReason(reason).value})"
        + (f", cancelled match {cancelled_match_id}" if cancelled_match_id else "")
    )

    if cancelled_match_id is not None:
        match_event = {"match_id": cancelled_match_id, "session_id": session_id, "cancelled": True}
        await publish_to_scopes(
            hub, EventType.MATCH_ENDED, match_event, session_id=session_id, match_id=cancelled_match_id
        )
    await publish(
        hub,
        "session",
        session_id,
        EventType.SESSION_ENDED,
        {"session_id": session_id, "reason": EndReason(reason).value},
    )
    return True


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


@returns_result
async def create_play_session(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """
    Open a session in a group. The creator becomes host and its first player.

    Returns:
        ``{"play_session": {...}}``
    """
    await group_service.get_group_or_decline(session, group_id)
    await group_service.require_group_member(session, group_id, user_id)

    now = utcnow()
    play_session = PlaySession(group_id=group_id, host_id=user_id, host_last_seen_at=now)
    session.add(play_session)
    await session.flush()
    session.add(
        SessionParticipant(
            session_id=play_session.id, user_id=user_id, is_spectator=False, joined_at=now
        )
    )
    await session.commit()
    await session.refresh(play_session)

    logger.info(f"User {user_id} created play session {play_session.id} in group {group_id}")
    return {"play_session": _play_session_to_dict(play_session)}


@returns_result
async def join_play_session(
    session: AsyncSession, hub: Optional[EventHub], user_id: int, session_id: int
) -> Dict:
    """Join an active session as a player. A second join is a conflict."""
    play_session = await get_play_session_or_decline(session, session_id)
    require_active(play_session)
    await group_service.require_group_member(session, play_session.group_id, user_id)

    if await _get_participant(session, session_id, user_id) is not None:
        raise conflict("Already joined this play session")

    session.add(SessionParticipant(session_id=session_id, user_id=user_id, joined_at=utcnow()))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("Already joined this play session")

    username = (await user_service.get_usernames(session, [user_id])).get(user_id)
    logger.info(f"User {user_id} joined play session {session_id}")
    await publish(
        hub,
        "session",
        session_id,
        EventType.PLAYER_JOINED,
        {"session_id": session_id, "user_id": user_id, "username": username},
    )
    return {"session_id": session_id, "user_id": user_id}


@returns_result
async def invite_to_play_session(
    session: AsyncSession,
    hub: Optional[EventHub],
    user_id: int,
    session_id: int,
    user_ids: Sequence[int],
) -> Dict:
    """
    Host adds group members to the session as players.

    Every invitee must belong to the group; users already in the session are
    skipped rather than rejected.

    Returns:
        ``{"invited": [user ids actually added]}``
    """
    play_session = await get_play_session_or_decline(session, session_id)
    require_host(play_session, user_id, "invite players")
    require_active(play_session)

    invitee_ids = list(dict.fromkeys(user_ids))
    if not invitee_ids:
        raise OperationDeclined("At least one user is required")

    for invitee_id in invitee_ids:
        if not await group_service.is_group_member(session, play_session.group_id, invitee_id):
            raise OperationDeclined(f"User {invitee_id} is not a member of this group")

    existing = await session.execute(
        select(SessionParticipant.user_id).where(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id.in_(invitee_ids),
        )
    )
    already_joined = set(existing.scalars().all())
    invited: List[int] = [uid for uid in invitee_ids if uid not in already_joined]

    now = utcnow()
    for invitee_id in invited:
        session.add(SessionParticipant(session_id=session_id, user_id=invitee_id, joined_at=now))
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("An invited user joined concurrently, retry the invite")

    if invited:
        logger.info(f"Host {user_id} invited {invited} to play session {session_id}")
        host_name = (await user_service.get_usernames(session, [user_id])).get(user_id)
        await publish(
            hub, "session", session_id, EventType.INVITE, {"session_id": session_id, "user_ids": invited}
        )
        for invitee_id in invited:
            await publish(
                hub,
                "user",
                invitee_id,
                EventType.INVITE,
                {
                    "session_id": session_id,
                    "group_id": play_session.group_id,
                    "host_id": user_id,
                    "host_username": host_name,
                },
            )
    return {"invited": invited}


@returns_result
async def leave_play_session(
    session: AsyncSession, hub: Optional[EventHub], user_id: int, session_id: int
) -> Dict:
    """Leave a session. The host cannot leave and must end the session instead."""
    play_session = await get_play_session_or_decline(session, session_id)
    require_active(play_session)
    if play_session.host_id == user_id:
        raise forbidden("The host cannot leave; end the play session instead")

    participant = await _get_participant(session, session_id, user_id)
    if participant is None:
        raise not_found("Not a participant of this play session")

    await session.execute(delete(SessionParticipant).where(SessionParticipant.id == participant.id))
    await session.commit()

    logger.info(f"User {user_id} left play session {session_id}")
    await publish(
        hub, "session", session_id, EventType.PLAYER_LEFT, {"session_id": session_id, "user_id": user_id}
    )
    return {"session_id": session_id, "user_id": user_id}


@returns_result
async def set_spectator(
    session: AsyncSession,
    hub: Optional[EventHub],
    user_id: int,
    session_id: int,
    target_user_id: int,
    is_spectator: bool,
) -> Dict:
    """Host marks a participant as spectator (excluded from selection) or player."""
    play_session = await get_play_session_or_decline(session, session_id)
    require_host(play_session, user_id, "change spectators")
    require_active(play_session)
    if target_user_id == play_session.host_id:
        raise OperationDeclined("The host cannot be made a spectator")

    participant = await _get_participant(session, session_id, target_user_id)
    if participant is None:
        raise not_found("Not a participant of this play session")

    participant.is_spectator = bool(is_spectator)
    await session.commit()

    await publish(
        hub,
        "session",
        session_id,
        EventType.SPECTATOR_CHANGED,
        {"session_id": session_id, "user_id": target_user_id, "is_spectator": bool(is_spectator)},
    )
    return {"session_id": session_id, "user_id": target_user_id, "is_spectator": bool(is_spectator)}


@returns_result
async def end_play_session(
    session: AsyncSession, hub: Optional[EventHub], user_id: int, session_id: int
) -> Dict:
    """Host ends the session; an in-progress match is cancelled along with it."""
    play_session = await get_play_session_or_decline(session, session_id)
    require_host(play_session, user_id, "end the play session")
    require_active(play_session)

    if not await terminate_play_session(session, hub, session_id, EndReason.HOST_ENDED):
        raise conflict("Play session has ended")
    return {"session_id": session_id}


@returns_result
async def heartbeat(session: AsyncSession, user_id: int, session_id: int) -> Dict:
    """Host liveness signal; refreshes ``host_last_seen_at``."""
    play_session = await get_play_session_or_decline(session, session_id)
    require_host(play_session, user_id, "send heartbeats")
    require_active(play_session)

    play_session.host_last_seen_at = utcnow()
    await session.commit()
    return {"session_id": session_id, "host_last_seen_at": isoformat_or_none(play_session.host_last_seen_at)}


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@returns_result
async def get_play_session(session: AsyncSession, user_id: int, session_id: int) -> Dict:
    """Session details with participants (group members only)."""
    play_session = await get_play_session_or_decline(session, session_id)
    await group_service.require_group_member(session, play_session.group_id, user_id)

    result = await session.execute(
        select(SessionParticipant, User.username)
        .join(User, User.id == SessionParticipant.user_id)
        .where(SessionParticipant.session_id == session_id)
        .order_by(SessionParticipant.joined_at, SessionParticipant.id)
    )
    participants = [
        {
            "user_id": participant.user_id,
            "username": username,
            "is_spectator": participant.is_spectator,
            "joined_at": isoformat_or_none(participant.joined_at),
        }
        for participant, username in result.all()
    ]

    data = _play_session_to_dict(play_session)
    data["participants"] = participants
    data["is_host"] = play_session.host_id == user_id
    return {"play_session": data}


@returns_result
async def list_active_play_sessions(session: AsyncSession, user_id: int, group_id: int) -> Dict:
    """Active sessions of a group, newest first."""
    await group_service.get_group_or_decline(session, group_id)
    await group_service.require_group_member(session, group_id, user_id)

    result = await session.execute(
        select(PlaySession)
        .where(PlaySession.group_id == group_id, PlaySession.ended_at.is_(None))
        .order_by(PlaySession.created_at.desc(), PlaySession.id.desc())
    )
    return {"play_sessions": [_play_session_to_dict(ps) for ps in result.scalars().all()]}
