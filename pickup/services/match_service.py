"""
Match lifecycle: start, complete, cancel, penalize, plus match read models.

Per session: NoActiveMatch -> MatchInProgress -> {Completed | Cancelled} -> NoActiveMatch.

Starting a match runs the player selector and then the team balancer over the
session's non-spectator participants. Completing it applies the rating engine
to every participant and writes the new ratings in the same transaction as
the match row. The "one in-progress match per session" rule is enforced by a
partial unique index, so a concurrent second start fails at insert time.
"""

import logging
import random
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database.models import (
    Match,
    MatchParticipant,
    PlaySession,
    RatingRecord,
    SessionParticipant,
)
from pickup.services import group_service, user_service
from pickup.services.errors import (
    OperationDeclined,
    conflict,
    not_found,
    returns_result,
)
from pickup.services.event_hub import EventHub, EventType, publish, publish_to_scopes
from pickup.services.play_session_service import (
    get_play_session_or_decline,
    require_active,
    require_host,
)
from pickup.services.player_selector import RatedPlayer, select_players
from pickup.services.rating_service import (
    next_streak,
    participant_elo_change,
    team_average_elo,
)
from pickup.services.team_balancer import balance_teams, validate_match_size
from pickup.utils.constants import INITIAL_ELO
from pickup.utils.datetime_utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_match_or_decline(session: AsyncSession, match_id: int) -> Match:
    match = await session.get(Match, match_id)
    if match is None:
        raise not_found("Match not found")
    return match


async def _get_active_match(session: AsyncSession, session_id: int) -> Optional[Match]:
    result = await session.execute(
        select(Match).where(
            Match.session_id == session_id,
            Match.ended_at.is_(None),
            Match.cancelled.is_(False),
        )
    )
    return result.scalar_one_or_none()


async def _get_match_participants(session: AsyncSession, match_id: int) -> List[MatchParticipant]:
    result = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.match_id == match_id)
        .order_by(MatchParticipant.team, MatchParticipant.id)
    )
    return list(result.scalars().all())


async def _load_rated_participants(session: AsyncSession, play_session: PlaySession) -> List[RatedPlayer]:
    """
    Session participants with their group rating (None if unrated) and the
    number of completed matches they played in this session.
    """
    result = await session.execute(
        select(SessionParticipant.user_id, SessionParticipant.is_spectator, RatingRecord.elo)
        .outerjoin(
            RatingRecord,
            (RatingRecord.user_id == SessionParticipant.user_id)
            & (RatingRecord.group_id == play_session.group_id),
        )
        .where(SessionParticipant.session_id == play_session.id)
        .order_by(SessionParticipant.joined_at, SessionParticipant.id)
    )
    rows = result.all()

    games = await session.execute(
        select(MatchParticipant.user_id, func.count(MatchParticipant.id))
        .join(Match, Match.id == MatchParticipant.match_id)
        .where(
            Match.session_id == play_session.id,
            Match.ended_at.is_not(None),
            Match.cancelled.is_(False),
        )
        .group_by(MatchParticipant.user_id)
    )
    games_played = {user_id: count for user_id, count in games.all()}

    return [
        RatedPlayer(
            user_id=row.user_id,
            elo=row.elo,
            games_played=games_played.get(row.user_id, 0),
            is_spectator=row.is_spectator,
        )
        for row in rows
    ]


def _participant_to_dict(participant: MatchParticipant, usernames: Dict[int, str]) -> Dict:
    return {
        "user_id": participant.user_id,
        "username": usernames.get(participant.user_id),
        "team": participant.team,
        "elo_before": participant.elo_before,
        "elo_after": participant.elo_after,
        "elo_change": participant.elo_change,
        "penalized": participant.penalized,
    }


def _match_to_dict(
    match: Match, participants: Sequence[MatchParticipant], usernames: Dict[int, str]
) -> Dict:
    teams: List[List[Dict]] = [[], []]
    for participant in participants:
        teams[participant.team].append(_participant_to_dict(participant, usernames))
    return {
        "id": match.id,
        "session_id": match.session_id,
        "started_at": isoformat_or_none(match.started_at),
        "ended_at": isoformat_or_none(match.ended_at),
        "winning_team": match.winning_team,
        "match_size": match.match_size,
        "cancelled": match.cancelled,
        "in_progress": match.is_in_progress,
        "teams": teams,
    }


async def load_match_details(session: AsyncSession, matches: Sequence[Match]) -> List[Dict]:
    """Serialize matches with both teams, loading participants in one query."""
    if not matches:
        return []
    match_ids = [m.id for m in matches]
    result = await session.execute(
        select(MatchParticipant)
        .where(MatchParticipant.match_id.in_(match_ids))
        .order_by(MatchParticipant.team, MatchParticipant.id)
    )
    by_match: Dict[int, List[MatchParticipant]] = {mid: [] for mid in match_ids}
    all_participants = result.scalars().all()
    for participant in all_participants:
        by_match[participant.match_id].append(participant)

    usernames = await user_service.get_usernames(session, {p.user_id for p in all_participants})
    return [_match_to_dict(m, by_match[m.id], usernames) for m in matches]


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------


@returns_result
async def start_match(
    session: AsyncSession,
    hub: Optional[EventHub],
    user_id: int,
    session_id: int,
    match_size: int,
    rng: Optional[random.Random] = None,
) -> Dict:
    """
    Host starts a match of ``match_size`` players drawn from the session.

    Args:
        session: Database session
        hub: Event hub for the match_started broadcast
        user_id: Acting user (must be the host)
        session_id: Play session ID
        match_size: Even number of players
        rng: Random source for the selector's tie-breaking shuffle

    Returns:
        ``{"match": {...}}`` with both teams
    """
    play_session = await get_play_session_or_decline(session, session_id)
    require_host(play_session, user_id, "start a match")
    require_active(play_session)
    validate_match_size(match_size)

    if await _get_active_match(session, session_id) is not None:
        raise conflict("A match is already in progress")

    players = await _load_rated_participants(session, play_session)
    selected = select_players(players, match_size, rng)
    assignment = balance_teams(selected, match_size)

    # Snapshot the stored rating; the balancer's 1500 default is not persisted
    stored_elo = {p.user_id: p.elo for p in selected}

    match = Match(session_id=session_id, started_at=utcnow(), match_size=match_size)
    session.add(match)
    try:
        await session.flush()
        for team_index, team in enumerate(assignment.teams):
            for player in team:
                session.add(
                    MatchParticipant(
                        match_id=match.id,
                        user_id=player.user_id,
                        team=team_index,
                        elo_before=stored_elo[player.user_id],
                    )
                )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise conflict("A match is already in progress")

    participants = await _get_match_participants(session, match.id)
    usernames = await user_service.get_usernames(session, [p.user_id for p in participants])
    data = _match_to_dict(match, participants, usernames)

    logger.info(
        f"Match {match.id} started in play session {session_id} "
        f"({match_size} players, elo diff {assignment.elo_diff:.1f})"
    )
    await publish(
        hub,
        "session",
        session_id,
        EventType.MATCH_STARTED,
        {"match_id": match.id, "session_id": session_id, "match_size": match_size, "teams": data["teams"]},
    )
    return {"match": data}


@returns_result
async def complete_match(
    session: AsyncSession,
    hub: Optional[EventHub],
    user_id: int,
    match_id: int,
    winning_team: int,
) -> Dict:
    """
    Host declares the winning team; ratings of every participant are updated.

    Each participant's change is computed from their ``elo_before`` snapshot
    against the opposing team's average snapshot, then applied to their
    current group rating record (created at INITIAL_ELO if missing).

    Returns:
        ``{"match": {...}}`` including each participant's elo_after/elo_change
    """
    if winning_team not in (0, 1):
        raise OperationDeclined("Winning team must be 0 or 1")

    match = await _get_match_or_decline(session, match_id)
    play_session = await get_play_session_or_decline(session, match.session_id)
    require_host(play_session, user_id, "complete a match")
    if not match.is_in_progress:
        raise conflict("Match has already ended")

    now = utcnow()
    result = await session.execute(
        update(Match)
        .where(Match.id == match_id, Match.ended_at.is_(None), Match.cancelled.is_(False))
        .values(ended_at=now, winning_team=winning_team)
    )
    if result.rowcount == 0:
        raise conflict("Match has already ended")

    participants = await _get_match_participants(session, match_id)
    team_avg = [
        team_average_elo(p.elo_before for p in participants if p.team == team) for team in (0, 1)
    ]

    records_result = await session.execute(
        select(RatingRecord).where(
            RatingRecord.group_id == play_session.group_id,
            RatingRecord.user_id.in_([p.user_id for p in participants]),
        )
    )
    records = {r.user_id: r for r in records_result.scalars().all()}

    for participant in participants:
        record = records.get(participant.user_id)
        if record is None:
            record = RatingRecord(
                group_id=play_session.group_id,
                user_id=participant.user_id,
                elo=INITIAL_ELO,
                games_won=0,
                games_lost=0,
                games_tied=0,
                total_games=0,
                current_streak=0,
                highest_streak=0,
            )
            session.add(record)
            records[participant.user_id] = record

        won = participant.team == winning_team
        self_elo = participant.elo_before if participant.elo_before is not None else INITIAL_ELO
        change = participant_elo_change(
            self_elo,
            team_avg[1 - participant.team],
            won,
            current_streak=record.current_streak,
            penalized=participant.penalized,
        )

        record.elo = record.elo + change
        record.total_games += 1
        if won:
            record.games_won += 1
        else:
            record.games_lost += 1
        record.current_streak = next_streak(record.current_streak, won)
        record.highest_streak = max(record.highest_streak, record.current_streak)
        record.last_played_at = now

        participant.elo_after = record.elo
        participant.elo_change = change

    await session.commit()

    usernames = await user_service.get_usernames(session, [p.user_id for p in participants])
    data = _match_to_dict(match, participants, usernames)
    logger.info(f"Match {match_id} completed, team {winning_team} won")

    changes = [
        {"user_id": p.user_id, "elo_change": p.elo_change, "elo_after": p.elo_after}
        for p in participants
    ]
    ended_event = {
        "match_id": match_id,
        "session_id": match.session_id,
        "winning_team": winning_team,
        "cancelled": False,
        "changes": changes,
    }
    await publish_to_scopes(
        hub, EventType.MATCH_ENDED, ended_event, session_id=match.session_id, match_id=match_id
    )
    for participant in participants:
        await publish(
            hub,
            "user",
            participant.user_id,
            EventType.ELO_UPDATE,
            {
                "match_id": match_id,
                "group_id": play_session.group_id,
                "won": participant.team == winning_team,
                "elo_before": participant.elo_before,
                "elo_after": participant.elo_after,
                "elo_change": participant.elo_change,
            },
        )
    return {"match": data}


@returns_result
async def cancel_match(
    session: AsyncSession, hub: Optional[EventHub], user_id: int, match_id: int
) -> Dict:
    """Host cancels an in-progress match; no rating effects."""
    match = await _get_match_or_decline(session, match_id)
    play_session = await get_play_session_or_decline(session, match.session_id)
    require_host(play_session, user_id, "cancel a match")
    if not match.is_in_progress:
        raise conflict("Match has already ended")

    result = await session.execute(
        update(Match)
        .where(Match.id == match_id, Match.ended_at.is_(None), Match.cancelled.is_(False))
        .values(ended_at=utcnow(), cancelled=True)
    )
    if result.rowcount == 0:
        raise conflict("Match has already ended")
    await session.commit()

    logger.info(f"Match {match_id} cancelled")
    event = {"match_id": match_id, "session_id": match.session_id, "cancelled": True}
    await publish_to_scopes(
        hub, EventType.MATCH_ENDED, event, session_id=match.session_id, match_id=match_id
    )
    return {"match_id": match_id, "cancelled": True}


@returns_result
async def penalize_participant(
    session: AsyncSession,
    user_id: int,
    match_id: int,
    target_user_id: int,
    penalized: bool = True,
) -> Dict:
    """Host flags (or unflags) a participant to forfeit rating gains for this match."""
    match = await _get_match_or_decline(session, match_id)
    play_session = await get_play_session_or_decline(session, match.session_id)
    require_host(play_session, user_id, "penalize players")
    if not match.is_in_progress:
        raise conflict("Match has already ended")

    result = await session.execute(
        select(MatchParticipant).where(
            MatchParticipant.match_id == match_id,
            MatchParticipant.user_id == target_user_id,
        )
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise not_found("Player is not in this match")

    participant.penalized = bool(penalized)
    await session.commit()
    return {"match_id": match_id, "user_id": target_user_id, "penalized": participant.penalized}


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@returns_result
async def get_match(session: AsyncSession, user_id: int, match_id: int) -> Dict:
    """Match with both teams (group members only)."""
    match = await _get_match_or_decline(session, match_id)
    play_session = await get_play_session_or_decline(session, match.session_id)
    await group_service.require_group_member(session, play_session.group_id, user_id)

    data = (await load_match_details(session, [match]))[0]
    data["is_host"] = play_session.host_id == user_id
    return {"match": data}


@returns_result
async def get_active_match(session: AsyncSession, user_id: int, session_id: int) -> Dict:
    """The in-progress match of a session, or None."""
    play_session = await get_play_session_or_decline(session, session_id)
    await group_service.require_group_member(session, play_session.group_id, user_id)

    match = await _get_active_match(session, session_id)
    if match is None:
        return {"match": None}
    return {"match": (await load_match_details(session, [match]))[0]}
