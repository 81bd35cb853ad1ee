"""
Fair player selection for a new match.

Players who have sat out the most (fewest completed matches in the session)
are picked first; ties inside a tier are broken by shuffling with an
injectable random source so tests can seed it.
"""

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pickup.services.errors import InsufficientPlayers, InvalidMatchSize


@dataclass
class RatedPlayer:
    """A session participant annotated with rating and in-session playtime."""

    user_id: int
    elo: Optional[float] = None
    games_played: int = 0
    is_spectator: bool = False


def select_players(
    participants: Sequence[RatedPlayer],
    match_size: int,
    rng: Optional[random.Random] = None,
) -> List[RatedPlayer]:
    """
    Pick ``match_size`` players, favouring those with the fewest games played.

    The whole minimum-games tier is shuffled and used first; if it is too
    small, every remaining eligible player is shuffled together and used to
    fill the rest. This is a per-match greedy heuristic, not a guarantee of
    perfectly even playtime across a session.

    Args:
        participants: Session participants (spectators are ignored)
        match_size: Number of players needed
        rng: Random source used for shuffling (defaults to a fresh Random)

    Returns:
        Selected players, minimum-games tier first

    Raises:
        InvalidMatchSize: If match_size is not positive
        InsufficientPlayers: If fewer than match_size non-spectators exist
    """
    if match_size <= 0:
        raise InvalidMatchSize("Match size must be positive")

    rng = rng or random.Random()

    # One entry per user, spectators excluded
    by_user = {}
    for p in participants:
        if not p.is_spectator and p.user_id not in by_user:
            by_user[p.user_id] = p
    eligible = sorted(by_user.values(), key=lambda p: p.games_played)

    if len(eligible) < match_size:
        raise InsufficientPlayers(
            f"Not enough eligible players ({len(eligible)}) for match size ({match_size})"
        )

    min_games = eligible[0].games_played
    first_tier = [p for p in eligible if p.games_played == min_games]
    rng.shuffle(first_tier)
    selected = first_tier[:match_size]

    if len(selected) < match_size:
        remaining = [p for p in eligible if p.games_played != min_games]
        rng.shuffle(remaining)
        selected.extend(remaining[: match_size - len(selected)])

    return selected
