"""
Two-team balancing by exhaustive search.

Every split of the selected players into equal halves is scored by the
absolute difference of the team average ratings. There are C(n, n/2)
candidates, so match size is capped at MAX_MATCH_SIZE (C(16, 8) = 12,870).

Tie-break policy: candidates are enumerated with ``itertools.combinations``
over the input order and the first strictly-minimal split wins, so team 0
always contains the first input player.
"""

from dataclasses import dataclass, replace
from itertools import combinations
from typing import List, Sequence

from pickup.services.errors import InvalidMatchSize
from pickup.services.player_selector import RatedPlayer
from pickup.services.rating_service import team_average_elo
from pickup.utils.constants import INITIAL_ELO, MIN_MATCH_SIZE, MAX_MATCH_SIZE


@dataclass
class TeamAssignment:
    """Result of balancing: the two teams and their average-rating gap."""

    team_0: List[RatedPlayer]
    team_1: List[RatedPlayer]
    elo_diff: float

    @property
    def teams(self) -> List[List[RatedPlayer]]:
        return [self.team_0, self.team_1]


def validate_match_size(match_size: int) -> None:
    """Raise InvalidMatchSize unless match_size is an even number in range."""
    if match_size % 2 != 0:
        raise InvalidMatchSize("Match size must be even for 2 teams")
    if match_size < MIN_MATCH_SIZE:
        raise InvalidMatchSize(f"Match size must be at least {MIN_MATCH_SIZE}")
    if match_size > MAX_MATCH_SIZE:
        raise InvalidMatchSize(f"Match size cannot exceed {MAX_MATCH_SIZE}")


def _assignment(team_0: List[RatedPlayer], team_1: List[RatedPlayer]) -> TeamAssignment:
    diff = abs(
        team_average_elo(p.elo for p in team_0) - team_average_elo(p.elo for p in team_1)
    )
    return TeamAssignment(team_0=team_0, team_1=team_1, elo_diff=diff)


def balance_teams(players: Sequence[RatedPlayer], match_size: int) -> TeamAssignment:
    """
    Split exactly ``match_size`` players into the most even pair of teams.

    Players without a rating are balanced as INITIAL_ELO.

    Raises:
        InvalidMatchSize: If match_size is odd/out of range or the player
            count differs from match_size
    """
    validate_match_size(match_size)
    if len(players) != match_size:
        raise InvalidMatchSize(
            f"Player count ({len(players)}) must match match size ({match_size})"
        )

    rated = [p if p.elo is not None else replace(p, elo=INITIAL_ELO) for p in players]
    half = match_size // 2

    best = None
    for team_0_indexes in combinations(range(match_size), half):
        chosen = set(team_0_indexes)
        candidate = _assignment(
            [rated[i] for i in team_0_indexes],
            [rated[i] for i in range(match_size) if i not in chosen],
        )
        if best is None or candidate.elo_diff < best.elo_diff:
            best = candidate

    if best is None:
        # Fallback: split in half
        return _assignment(rated[:half], rated[half:])

    return best
