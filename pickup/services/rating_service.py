"""
Elo rating calculations for group matches.

All functions are pure: every input is explicit and nothing is persisted.
"""

from typing import Iterable, Optional

from pickup.utils.constants import (
    INITIAL_ELO,
    K,
    STREAK_BONUS_PER_WIN,
    MAX_STREAK_BONUS_WINS,
)


def expected_score(self_elo: float, opponent_avg_elo: float) -> float:
    """
    Calculate expected score for a player against the opposing team average.

    Formula: 1 / (1 + 10^((opponent_avg - self) / 400))
    If self_elo > opponent_avg_elo, result > 0.5 (player is favored)
    """
    return 1 / (1 + 10 ** ((opponent_avg_elo - self_elo) / 400))


def streak_bonus(current_streak: int) -> float:
    """Streak multiplier bonus: 4% per consecutive win, capped at 3 wins (0.0 to 0.12)."""
    wins_for_bonus = min(max(current_streak, 0), MAX_STREAK_BONUS_WINS)
    return wins_for_bonus * STREAK_BONUS_PER_WIN


def elo_change(
    self_elo: float,
    opponent_avg_elo: float,
    won: bool,
    bonus: float = 0.0,
    k: float = K,
) -> int:
    """
    Calculate the rounded Elo change for one player.

    Args:
        self_elo: Player's rating before the match
        opponent_avg_elo: Average rating of the opposing team
        won: Whether the player's team won
        bonus: Streak bonus from ``streak_bonus`` (scales K)
        k: K-factor

    Returns:
        Signed integer rating change
    """
    actual_score = 1.0 if won else 0.0
    k_adjusted = k * (1 + bonus)
    return round(k_adjusted * (actual_score - expected_score(self_elo, opponent_avg_elo)))


def participant_elo_change(
    self_elo: float,
    opponent_avg_elo: float,
    won: bool,
    current_streak: int = 0,
    penalized: bool = False,
) -> int:
    """
    Elo change for a match participant, applying streak bonus and penalty rules.

    Only winners get the streak bonus. A penalized player who wins gets 0;
    a penalized player who loses takes the full loss.
    """
    if penalized and won:
        return 0
    bonus = streak_bonus(current_streak) if won else 0.0
    return elo_change(self_elo, opponent_avg_elo, won, bonus)


def next_streak(current_streak: int, won: bool) -> int:
    """Win extends the streak up to the bonus cap; a loss resets it."""
    if not won:
        return 0
    return min(current_streak + 1, MAX_STREAK_BONUS_WINS)


def team_average_elo(elos: Iterable[Optional[float]]) -> float:
    """Average rating of a team; missing ratings count as the starting rating."""
    values = [INITIAL_ELO if elo is None else elo for elo in elos]
    if not values:
        return 0.0
    return sum(values) / len(values)
