"""
Tests for the rating service - expected score, Elo change, streaks and penalties.
"""

import pytest

from pickup.services import rating_service
from pickup.utils.constants import INITIAL_ELO, K


def test_expected_score_equal_ratings():
    """Equal ratings give an expected score of exactly 0.5."""
    for rating in (800, 1200, 1500, 2300):
        assert rating_service.expected_score(rating, rating) == 0.5


def test_expected_score_complementary():
    favored = rating_service.expected_score(1600, 1400)
    underdog = rating_service.expected_score(1400, 1600)

    assert favored > 0.5 > underdog
    assert favored + underdog == pytest.approx(1.0)
    # 1 / (1 + 10^-0.5) ~= 0.76
    assert favored == pytest.approx(0.76, abs=0.01)


def test_even_match_moves_twenty_points():
    """1500 vs 1500 with K=40: winner +20, loser -20."""
    assert rating_service.elo_change(1500, 1500, won=True) == 20
    assert rating_service.elo_change(1500, 1500, won=False) == -20


def test_favored_win_gains_little():
    """A 1600 player beating a 1400 player gains round(40 * 0.24) = 10."""
    assert rating_service.elo_change(1600, 1400, won=True) == 10


def test_elo_change_antisymmetric_without_bonus():
    for a, b in [(1500, 1500), (1620, 1380), (1300, 1710)]:
        winner = rating_service.elo_change(a, b, won=True)
        loser = rating_service.elo_change(b, a, won=False)
        assert winner > 0 > loser
        assert abs(winner + loser) <= 1  # rounding only


def test_elo_change_grows_with_streak_bonus():
    changes = [
        rating_service.elo_change(1500, 1500, won=True, bonus=rating_service.streak_bonus(streak))
        for streak in range(4)
    ]
    assert changes == sorted(changes)
    assert changes[0] == 20
    assert changes[3] == round(K * 1.12 * 0.5)


def test_streak_bonus_capped():
    assert rating_service.streak_bonus(0) == 0.0
    assert rating_service.streak_bonus(1) == pytest.approx(0.04)
    assert rating_service.streak_bonus(3) == pytest.approx(0.12)
    assert rating_service.streak_bonus(10) == pytest.approx(0.12)


def test_penalized_winner_gets_nothing():
    assert rating_service.participant_elo_change(1400, 1600, won=True, penalized=True) == 0


def test_penalized_loser_still_loses():
    full_loss = rating_service.participant_elo_change(1500, 1500, won=False)
    assert rating_service.participant_elo_change(1500, 1500, won=False, penalized=True) == full_loss
    assert full_loss == -20


def test_streak_bonus_only_for_winners():
    """A loser on a streak loses the same amount as one without a streak."""
    assert rating_service.participant_elo_change(1500, 1500, won=False, current_streak=3) == -20
    assert rating_service.participant_elo_change(1500, 1500, won=True, current_streak=3) == 22


def test_next_streak():
    assert rating_service.next_streak(0, won=True) == 1
    assert rating_service.next_streak(2, won=True) == 3
    assert rating_service.next_streak(3, won=True) == 3
    assert rating_service.next_streak(3, won=False) == 0


def test_team_average_elo_defaults_missing_ratings():
    assert rating_service.team_average_elo([None, None]) == INITIAL_ELO
    assert rating_service.team_average_elo([1400, None]) == 1450
    assert rating_service.team_average_elo([]) == 0.0
