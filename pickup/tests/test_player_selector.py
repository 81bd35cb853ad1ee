"""
Tests for the player selector - playtime fairness, spectators and seeding.
"""

import random

import pytest

from pickup.services.errors import DeclineReason, InsufficientPlayers, InvalidMatchSize
from pickup.services.player_selector import RatedPlayer, select_players


def _pool(games_played, spectators=()):
    return [
        RatedPlayer(user_id=i + 1, elo=1500, games_played=g, is_spectator=(i + 1) in spectators)
        for i, g in enumerate(games_played)
    ]


def test_players_who_sat_out_are_picked_first():
    pool = _pool([2, 0, 1, 0, 2, 1])

    selected = select_players(pool, 2, random.Random(1))

    assert {p.user_id for p in selected} == {2, 4}


def test_fills_from_remaining_pool_when_first_tier_is_short():
    pool = _pool([0, 1, 1, 3, 3, 3])

    selected = select_players(pool, 4, random.Random(7))

    assert len(selected) == 4
    assert selected[0].user_id == 1
    assert {p.user_id for p in selected[1:]} <= {2, 3, 4, 5, 6}


def test_never_selects_spectators():
    pool = _pool([0, 0, 0, 0, 5, 5], spectators={1, 2})

    for seed in range(20):
        selected = select_players(pool, 4, random.Random(seed))
        assert len(selected) == 4
        assert not any(p.is_spectator for p in selected)


def test_seeded_rng_is_reproducible():
    pool = _pool([0] * 10)

    first = [p.user_id for p in select_players(pool, 4, random.Random(42))]
    second = [p.user_id for p in select_players(pool, 4, random.Random(42))]

    assert first == second


def test_insufficient_players():
    pool = _pool([0, 0, 0], spectators={3})

    with pytest.raises(InsufficientPlayers) as exc_info:
        select_players(pool, 4)
    assert exc_info.value.reason == DeclineReason.CONFLICT
    assert "Not enough eligible players (2)" in exc_info.value.message


def test_duplicate_entries_count_once():
    pool = _pool([0, 0]) + [RatedPlayer(user_id=1, games_played=0)]

    with pytest.raises(InsufficientPlayers):
        select_players(pool, 3)


def test_rejects_non_positive_size():
    with pytest.raises(InvalidMatchSize):
        select_players(_pool([0, 0]), 0)
