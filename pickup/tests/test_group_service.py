"""
Tests for group membership, invite codes, leaderboard and match history.
"""

import re

import pytest
from sqlalchemy import func, select

from pickup.database.models import Group, Match, PlaySession, RatingRecord
from pickup.services import group_service, match_service, play_session_service, user_service


async def _count(db_session, model, *criteria):
    result = await db_session.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar()


async def _play_one_match(db_session, hub, host_id, other_id, group_id, host_wins=True):
    created = await play_session_service.create_play_session(db_session, host_id, group_id)
    session_id = created["play_session"]["id"]
    await play_session_service.join_play_session(db_session, hub, other_id, session_id)
    started = await match_service.start_match(db_session, hub, host_id, session_id, 2)
    match = started["match"]
    host_team = 0 if any(p["user_id"] == host_id for p in match["teams"][0]) else 1
    await match_service.complete_match(
        db_session, hub, host_id, match["id"], host_team if host_wins else 1 - host_team
    )
    return session_id, match["id"]


def test_invite_code_format():
    code = group_service.generate_invite_code()
    assert re.fullmatch(r"[0-9A-F]{16}", code)


def test_win_percentage():
    assert group_service.win_percentage(0, 0) == "0.0"
    assert group_service.win_percentage(2, 3) == "66.7"
    assert group_service.win_percentage(1, 1) == "100.0"


@pytest.mark.asyncio
async def test_create_group_adds_creator(db_session, users):
    result = await group_service.create_group(db_session, users[0], "Sunday Doubles")

    assert result["success"]
    group = result["group"]
    assert group["name"] == "Sunday Doubles"
    assert await group_service.is_group_member(db_session, group["id"], users[0])
    assert not await group_service.is_group_member(db_session, group["id"], users[1])


@pytest.mark.asyncio
async def test_join_group_by_code(db_session, users):
    group = (await group_service.create_group(db_session, users[0]))["group"]

    joined = await group_service.join_group(db_session, users[1], group["invite_code"].lower())
    again = await group_service.join_group(db_session, users[1], group["invite_code"])
    bad_code = await group_service.join_group(db_session, users[2], "NOPE")

    assert joined["success"]
    assert again["reason"] == "conflict"
    assert bad_code["reason"] == "not_found"


@pytest.mark.asyncio
async def test_list_user_groups_newest_membership_first(db_session, users, group):
    second = (await group_service.create_group(db_session, users[1], "Friday Night"))["group"]
    third = (await group_service.create_group(db_session, users[2], "Beach Doubles"))["group"]
    await group_service.join_group(db_session, users[1], third["invite_code"])

    result = await group_service.list_user_groups(db_session, users[1])

    assert result["success"]
    assert [g["id"] for g in result["groups"]] == [third["id"], second["id"], group["id"]]
    assert all(g["joined_at"] for g in result["groups"])

    outsider = await user_service.create_user(db_session, "mallory")
    assert await group_service.list_user_groups(db_session, outsider) == {"success": True, "groups": []}


@pytest.mark.asyncio
async def test_get_group_members_only(db_session, users, group):
    result = await group_service.get_group(db_session, users[3], group["id"])

    assert result["success"]
    assert result["group"]["name"] == "Tuesday Pickup"
    assert [m["user_id"] for m in result["group"]["members"]] == users
    assert result["group"]["members"][0]["username"] == "alice"

    outsider = await user_service.create_user(db_session, "mallory")
    denied = await group_service.get_group(db_session, outsider, group["id"])
    assert denied["success"] is False
    assert denied["reason"] == "forbidden"

    missing = await group_service.get_group(db_session, users[0], 9999)
    assert missing["reason"] == "not_found"


@pytest.mark.asyncio
async def test_regenerate_invite_code(db_session, users, group):
    result = await group_service.regenerate_invite_code(db_session, users[1], group["id"])

    assert result["success"]
    assert result["invite_code"] != group["invite_code"]
    old_code = await group_service.join_group(db_session, users[0], group["invite_code"])
    assert old_code["reason"] == "not_found"


@pytest.mark.asyncio
async def test_regenerate_requires_membership(db_session, group):
    outsider = await user_service.create_user(db_session, "mallory")
    result = await group_service.regenerate_invite_code(db_session, outsider, group["id"])
    assert result["reason"] == "forbidden"


@pytest.mark.asyncio
async def test_leave_group_drops_rating(db_session, hub, users, group):
    await _play_one_match(db_session, hub, users[0], users[1], group["id"])

    result = await group_service.leave_group(db_session, users[1], group["id"])

    assert result == {"success": True, "group_id": group["id"], "group_deleted": False}
    assert not await group_service.is_group_member(db_session, group["id"], users[1])
    assert await _count(db_session, RatingRecord, RatingRecord.user_id == users[1]) == 0
    assert await _count(db_session, RatingRecord, RatingRecord.user_id == users[0]) == 1


@pytest.mark.asyncio
async def test_last_member_leaving_tears_group_down(db_session, hub, users):
    group = (await group_service.create_group(db_session, users[0]))["group"]
    await group_service.join_group(db_session, users[1], group["invite_code"])
    await _play_one_match(db_session, hub, users[0], users[1], group["id"])

    first = await group_service.leave_group(db_session, users[1], group["id"])
    last = await group_service.leave_group(db_session, users[0], group["id"])

    assert first["group_deleted"] is False
    assert last["group_deleted"] is True
    assert await _count(db_session, Group, Group.id == group["id"]) == 0
    assert await _count(db_session, PlaySession, PlaySession.group_id == group["id"]) == 0
    assert await _count(db_session, Match) == 0
    assert await _count(db_session, RatingRecord) == 0


@pytest.mark.asyncio
async def test_leave_group_not_member(db_session, users, group):
    outsider = await user_service.create_user(db_session, "mallory")
    result = await group_service.leave_group(db_session, outsider, group["id"])
    assert result["reason"] == "not_found"


@pytest.mark.asyncio
async def test_leaderboard_orders_by_elo(db_session, hub, users, group):
    await _play_one_match(db_session, hub, users[0], users[1], group["id"])
    await _play_one_match(db_session, hub, users[0], users[2], group["id"], host_wins=False)

    result = await group_service.get_group_leaderboard(db_session, users[3], group["id"])

    assert result["success"]
    board = result["leaderboard"]
    elos = [row["elo"] for row in board]
    assert elos == sorted(elos, reverse=True)
    by_user = {row["user_id"]: row for row in board}
    assert by_user[users[0]]["win_percentage"] == "50.0"
    assert by_user[users[1]]["win_percentage"] == "0.0"
    assert by_user[users[2]]["username"] == "carol"
    assert users[3] not in by_user


@pytest.mark.asyncio
async def test_match_history_newest_first(db_session, hub, users, group):
    _, first_match = await _play_one_match(db_session, hub, users[0], users[1], group["id"])
    _, second_match = await _play_one_match(db_session, hub, users[2], users[3], group["id"])

    result = await group_service.get_group_match_history(db_session, users[4], group["id"])

    assert result["success"]
    matches = result["matches"]
    assert [m["id"] for m in matches] == [second_match, first_match]
    assert all(len(m["teams"][0]) == 1 and len(m["teams"][1]) == 1 for m in matches)
    assert all(p["elo_after"] is not None for m in matches for team in m["teams"] for p in team)
