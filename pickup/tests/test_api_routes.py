"""
API tests: HTTP routes, declined-operation status mapping and the event
WebSocket, run through the real app with its lifespan (event hub + reaper)
against a throwaway SQLite database.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from starlette.websockets import WebSocketDisconnect

from pickup.api.main import app
from pickup.database import db
from pickup.services import auth_service, user_service

USERNAMES = ("alice", "bob", "carol", "dave")


@dataclass
class ApiContext:
    client: TestClient
    user_ids: List[int]

    def headers(self, index: int) -> Dict[str, str]:
        token = auth_service.create_access_token({"user_id": self.user_ids[index]})
        return {"Authorization": f"Bearer {token}"}

    def token(self, index: int) -> str:
        return auth_service.create_access_token({"user_id": self.user_ids[index]})


@pytest.fixture
def api(monkeypatch, tmp_path):
    """App client bound to a fresh database file with four users.

    A file (not ``:memory:``) gives every session its own connection, so the
    reaper's startup sweep cannot share a transaction with the test's writes.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(
        db,
        "AsyncSessionLocal",
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False),
    )

    async def seed_users():
        async with db.AsyncSessionLocal() as session:
            return [await user_service.create_user(session, name) for name in USERNAMES]

    # Lifespan creates the tables, the event hub and the reaper
    with TestClient(app) as client:
        user_ids = client.portal.call(seed_users)
        yield ApiContext(client=client, user_ids=user_ids)
        client.portal.call(engine.dispose)


def _create_group_with_members(api: ApiContext, members=(1, 2, 3)) -> Dict:
    response = api.client.post("/api/groups", json={"name": "Lunch Run"}, headers=api.headers(0))
    assert response.status_code == 200
    group = response.json()["group"]
    for index in members:
        joined = api.client.post(
            "/api/groups/join", json={"invite_code": group["invite_code"]}, headers=api.headers(index)
        )
        assert joined.status_code == 200
    return group


def _create_session(api: ApiContext, group_id: int) -> int:
    response = api.client.post("/api/play-sessions", json={"group_id": group_id}, headers=api.headers(0))
    assert response.status_code == 200
    return response.json()["play_session"]["id"]


def test_requires_authentication(api):
    response = api.client.post("/api/groups", json={})
    assert response.status_code in (401, 403)

    bad_token = api.client.post(
        "/api/groups", json={}, headers={"Authorization": "Bearer not-a-token"}
    )
    assert bad_token.status_code == 401


def test_health(api):
    assert api.client.get("/api/health").json() == {"status": "ok"}


def test_full_match_flow(api):
    group = _create_group_with_members(api)
    session_id = _create_session(api, group["id"])

    joined = api.client.post(f"/api/play-sessions/{session_id}/join", headers=api.headers(1))
    assert joined.status_code == 200

    started = api.client.post(
        f"/api/play-sessions/{session_id}/matches", json={"match_size": 2}, headers=api.headers(0)
    )
    assert started.status_code == 200
    match = started.json()["match"]

    active = api.client.get(f"/api/play-sessions/{session_id}/active-match", headers=api.headers(1))
    assert active.json()["match"]["id"] == match["id"]

    completed = api.client.post(
        f"/api/matches/{match['id']}/complete", json={"winning_team": 0}, headers=api.headers(0)
    )
    assert completed.status_code == 200
    changes = sorted(p["elo_change"] for team in completed.json()["match"]["teams"] for p in team)
    assert changes == [-20, 20]

    leaderboard = api.client.get(f"/api/groups/{group['id']}/leaderboard", headers=api.headers(2))
    assert [row["elo"] for row in leaderboard.json()["leaderboard"]] == [1520, 1480]

    history = api.client.get(f"/api/groups/{group['id']}/matches", headers=api.headers(3))
    assert [m["id"] for m in history.json()["matches"]] == [match["id"]]

    ended = api.client.post(f"/api/play-sessions/{session_id}/end", headers=api.headers(0))
    assert ended.status_code == 200
    listing = api.client.get(f"/api/groups/{group['id']}/play-sessions", headers=api.headers(0))
    assert listing.json()["play_sessions"] == []


def test_declined_operations_map_to_status_codes(api):
    group = _create_group_with_members(api, members=(1,))
    session_id = _create_session(api, group["id"])

    api.client.post(f"/api/play-sessions/{session_id}/join", headers=api.headers(1))
    duplicate = api.client.post(f"/api/play-sessions/{session_id}/join", headers=api.headers(1))
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Already joined this play session"

    not_host = api.client.post(
        f"/api/play-sessions/{session_id}/matches", json={"match_size": 2}, headers=api.headers(1)
    )
    assert not_host.status_code == 403

    odd = api.client.post(
        f"/api/play-sessions/{session_id}/matches", json={"match_size": 3}, headers=api.headers(0)
    )
    assert odd.status_code == 400

    missing = api.client.get("/api/play-sessions/9999", headers=api.headers(0))
    assert missing.status_code == 404

    outsider = api.client.get(f"/api/play-sessions/{session_id}", headers=api.headers(2))
    assert outsider.status_code == 403

    host_leave = api.client.post(f"/api/play-sessions/{session_id}/leave", headers=api.headers(0))
    assert host_leave.status_code == 403


def test_invite_spectator_and_heartbeat(api):
    group = _create_group_with_members(api)
    session_id = _create_session(api, group["id"])

    invited = api.client.post(
        f"/api/play-sessions/{session_id}/invite",
        json={"user_ids": [api.user_ids[1], api.user_ids[2]]},
        headers=api.headers(0),
    )
    assert invited.json()["invited"] == [api.user_ids[1], api.user_ids[2]]

    spectator = api.client.post(
        f"/api/play-sessions/{session_id}/spectator",
        json={"user_id": api.user_ids[2], "is_spectator": True},
        headers=api.headers(0),
    )
    assert spectator.status_code == 200

    details = api.client.get(f"/api/play-sessions/{session_id}", headers=api.headers(1)).json()
    flags = {p["username"]: p["is_spectator"] for p in details["play_session"]["participants"]}
    assert flags == {"alice": False, "bob": False, "carol": True}

    heartbeat = api.client.post(f"/api/play-sessions/{session_id}/heartbeat", headers=api.headers(0))
    assert heartbeat.status_code == 200


def test_play_session_websocket_streams_events(api):
    group = _create_group_with_members(api)
    session_id = _create_session(api, group["id"])

    url = f"/api/ws/play-sessions/{session_id}?token={api.token(0)}"
    with api.client.websocket_connect(url) as ws:
        greeting = ws.receive_json()
        assert greeting["type"] == "connected"
        assert greeting["data"]["session_id"] == session_id

        api.client.post(f"/api/play-sessions/{session_id}/join", headers=api.headers(1))
        joined = ws.receive_json()
        assert joined == {
            "type": "player_joined",
            "data": {"session_id": session_id, "user_id": api.user_ids[1], "username": "bob"},
        }

        ws.send_text("ping")
        assert ws.receive_text() == "pong"

        api.client.post(f"/api/play-sessions/{session_id}/end", headers=api.headers(0))
        ended = ws.receive_json()
        assert ended["type"] == "session_ended"
        assert ended["data"]["reason"] == "host_ended"


def test_websocket_rejects_bad_token(api):
    group = _create_group_with_members(api)
    session_id = _create_session(api, group["id"])

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with api.client.websocket_connect(f"/api/ws/play-sessions/{session_id}?token=bad") as ws:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_websocket_rejects_non_member(api):
    group = _create_group_with_members(api, members=(1,))
    session_id = _create_session(api, group["id"])

    url = f"/api/ws/play-sessions/{session_id}?token={api.token(3)}"
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with api.client.websocket_connect(url) as ws:
            ws.receive_text()
    assert exc_info.value.code == 1008


def test_list_and_get_groups(api):
    first = _create_group_with_members(api, members=(1,))
    second = api.client.post("/api/groups", json={"name": "Late Shift"}, headers=api.headers(1)).json()["group"]

    listing = api.client.get("/api/groups", headers=api.headers(1))
    assert listing.status_code == 200
    assert [g["id"] for g in listing.json()["groups"]] == [second["id"], first["id"]]

    details = api.client.get(f"/api/groups/{first['id']}", headers=api.headers(1))
    assert details.status_code == 200
    assert [m["username"] for m in details.json()["group"]["members"]] == ["alice", "bob"]

    outsider = api.client.get(f"/api/groups/{first['id']}", headers=api.headers(3))
    assert outsider.status_code == 403


def test_declined_requests_are_logged(api, caplog):
    with caplog.at_level(logging.INFO, logger="pickup.api.routes"):
        response = api.client.get("/api/play-sessions/9999", headers=api.headers(0))

    assert response.status_code == 404
    assert any(
        "Request declined (404): Play session not found" in record.getMessage()
        for record in caplog.records
    )
