from __future__ import annotations

import httpx
import pytest

from app import config as app_config
from app.main import app
from app.models import Room, User
from app.services import auth_service


async def _register(client: httpx.AsyncClient, username: str, email: str, password: str = "secret1") -> dict:
    resp = await client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def transport(monkeypatch) -> httpx.ASGITransport:
    monkeypatch.setattr(app_config, "RATE_LIMIT_ENABLED", False)
    return httpx.ASGITransport(app=app)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_two_players_create_join_and_start(initialized_db, transport) -> None:
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        alice = await _register(client, "alice", "alice@example.com")
        assert alice["success"] is True
        assert alice["user"]["goldCoins"] == 1000
        assert "seed=alice" in alice["user"]["avatar"]

        login = await client.post("/api/auth/login", json={"email": "ALICE@example.com", "password": "secret1"})
        assert login.status_code == 200
        token_a = login.json()["token"]

        profile = await client.get("/api/users/profile", headers=_auth(token_a))
        assert profile.status_code == 200
        assert profile.json()["data"]["id"] == login.json()["user"]["id"]
        assert auth_service.decode_access_token(token_a).user_id == profile.json()["data"]["id"]
        assert "password_hash" not in profile.json()["data"]

        created = await client.post("/api/rooms", json={"gameType": "okey", "maxPlayers": 2}, headers=_auth(token_a))
        assert created.status_code == 201, created.text
        room = created.json()["data"]
        room_id = room["roomId"]
        assert room["players"] == [alice["user"]["id"]]
        assert room["name"] == "Okey Salonu"
        assert room["canStartGame"] is False

        bob = await _register(client, "bob", "bob@example.com")
        bob_login = await client.post("/api/auth/login", json={"email": "bob@example.com", "password": "secret1"})
        token_b = bob_login.json()["token"]
        joined = await client.post(f"/api/rooms/{room_id}/join", headers=_auth(token_b))
        assert joined.status_code == 200, joined.text
        assert joined.json()["data"]["canStartGame"] is True
        assert joined.json()["data"]["isFull"] is True

        carol = await _register(client, "carol", "carol@example.com")
        full = await client.post(f"/api/rooms/{room_id}/join", headers=_auth(carol["token"]))
        assert full.status_code == 400

        forbidden = await client.post(f"/api/rooms/{room_id}/start", headers=_auth(token_b))
        assert forbidden.status_code == 403

        started = await client.post(f"/api/rooms/{room_id}/start", headers=_auth(token_a))
        assert started.status_code == 200, started.text
        game = started.json()["data"]["currentGame"]
        assert started.json()["data"]["status"] == "playing"
        assert [seat["position"] for seat in game["players"]] == ["top", "right"]
        assert len({seat["userId"] for seat in game["players"]}) == 2

        ended = await client.post(
            f"/api/rooms/{room_id}/end",
            json={"winnerId": bob["user"]["id"], "finalScores": {bob["user"]["id"]: 101}},
            headers=_auth(token_a),
        )
        assert ended.status_code == 200, ended.text

        stats = await client.get(f"/api/users/{bob['user']['id']}/stats")
        assert stats.json()["data"]["gamesWon"] == 1
        assert stats.json()["data"]["winRate"] == 100

    stored = await Room.find_one({"room_id": room_id})
    assert stored is not None
    assert stored.status == "finished"
    assert stored.statistics.total_games == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_duplicate_registration_rejected(initialized_db, transport) -> None:
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        await _register(client, "alice", "alice@example.com")

        same_email = await client.post(
            "/api/auth/register",
            json={"username": "alice2", "email": "Alice@Example.com", "password": "secret1"},
        )
        same_username = await client.post(
            "/api/auth/register",
            json={"username": "alice", "email": "other@example.com", "password": "secret1"},
        )

    assert same_email.status_code == 400
    assert same_username.status_code == 400
    assert await User.find({}).count() == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_last_player_leaving_cancels_room(initialized_db, transport) -> None:
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        alice = await _register(client, "alice", "alice@example.com")
        created = await client.post("/api/rooms", json={"gameType": "batak"}, headers=_auth(alice["token"]))
        room_id = created.json()["data"]["roomId"]

        left = await client.delete(f"/api/rooms/{room_id}/leave", headers=_auth(alice["token"]))
        assert left.status_code == 200

        listed = await client.get("/api/rooms")
        assert room_id not in {item["roomId"] for item in listed.json()["data"]}

    stored = await Room.find_one({"room_id": room_id})
    assert stored.status == "cancelled"
