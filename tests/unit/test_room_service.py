from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.models import Room
from app.services import auth_service, room_service, user_service
from app.services.errors import NotFoundError, PermissionDeniedError, ValidationError


def _room(**overrides) -> Room:
    data = {
        "room_id": "ABC123",
        "name": "Okey Salonu",
        "game_type": "okey",
        "created_by": "u1",
        "players": ["u1"],
        "max_players": 4,
        "bet_amount": 100,
    }
    data.update(overrides)
    return Room.model_construct(**data)


@pytest.fixture
def stored_room(monkeypatch):
    """把房间读写替换为内存对象，保存时让出事件循环以暴露并发问题。"""
    holder = SimpleNamespace(room=_room(), saves=0)

    async def fake_require_room(_room_id):
        return holder.room

    async def fake_get_room(_room_id):
        return holder.room

    async def fake_save_room(_room):
        await asyncio.sleep(0)
        holder.saves += 1

    monkeypatch.setattr(room_service, "_room_locks", {})
    monkeypatch.setattr(room_service, "_room_lock_users", {})
    monkeypatch.setattr(room_service, "require_room", fake_require_room)
    monkeypatch.setattr(room_service, "get_room", fake_get_room)
    monkeypatch.setattr(room_service, "_save_room", fake_save_room)
    return holder


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_joins_never_exceed_capacity(stored_room) -> None:
    """两名玩家同时抢最后一个座位，只能有一人成功。"""
    stored_room.room = _room(max_players=2)

    results = await asyncio.gather(
        room_service.join_room("ABC123", "u2"),
        room_service.join_room("ABC123", "u3"),
        return_exceptions=True,
    )

    successes = [item for item in results if isinstance(item, Room)]
    failures = [item for item in results if isinstance(item, ValidationError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].message == "房间已满"
    assert len(stored_room.room.players) == 2
    assert stored_room.saves == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_join_rejects_duplicate_and_non_waiting(stored_room) -> None:
    with pytest.raises(ValidationError, match="用户已在房间中"):
        await room_service.join_room("ABC123", "u1")

    stored_room.room = _room(players=["u1", "u2"], status="playing")
    with pytest.raises(ValidationError, match="房间当前不可加入"):
        await room_service.join_room("ABC123", "u3")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_join_private_room_checks_password(stored_room) -> None:
    stored_room.room = _room(password_hash=auth_service.hash_password("letmein"))

    with pytest.raises(PermissionDeniedError):
        await room_service.join_room("ABC123", "u2", "wrong")

    room = await room_service.join_room("ABC123", "u2", "letmein")
    assert room.players == ["u1", "u2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_leave_last_player_cancels_waiting_room(stored_room) -> None:
    room = await room_service.leave_room("ABC123", "u1")

    assert room.players == []
    assert room.status == "cancelled"
    assert room.is_active is False
    assert "ABC123" not in room_service._room_locks


@pytest.mark.unit
@pytest.mark.asyncio
async def test_only_creator_can_start_game(stored_room) -> None:
    stored_room.room = _room(players=["u1", "u2"])

    with pytest.raises(PermissionDeniedError):
        await room_service.start_game("ABC123", "u2")

    room = await room_service.start_game("ABC123", "u1")
    assert room.status == "playing"
    assert [seat.position for seat in room.current_game.players] == ["top", "right"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_game_with_single_player_is_rejected(stored_room) -> None:
    with pytest.raises(ValidationError):
        await room_service.start_game("ABC123", "u1")
    assert stored_room.room.status == "waiting"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_game_records_results_for_each_seat(monkeypatch, stored_room) -> None:
    stored_room.room = _room(players=["u1", "u2"])
    await room_service.start_game("ABC123", "u1")
    record = AsyncMock()
    monkeypatch.setattr(user_service, "record_game_result", record)

    room = await room_service.end_game("ABC123", "u1", "u2", {"u1": "12", "u2": 30})

    assert room.status == "finished"
    assert room.current_game.winner == "u2"
    record.assert_any_await("u1", "loss", 12)
    record.assert_any_await("u2", "win", 30)
    assert record.await_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_game_rejects_unseated_winner(stored_room) -> None:
    stored_room.room = _room(players=["u1", "u2"])
    await room_service.start_game("ABC123", "u1")

    with pytest.raises(ValidationError, match="获胜者不在本局玩家中"):
        await room_service.end_game("ABC123", "u1", "u9")
    assert stored_room.room.status == "playing"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_settings_locked_after_start(stored_room) -> None:
    stored_room.room = _room(players=["u1", "u2"])

    room = await room_service.update_settings(
        "ABC123", "u1", {"name": "Akşam Masası", "settings": {"timeLimit": 45}}
    )
    assert room.name == "Akşam Masası"
    assert room.settings["timeLimit"] == 45
    assert room.settings["allowSpectators"] is True

    with pytest.raises(ValidationError):
        await room_service.update_settings("ABC123", "u1", {"maxPlayers": 1})

    await room_service.start_game("ABC123", "u1")
    with pytest.raises(ValidationError, match="游戏开始后无法修改房间配置"):
        await room_service.update_settings("ABC123", "u1", {"betAmount": 500})

    with pytest.raises(PermissionDeniedError):
        await room_service.update_settings("ABC123", "u2", {"settings": {"timeLimit": 10}})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_append_chat_message_missing_room(monkeypatch) -> None:
    monkeypatch.setattr(room_service, "get_room", AsyncMock(return_value=None))

    assert await room_service.append_chat_message("NOPE00", "u1", "alice", "selam") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_require_room_raises_not_found(monkeypatch) -> None:
    monkeypatch.setattr(room_service, "get_room", AsyncMock(return_value=None))

    with pytest.raises(NotFoundError):
        await room_service.require_room("NOPE00")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_room_rejects_invalid_fields() -> None:
    creator = SimpleNamespace(id="u1", username="alice")

    with pytest.raises(ValidationError):
        await room_service.create_room(creator, None)
    with pytest.raises(ValidationError):
        await room_service.create_room(creator, "poker")
    with pytest.raises(ValidationError):
        await room_service.create_room(creator, "okey", max_players=5)
    with pytest.raises(ValidationError):
        await room_service.create_room(creator, "okey", bet_amount=5)
    with pytest.raises(ValidationError):
        await room_service.create_room(creator, "okey", max_players="four")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_room_seats_creator_and_marks_private(monkeypatch) -> None:
    class FakeRoomFactory:
        find_one = AsyncMock(return_value=None)

        def __new__(cls, **kwargs):
            return Room.model_construct(**kwargs)

    monkeypatch.setattr(room_service, "Room", FakeRoomFactory)
    monkeypatch.setattr(Room, "insert", AsyncMock())
    creator = SimpleNamespace(id="u1", username="alice")

    room = await room_service.create_room(creator, "Tavla", max_players=2, bet_amount=50, password="letmein")

    assert room.players == ["u1"]
    assert room.created_by == "u1"
    assert room.name == "Tavla Salonu"
    assert room.game_type == "tavla"
    assert room.settings["privateRoom"] is True
    assert room.has_password is True
    assert auth_service.verify_password("letmein", room.password_hash)
    assert re.fullmatch(r"[A-Z0-9]{6}", room.room_id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_room_locks_are_released_for_unknown_rooms(monkeypatch) -> None:
    """对不存在的房间号反复操作不会让锁表增长。"""
    monkeypatch.setattr(room_service, "_room_locks", {})
    monkeypatch.setattr(room_service, "_room_lock_users", {})
    monkeypatch.setattr(room_service, "get_room", AsyncMock(return_value=None))

    for index in range(200):
        with pytest.raises(NotFoundError):
            await room_service.join_room(f"NOPE{index:03d}", "u1")
    assert await room_service.append_chat_message("NOPE999", "u1", "alice", "selam") is None

    assert room_service._room_locks == {}
    assert room_service._room_lock_users == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_room_lock_released_after_concurrent_use(stored_room) -> None:
    stored_room.room = _room(max_players=4)

    await asyncio.gather(
        room_service.join_room("abc123", "u2"),
        room_service.join_room("ABC123", "u3"),
        room_service.leave_room("ABC123", "u1"),
    )

    assert stored_room.room.players == ["u2", "u3"]
    assert room_service._room_locks == {}
    assert room_service._room_lock_users == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deactivate_room_hides_empty_playing_room(stored_room) -> None:
    stored_room.room = _room(players=[], status="playing")
    idle_before = datetime.now(timezone.utc) - timedelta(hours=6)

    assert await room_service.deactivate_room("ABC123", "playing", idle_before) is True
    assert stored_room.room.is_active is False
    assert stored_room.saves == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deactivate_room_keeps_recently_updated_playing_room(stored_room) -> None:
    stored_room.room = _room(players=["u1", "u2"], status="playing", updated_at=datetime.now(timezone.utc))
    idle_before = datetime.now(timezone.utc) - timedelta(hours=6)

    assert await room_service.deactivate_room("ABC123", "playing", idle_before) is False
    assert stored_room.room.is_active is True
    assert stored_room.saves == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deactivate_room_rechecks_status_under_lock(stored_room) -> None:
    """查询之后房间状态已变化（例如重新开局）时不下线。"""
    stored_room.room = _room(players=["u1", "u2"], status="waiting")

    assert await room_service.deactivate_room("ABC123", "finished") is False
    assert stored_room.room.is_active is True

    stored_room.room = _room(players=["u1", "u2"], status="finished")
    assert await room_service.deactivate_room("ABC123", "finished") is True
    assert stored_room.room.is_active is False
