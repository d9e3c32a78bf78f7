"""游戏房间服务 - 处理房间的创建、加入、开局、结算等逻辑。

同一房间的所有写操作都通过进程内的房间锁串行执行，并在锁内重新读取房间；
跨进程的并发写入则由 Beanie 的 revision 校验拦截，转换为 ConflictError。
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

from beanie.exceptions import RevisionIdWasChanged
from pymongo.errors import DuplicateKeyError

from app.models import ChatMessage, Room, User
from app.models.room import (
    RoomStateError,
    as_utc,
    default_room_name,
    default_room_settings,
    generate_room_id,
)
from app.services import auth_service, user_service, validators
from app.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
_CREATE_ATTEMPTS = 5

_room_locks: dict[str, asyncio.Lock] = {}
# 正在持有或等待房间锁的协程数，归零时回收锁对象
_room_lock_users: dict[str, int] = {}


def _room_key(room_id: str) -> str:
    return str(room_id).strip().upper()


def get_room_lock(room_id: str) -> asyncio.Lock:
    """获取房间级别的互斥锁。"""
    key = _room_key(room_id)
    lock = _room_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _room_locks[key] = lock
    return lock


async def get_room(room_id: str | None) -> Room | None:
    """根据房间号获取房间。"""
    if not room_id:
        return None
    return await Room.find_one({"room_id": _room_key(room_id)})


async def require_room(room_id: str | None) -> Room:
    room = await get_room(room_id)
    if not room:
        raise NotFoundError("房间不存在")
    return room


@asynccontextmanager
async def locked_room(room_id: str) -> AsyncIterator[Room]:
    """在房间锁内读取最新房间数据；最后一个使用者退出后回收锁。"""
    key = _room_key(room_id)
    lock = get_room_lock(key)
    _room_lock_users[key] = _room_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield await require_room(key)
    finally:
        remaining = _room_lock_users.get(key, 1) - 1
        if remaining > 0:
            _room_lock_users[key] = remaining
        else:
            _room_lock_users.pop(key, None)
            _room_locks.pop(key, None)


async def _save_room(room: Room) -> None:
    try:
        await room.save()
    except RevisionIdWasChanged as exc:
        logger.warning("房间 %s 并发写入冲突", room.room_id)
        raise ConflictError("房间状态已变更，请重试") from exc


def _ensure_creator(room: Room, user_id: str) -> None:
    if room.created_by != user_id:
        raise PermissionDeniedError("只有房主可以执行该操作")


def _parse_int(value: Any, field_label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_label}必须是整数") from exc


async def create_room(
    creator: User,
    game_type: str | None,
    max_players: Any = 4,
    bet_amount: Any = 100,
    name: str | None = None,
    settings: dict[str, Any] | None = None,
    password: str = "",
) -> Room:
    """创建房间，房主自动成为第一位玩家。"""
    if not game_type:
        raise ValidationError("游戏类型为必填项")
    game_type = str(game_type).strip().lower()
    max_players = _parse_int(4 if max_players is None else max_players, "玩家人数")
    bet_amount = _parse_int(100 if bet_amount is None else bet_amount, "下注金额")

    for error in (
        validators.validate_game_type(game_type),
        validators.validate_max_players(max_players),
        validators.validate_bet_amount(bet_amount),
        validators.validate_room_name(name),
    ):
        if error:
            raise ValidationError(error)

    room_settings = default_room_settings()
    if settings:
        room_settings.update(settings)
    if password:
        room_settings["privateRoom"] = True

    creator_id = str(creator.id)
    for _ in range(_CREATE_ATTEMPTS):
        room_code = generate_room_id()
        if await Room.find_one({"room_id": room_code}):
            continue

        room = Room(
            room_id=room_code,
            name=(name or "").strip() or default_room_name(game_type),
            game_type=game_type,
            max_players=max_players,
            bet_amount=bet_amount,
            settings=room_settings,
            created_by=creator_id,
            password_hash=auth_service.hash_password(password) if password else "",
        )
        room.add_player(creator_id)
        try:
            await room.insert()
        except DuplicateKeyError:
            continue
        logger.info("用户 %s 创建房间 %s (%s)", creator.username, room.room_id, room.game_type)
        return room

    raise ConflictError("房间号生成失败，请重试")


async def list_active_rooms(game_type: str | None = None) -> list[Room]:
    if game_type:
        error = validators.validate_game_type(game_type)
        if error:
            raise ValidationError(error)
        game_type = game_type.strip().lower()
    return await Room.find_active_rooms(game_type)


async def list_user_rooms(user_id: str) -> list[Room]:
    return await Room.find_user_rooms(user_id)


async def search_rooms(
    query: str | None = None,
    game_type: str | None = None,
    status: str | None = None,
    limit: int = SEARCH_LIMIT,
) -> list[Room]:
    """按名称/房间号模糊搜索活跃房间。"""
    filters: dict[str, Any] = {"is_active": True}
    keyword = str(query or "").strip()
    if keyword:
        regex = {"$regex": re.escape(keyword), "$options": "i"}
        filters["$or"] = [{"name": regex}, {"room_id": regex}]
    if game_type:
        filters["game_type"] = game_type.strip().lower()
    if status:
        filters["status"] = status.strip().lower()
    return await Room.find(filters).sort("-created_at").limit(limit).to_list()


async def join_room(room_id: str, user_id: str, password: str = "") -> Room:
    async with locked_room(room_id) as room:
        if not room.is_active or room.status != "waiting":
            raise ValidationError("房间当前不可加入")
        if room.has_password and not auth_service.verify_password(password, room.password_hash):
            raise PermissionDeniedError("房间密码错误")
        try:
            room.add_player(user_id)
        except RoomStateError as exc:
            raise ValidationError(str(exc)) from exc
        await _save_room(room)
        logger.info("用户 %s 加入房间 %s (%d/%d)", user_id, room.room_id, room.current_player_count, room.max_players)
        return room


async def leave_room(room_id: str, user_id: str) -> Room:
    """离开房间；等待中的房间无人时自动取消。"""
    async with locked_room(room_id) as room:
        removed = room.remove_player(user_id)
        if user_id in room.spectators:
            room.spectators = [item for item in room.spectators if item != user_id]
        if room.status == "waiting" and not room.players:
            room.cancel()
            logger.info("房间 %s 已无玩家，自动取消", room.room_id)
        await _save_room(room)
        if removed:
            logger.info("用户 %s 离开房间 %s", user_id, room.room_id)
    return room


async def update_settings(room_id: str, user_id: str, payload: dict[str, Any]) -> Room:
    """房主修改房间设置；名称、人数上限、下注仅在等待阶段可改。"""
    async with locked_room(room_id) as room:
        _ensure_creator(room, user_id)

        structural = {key: payload[key] for key in ("name", "maxPlayers", "betAmount") if key in payload}
        if structural and room.status != "waiting":
            raise ValidationError("游戏开始后无法修改房间配置")

        if "name" in structural:
            error = validators.validate_room_name(structural["name"])
            name = str(structural["name"] or "").strip()
            if error or not name:
                raise ValidationError(error or "房间名称不能为空")
            room.name = name
        if "maxPlayers" in structural:
            max_players = _parse_int(structural["maxPlayers"], "玩家人数")
            error = validators.validate_max_players(max_players)
            if error:
                raise ValidationError(error)
            if max_players < room.current_player_count:
                raise ValidationError("人数上限不能低于当前玩家数")
            room.max_players = max_players
        if "betAmount" in structural:
            bet_amount = _parse_int(structural["betAmount"], "下注金额")
            error = validators.validate_bet_amount(bet_amount)
            if error:
                raise ValidationError(error)
            room.bet_amount = bet_amount

        settings = payload.get("settings")
        if settings is not None:
            if not isinstance(settings, dict):
                raise ValidationError("settings 必须是对象")
            room.settings = {**room.settings, **settings}

        room.touch()
        await _save_room(room)
        return room


async def start_game(room_id: str, user_id: str) -> Room:
    async with locked_room(room_id) as room:
        _ensure_creator(room, user_id)
        try:
            room.start_game()
        except RoomStateError as exc:
            raise ValidationError(str(exc)) from exc
        await _save_room(room)
        logger.info("房间 %s 开始对局 %s", room.room_id, room.current_game.game_id)
        return room


async def end_game(
    room_id: str,
    user_id: str,
    winner_id: str | None,
    final_scores: dict[str, Any] | None = None,
) -> Room:
    """结束对局并更新每位入座玩家的战绩。"""
    if not winner_id:
        raise ValidationError("必须指定获胜者")
    scores: dict[str, int] = {}
    for key, value in (final_scores or {}).items():
        scores[str(key)] = _parse_int(value, "分数")

    async with locked_room(room_id) as room:
        _ensure_creator(room, user_id)
        if room.current_game is not None and winner_id not in {seat.user_id for seat in room.current_game.players}:
            raise ValidationError("获胜者不在本局玩家中")
        try:
            game = room.end_game(winner_id, scores)
        except RoomStateError as exc:
            raise ValidationError(str(exc)) from exc
        await _save_room(room)
        logger.info("房间 %s 对局 %s 结束，获胜者 %s", room.room_id, game.game_id, winner_id)

    for seat in game.players:
        result = "win" if seat.user_id == winner_id else "loss"
        await user_service.record_game_result(seat.user_id, result, seat.score)
    return room


async def append_chat_message(
    room_id: str,
    user_id: str,
    username: str,
    message: str,
    timestamp: datetime | None = None,
) -> ChatMessage | None:
    """向房间聊天记录追加消息；房间不存在时返回 None。"""
    try:
        async with locked_room(room_id) as room:
            entry = room.add_chat_message(user_id, username, message, timestamp)
            await _save_room(room)
            return entry
    except NotFoundError:
        return None


async def cancel_room(room_id: str) -> Room:
    async with locked_room(room_id) as room:
        try:
            room.cancel()
        except RoomStateError as exc:
            raise ValidationError(str(exc)) from exc
        await _save_room(room)
    return room


async def deactivate_room(room_id: str, status: str, idle_before: datetime | None = None) -> bool:
    """在房间锁内下线指定状态的活跃房间，返回是否下线。

    传入 idle_before 时，仍有玩家且在该时间之后有过更新的房间会被跳过。
    """
    async with locked_room(room_id) as room:
        if not room.is_active or room.status != status:
            return False
        if idle_before is not None and room.players and as_utc(room.updated_at) >= idle_before:
            return False
        room.is_active = False
        room.touch()
        await _save_room(room)
        return True


def room_stats(room: Room) -> dict[str, Any]:
    return {
        "roomId": room.room_id,
        "totalGames": room.statistics.total_games,
        "totalPlayers": room.statistics.total_players,
        "averageGameTime": room.statistics.average_game_time,
        "totalBetAmount": room.statistics.total_bet_amount,
        "currentPlayerCount": room.current_player_count,
        "availableSlots": room.available_slots,
        "status": room.status,
    }


def chat_history(room: Room) -> list[dict[str, Any]]:
    return [
        {
            "userId": item.user_id,
            "username": item.username,
            "message": item.message,
            "timestamp": item.timestamp,
        }
        for item in room.chat_messages
    ]


async def serialize_rooms(rooms: list[Room]) -> list[dict[str, Any]]:
    """序列化房间列表，并补充玩家的用户名与头像。"""
    user_ids = [player_id for room in rooms for player_id in room.players]
    users = await user_service.get_users_by_ids(user_ids)
    rows: list[dict[str, Any]] = []
    for room in rooms:
        data = room.to_dict()
        data["playerDetails"] = [
            {
                "id": player_id,
                "username": users[player_id].username if player_id in users else "",
                "avatar": users[player_id].avatar if player_id in users else "",
            }
            for player_id in room.players
        ]
        rows.append(data)
    return rows


async def serialize_room(room: Room) -> dict[str, Any]:
    return (await serialize_rooms([room]))[0]
