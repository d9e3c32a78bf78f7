"""游戏房间模型。"""

from __future__ import annotations

import random
import string
from datetime import datetime, timezone
from typing import Any, Literal

from beanie import Document
from pydantic import BaseModel, Field
from pymongo import IndexModel

GameType = Literal["okey", "batak", "tavla", "pisti"]
RoomStatus = Literal["waiting", "playing", "finished", "cancelled"]

SEAT_POSITIONS = ("top", "right", "bottom", "left")
CHAT_HISTORY_LIMIT = 50


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Mongo 读回的时间不带时区，统一按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_room_id(length: int = 6) -> str:
    """生成随机房间号。"""
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def default_room_settings() -> dict[str, Any]:
    return {
        "timeLimit": 30,
        "autoStart": True,
        "allowSpectators": True,
        "privateRoom": False,
    }


def default_room_name(game_type: str) -> str:
    return f"{game_type.capitalize()} Salonu"


class RoomStateError(ValueError):
    """房间状态不允许当前操作。"""


class SeatedPlayer(BaseModel):
    """对局中的座位信息。"""

    user_id: str
    position: Literal["top", "right", "bottom", "left"]
    score: int = 0
    is_ready: bool = False


class CurrentGame(BaseModel):
    """当前对局（游戏逻辑为占位，仅记录元数据）。"""

    game_id: str = ""
    started_at: datetime | None = None
    players: list[SeatedPlayer] = Field(default_factory=list)
    game_data: dict[str, Any] = Field(default_factory=dict)
    winner: str | None = None


class ChatMessage(BaseModel):
    user_id: str
    username: str
    message: str = Field(..., max_length=500)
    timestamp: datetime = Field(default_factory=utc_now)


class RoomStatistics(BaseModel):
    total_games: int = Field(default=0, ge=0)
    total_players: int = Field(default=0, ge=0)
    average_game_time: float = Field(default=0.0, ge=0)
    total_bet_amount: int = Field(default=0, ge=0)


def assign_seats(player_ids: list[str]) -> list[SeatedPlayer]:
    """按加入顺序分配固定座位。"""
    if len(player_ids) > len(SEAT_POSITIONS):
        raise RoomStateError(f"最多支持 {len(SEAT_POSITIONS)} 个座位")
    return [
        SeatedPlayer(user_id=user_id, position=position, score=0, is_ready=True)
        for user_id, position in zip(player_ids, SEAT_POSITIONS)
    ]


def trim_chat_history(messages: list[ChatMessage], limit: int = CHAT_HISTORY_LIMIT) -> list[ChatMessage]:
    """只保留最近 limit 条消息。"""
    if len(messages) <= limit:
        return messages
    return messages[-limit:]


class Room(Document):
    """游戏房间。"""

    room_id: str = Field(default_factory=generate_room_id, max_length=16)
    name: str = Field(..., min_length=1, max_length=50)
    game_type: GameType
    players: list[str] = Field(default_factory=list)
    max_players: int = Field(default=4, ge=2, le=4)
    status: RoomStatus = "waiting"
    bet_amount: int = Field(default=100, ge=10, le=10000)
    settings: dict[str, Any] = Field(default_factory=default_room_settings)
    created_by: str = Field(..., max_length=32)
    current_game: CurrentGame | None = None
    spectators: list[str] = Field(default_factory=list)
    chat_messages: list[ChatMessage] = Field(default_factory=list)
    statistics: RoomStatistics = Field(default_factory=RoomStatistics)
    is_active: bool = True
    password_hash: str = Field(default="", max_length=256)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "rooms"
        use_revision = True
        indexes = [
            IndexModel([("room_id", 1)], unique=True, name="uniq_room_id"),
            IndexModel([("game_type", 1), ("status", 1)], name="idx_room_type_status"),
            IndexModel([("created_by", 1)], name="idx_room_creator"),
            IndexModel([("is_active", 1)], name="idx_room_active"),
            IndexModel([("created_at", -1)], name="idx_room_created_at"),
        ]

    @property
    def current_player_count(self) -> int:
        return len(self.players)

    @property
    def available_slots(self) -> int:
        return self.max_players - len(self.players)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players

    @property
    def can_start_game(self) -> bool:
        return len(self.players) >= 2 and self.status == "waiting"

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def add_player(self, user_id: str) -> None:
        if self.is_full:
            raise RoomStateError("房间已满")
        if user_id in self.players:
            raise RoomStateError("用户已在房间中")
        self.players.append(user_id)
        self.statistics.total_players += 1
        self.touch()

    def remove_player(self, user_id: str) -> bool:
        """移出玩家，返回是否确实移除。"""
        before = len(self.players)
        self.players = [player_id for player_id in self.players if player_id != user_id]
        self.touch()
        return len(self.players) != before

    def start_game(self, now: datetime | None = None) -> CurrentGame:
        if len(self.players) < 2:
            raise RoomStateError("至少需要 2 名玩家才能开始游戏")
        if self.status != "waiting":
            raise RoomStateError("房间当前状态无法开始游戏")

        started_at = now or utc_now()
        self.current_game = CurrentGame(
            game_id=f"game_{int(started_at.timestamp() * 1000)}",
            started_at=started_at,
            players=assign_seats(self.players),
            game_data={},
        )
        self.status = "playing"
        self.statistics.total_bet_amount += self.bet_amount * len(self.players)
        self.touch()
        return self.current_game

    def end_game(
        self,
        winner_id: str,
        final_scores: dict[str, int] | None = None,
        now: datetime | None = None,
    ) -> CurrentGame:
        if self.status != "playing" or self.current_game is None:
            raise RoomStateError("房间没有进行中的对局")

        self.status = "finished"
        self.current_game.winner = winner_id
        if final_scores:
            for seat in self.current_game.players:
                seat.score = int(final_scores.get(seat.user_id, 0) or 0)

        self.statistics.total_games += 1
        if self.current_game.started_at is not None:
            ended_at = now or utc_now()
            minutes = max((ended_at - as_utc(self.current_game.started_at)).total_seconds() / 60, 0.0)
            games = self.statistics.total_games
            previous = self.statistics.average_game_time
            self.statistics.average_game_time = (previous * (games - 1) + minutes) / games
        self.touch()
        return self.current_game

    def add_chat_message(self, user_id: str, username: str, message: str, timestamp: datetime | None = None) -> ChatMessage:
        entry = ChatMessage(user_id=user_id, username=username, message=message, timestamp=timestamp or utc_now())
        self.chat_messages.append(entry)
        self.chat_messages = trim_chat_history(self.chat_messages)
        self.touch()
        return entry

    def cancel(self) -> None:
        if self.status != "waiting":
            raise RoomStateError("只有等待中的房间可以取消")
        self.status = "cancelled"
        self.is_active = False
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        """对外返回的房间数据（不含密码）。"""
        current_game = None
        if self.current_game is not None:
            current_game = {
                "gameId": self.current_game.game_id,
                "startedAt": self.current_game.started_at,
                "players": [
                    {
                        "userId": seat.user_id,
                        "position": seat.position,
                        "score": seat.score,
                        "isReady": seat.is_ready,
                    }
                    for seat in self.current_game.players
                ],
                "gameData": self.current_game.game_data,
                "winner": self.current_game.winner,
            }
        return {
            "id": self.room_id,
            "roomId": self.room_id,
            "name": self.name,
            "gameType": self.game_type,
            "players": list(self.players),
            "maxPlayers": self.max_players,
            "currentPlayerCount": self.current_player_count,
            "availableSlots": self.available_slots,
            "isFull": self.is_full,
            "canStartGame": self.can_start_game,
            "status": self.status,
            "betAmount": self.bet_amount,
            "settings": self.settings,
            "createdBy": self.created_by,
            "currentGame": current_game,
            "spectators": list(self.spectators),
            "isActive": self.is_active,
            "hasPassword": self.has_password,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    async def find_active_rooms(cls, game_type: str | None = None) -> list["Room"]:
        query: dict[str, Any] = {"is_active": True, "status": {"$in": ["waiting", "playing"]}}
        if game_type:
            query["game_type"] = game_type
        return await cls.find(query).sort("-created_at").to_list()

    @classmethod
    async def find_user_rooms(cls, user_id: str) -> list["Room"]:
        return await cls.find(
            {"$or": [{"players": user_id}, {"spectators": user_id}], "is_active": True}
        ).sort("-created_at").to_list()
