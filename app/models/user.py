"""用户模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from beanie import Document
from pydantic import BaseModel, Field, model_validator
from pymongo import IndexModel

AVATAR_URL_TEMPLATE = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def default_avatar_url(username: str) -> str:
    """根据用户名生成默认头像地址。"""
    return AVATAR_URL_TEMPLATE.format(seed=username)


def compute_win_rate(games_won: int, games_played: int) -> float:
    """计算胜率百分比；尚未对局时返回 0。"""
    if games_played <= 0:
        return 0.0
    return games_won / games_played * 100


class UserStats(BaseModel):
    """用户对局统计。"""

    games_played: int = Field(default=0, ge=0)
    games_won: int = Field(default=0, ge=0)
    total_score: int = Field(default=0)
    win_rate: float = Field(default=0.0, ge=0, le=100)


class User(Document):
    """注册用户。"""

    username: str = Field(..., min_length=3, max_length=20)
    email: str = Field(..., max_length=128)
    password_hash: str = Field(..., min_length=10)
    avatar: str = Field(default="", max_length=512)
    gold_coins: int = Field(default=1000, ge=0)
    level: int = Field(default=1, ge=1)
    stats: UserStats = Field(default_factory=UserStats)
    is_online: bool = False
    last_login: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "okeyonline_users"
        indexes = [
            IndexModel([("username", 1)], unique=True, name="uniq_username"),
            IndexModel([("email", 1)], unique=True, name="uniq_email"),
            IndexModel([("is_online", 1)], name="idx_user_online"),
            IndexModel([("level", -1)], name="idx_user_level"),
        ]

    @model_validator(mode="after")
    def _fill_avatar(self) -> "User":
        if not self.avatar:
            self.avatar = default_avatar_url(self.username)
        return self

    def update_stats(self, game_result: Literal["win", "loss"], score: int) -> None:
        """记录一局结果并重新计算胜率。"""
        self.stats.games_played += 1
        if game_result == "win":
            self.stats.games_won += 1
        self.stats.total_score += score
        self.stats.win_rate = compute_win_rate(self.stats.games_won, self.stats.games_played)
        self.updated_at = utc_now()

    def mark_login(self) -> None:
        self.last_login = utc_now()
        self.is_online = True
        self.updated_at = utc_now()

    def summary(self) -> dict[str, Any]:
        """登录/注册接口返回的用户摘要。"""
        return {
            "id": str(self.id),
            "username": self.username,
            "email": self.email,
            "avatar": self.avatar,
            "goldCoins": self.gold_coins,
            "level": self.level,
        }

    def profile(self) -> dict[str, Any]:
        """完整的公开资料（不含密码）。"""
        return {
            **self.summary(),
            "stats": {
                "gamesPlayed": self.stats.games_played,
                "gamesWon": self.stats.games_won,
                "totalScore": self.stats.total_score,
                "winRate": self.stats.win_rate,
            },
            "isOnline": self.is_online,
            "lastLogin": self.last_login,
            "createdAt": self.created_at,
        }

    @classmethod
    async def find_by_username_or_email(cls, identifier: str) -> "User | None":
        return await cls.find_one({"$or": [{"username": identifier}, {"email": identifier.lower()}]})
