"""用户接口：个人资料、战绩、在线用户与搜索。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.apps.api.deps import get_current_user, get_gateway
from app.models import User
from app.services import auth_service, user_service
from app.services.realtime_gateway import RealtimeGateway

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdateBody(BaseModel):
    username: str | None = None
    avatar: str | None = None


class PasswordChangeBody(BaseModel):
    oldPassword: str = ""
    newPassword: str = ""


def _stats_payload(user: User) -> dict[str, Any]:
    return {
        "userId": str(user.id),
        "username": user.username,
        "level": user.level,
        "goldCoins": user.gold_coins,
        "gamesPlayed": user.stats.games_played,
        "gamesWon": user.stats.games_won,
        "totalScore": user.stats.total_score,
        "winRate": user.stats.win_rate,
    }


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)) -> dict[str, Any]:
    """当前登录用户的资料。"""
    return {
        "success": True,
        "data": {
            "id": str(user.id),
            "username": user.username,
            "email": user.email,
            "avatar": user.avatar,
            "goldCoins": user.gold_coins,
            "level": user.level,
            "createdAt": user.created_at,
        },
    }


@router.put("/profile")
async def update_profile(body: ProfileUpdateBody, user: User = Depends(get_current_user)) -> dict[str, Any]:
    updated = await user_service.update_profile(user, body.model_dump(exclude_none=True))
    return {"success": True, "message": "资料已更新", "data": updated.profile()}


@router.put("/password")
async def change_password(body: PasswordChangeBody, user: User = Depends(get_current_user)) -> dict[str, Any]:
    await auth_service.change_password(user, body.oldPassword, body.newPassword)
    return {"success": True, "message": "密码已修改"}


@router.get("/stats")
async def get_my_stats(user: User = Depends(get_current_user)) -> dict[str, Any]:
    return {"success": True, "data": _stats_payload(user)}


@router.get("/online")
async def list_online_users(gateway: RealtimeGateway = Depends(get_gateway)) -> dict[str, Any]:
    """在线用户以实时网关的登记表为准。"""
    users = [identity.to_dict() for identity in gateway.presence.online_users()]
    return {"success": True, "data": users, "count": len(users)}


@router.get("/search")
async def search_users(q: str = "") -> dict[str, Any]:
    users = await user_service.search_users(q)
    return {"success": True, "data": [user_service.public_profile(user) for user in users]}


@router.get("/{user_id}/stats")
async def get_user_stats(user_id: str) -> dict[str, Any]:
    user = await user_service.require_user(user_id)
    return {"success": True, "data": _stats_payload(user)}


@router.get("/{user_id}")
async def get_user(user_id: str) -> dict[str, Any]:
    user = await user_service.require_user(user_id)
    return {"success": True, "data": user_service.public_profile(user)}
