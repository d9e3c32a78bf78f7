"""用户服务层。"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError

from app.models import User
from app.models.user import default_avatar_url, utc_now
from app.services import validators
from app.services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20


async def get_user_by_id(user_id: str | None) -> User | None:
    if not user_id:
        return None
    try:
        object_id = PydanticObjectId(user_id)
    except (InvalidId, TypeError):
        return None
    return await User.get(object_id)


async def require_user(user_id: str | None) -> User:
    user = await get_user_by_id(user_id)
    if not user:
        raise NotFoundError("用户不存在")
    return user


async def get_user_by_email(email: str) -> User | None:
    return await User.find_one({"email": validators.normalize_email(email)})


async def get_users_by_ids(user_ids: list[str]) -> dict[str, User]:
    """批量查询用户，返回 {user_id: User}。"""
    object_ids: list[PydanticObjectId] = []
    for user_id in set(user_ids):
        try:
            object_ids.append(PydanticObjectId(user_id))
        except (InvalidId, TypeError):
            continue
    if not object_ids:
        return {}
    users = await User.find({"_id": {"$in": object_ids}}).to_list()
    return {str(user.id): user for user in users}


async def update_profile(user: User, payload: dict[str, Any]) -> User:
    """更新用户名与头像；用户名变更时若头像为默认头像则一并更新。"""
    username = payload.get("username")
    avatar = payload.get("avatar")
    if username is None and avatar is None:
        raise ValidationError("没有需要更新的内容")

    if username is not None:
        error = validators.validate_username(username)
        if error:
            raise ValidationError(error)
        username = validators.normalize_username(username)
        if username != user.username:
            if await User.find_one({"username": username}):
                raise ValidationError("该用户名已被使用")
            if user.avatar == default_avatar_url(user.username) and avatar is None:
                user.avatar = default_avatar_url(username)
            user.username = username

    if avatar is not None:
        avatar = str(avatar).strip()
        user.avatar = avatar or default_avatar_url(user.username)

    user.updated_at = utc_now()
    try:
        await user.save()
    except DuplicateKeyError as exc:
        raise ValidationError("该用户名已被使用") from exc
    return user


async def set_online(user_id: str, is_online: bool) -> None:
    user = await get_user_by_id(user_id)
    if not user:
        return
    user.is_online = is_online
    user.updated_at = utc_now()
    await user.save()


async def record_game_result(user_id: str, result: Literal["win", "loss"], score: int) -> User | None:
    """对局结束后更新用户统计。"""
    user = await get_user_by_id(user_id)
    if not user:
        logger.warning("更新战绩时未找到用户 %s", user_id)
        return None
    user.update_stats(result, score)
    await user.save()
    return user


async def search_users(query: str, limit: int = SEARCH_LIMIT) -> list[User]:
    keyword = str(query or "").strip()
    if not keyword:
        return []
    regex = {"$regex": re.escape(keyword), "$options": "i"}
    return await User.find({"username": regex}).sort("username").limit(limit).to_list()


def public_profile(user: User) -> dict[str, Any]:
    """他人可见的资料（不含邮箱）。"""
    data = user.profile()
    data.pop("email", None)
    return data
