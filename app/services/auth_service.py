"""认证服务层：密码哈希、JWT 签发与校验、注册登录。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from app.config import JWT_ALGORITHM, JWT_EXPIRES_HOURS, JWT_SECRET
from app.models import User
from app.models.user import utc_now
from app.services import user_service, validators
from app.services.errors import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass
class TokenIdentity:
    """令牌解析出的身份。"""

    user_id: str
    username: str


def hash_password(raw: str) -> str:
    return _pwd_context.hash(raw)


def verify_password(raw: str, hashed: str) -> bool:
    if not raw or not hashed:
        return False
    return _pwd_context.verify(raw, hashed)


def create_access_token(user: User) -> str:
    """为用户签发访问令牌，载荷包含用户 ID 与用户名。"""
    now = utc_now()
    payload = {
        "id": str(user.id),
        "username": user.username,
        "iat": now,
        "exp": now + timedelta(hours=JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def extract_bearer_token(value: str | None) -> str:
    """从 Authorization 头或握手参数中取出令牌。"""
    raw = str(value or "").strip()
    if raw.lower().startswith("bearer "):
        return raw[7:].strip()
    return raw


def decode_access_token(token: str) -> TokenIdentity:
    """校验令牌并返回身份；无效或过期时抛出 AuthenticationError（400）。"""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("令牌已过期", status_code=400) from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("无效的令牌", status_code=400) from exc

    user_id = str(payload.get("id") or "")
    if not user_id:
        raise AuthenticationError("无效的令牌", status_code=400)
    return TokenIdentity(user_id=user_id, username=str(payload.get("username") or ""))


async def register_user(username: str | None, email: str | None, password: str | None) -> tuple[User, str]:
    """注册新用户，返回 (用户, 令牌)。"""
    if not username or not email or not password:
        raise ValidationError("所有字段均为必填")

    for error in (
        validators.validate_username(username),
        validators.validate_email(email),
        validators.validate_password(password),
    ):
        if error:
            raise ValidationError(error)

    username = validators.normalize_username(username)
    email = validators.normalize_email(email)

    existing = await User.find_one({"$or": [{"username": username}, {"email": email}]})
    if existing:
        raise ValidationError("该用户名或邮箱已被使用")

    user = User(username=username, email=email, password_hash=hash_password(password))
    try:
        await user.insert()
    except DuplicateKeyError as exc:
        # 并发注册时由唯一索引兜底
        raise ValidationError("该用户名或邮箱已被使用") from exc

    logger.info("新用户注册: %s", user.username)
    return user, create_access_token(user)


async def authenticate(email: str | None, password: str | None) -> tuple[User, str]:
    """邮箱密码登录，成功后更新最近登录时间与在线状态。"""
    if not email or not password:
        raise ValidationError("邮箱和密码均为必填")

    user = await user_service.get_user_by_email(email)
    if not user:
        raise AuthenticationError("用户不存在", status_code=400)
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("凭据无效", status_code=400)

    user.mark_login()
    await user.save()
    logger.info("用户登录: %s", user.username)
    return user, create_access_token(user)


async def change_password(user: User, old_password: str, new_password: str) -> None:
    if not verify_password(old_password, user.password_hash):
        raise AuthenticationError("原密码错误", status_code=400)
    error = validators.validate_password(new_password)
    if error:
        raise ValidationError(error)
    user.password_hash = hash_password(new_password)
    user.updated_at = utc_now()
    await user.save()


async def logout(user_id: str) -> None:
    await user_service.set_online(user_id, False)


def auth_response(user: User, token: str, message: str) -> dict[str, Any]:
    return {"success": True, "message": message, "token": token, "user": user.summary()}
