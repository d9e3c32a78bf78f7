"""接口公共依赖：Bearer 令牌鉴权与实时网关注入。"""

from __future__ import annotations

from fastapi import Request

from app.models import User
from app.services import auth_service, user_service
from app.services.auth_service import TokenIdentity
from app.services.errors import AuthenticationError, NotFoundError
from app.services.realtime_gateway import RealtimeGateway


async def get_current_identity(request: Request) -> TokenIdentity:
    """解析 Authorization 头；缺失返回 401，无效返回 400。"""
    token = auth_service.extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise AuthenticationError("访问被拒绝，请先登录")
    identity = auth_service.decode_access_token(token)
    request.state.user_id = identity.user_id
    return identity


async def get_current_user(request: Request) -> User:
    identity = await get_current_identity(request)
    user = await user_service.get_user_by_id(identity.user_id)
    if not user:
        raise NotFoundError("用户不存在")
    return user


def get_gateway(request: Request) -> RealtimeGateway:
    return request.app.state.gateway
