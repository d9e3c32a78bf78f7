"""认证接口：注册、登录、登出。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.apps.api.deps import get_current_identity
from app.services import auth_service
from app.services.auth_service import TokenIdentity

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterBody(BaseModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None


class LoginBody(BaseModel):
    email: str | None = None
    password: str | None = None


@router.post("/register")
async def register(body: RegisterBody) -> JSONResponse:
    """注册新用户并直接返回令牌。"""
    user, token = await auth_service.register_user(body.username, body.email, body.password)
    return JSONResponse(
        content=auth_service.auth_response(user, token, "注册成功"),
        status_code=201,
    )


@router.post("/login")
async def login(body: LoginBody) -> dict[str, Any]:
    user, token = await auth_service.authenticate(body.email, body.password)
    return auth_service.auth_response(user, token, "登录成功")


@router.post("/logout")
async def logout(identity: TokenIdentity = Depends(get_current_identity)) -> dict[str, Any]:
    await auth_service.logout(identity.user_id)
    return {"success": True, "message": "已退出登录"}
