"""写接口 IP 限流中间件。"""

from __future__ import annotations

import logging

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.services import rate_limit_service

logger = logging.getLogger(__name__)


def _resolve_scope(path: str, method: str) -> str | None:
    """根据请求路径与方法映射限流场景。"""
    upper_method = method.upper()
    if upper_method not in {"POST", "PUT", "PATCH", "DELETE"}:
        return None
    if path == "/api/auth/register":
        return "register"
    if path == "/api/auth/login":
        return "login"
    if path == "/api/rooms":
        return "create_room"
    if path.startswith("/api/rooms/") and path.endswith("/join"):
        return "join_room"
    if path.startswith("/api/"):
        return "api_write"
    return None


def _build_reject_response(retry_after: int) -> Response:
    headers = {"Retry-After": str(max(retry_after, 1))}
    message = f"请求过于频繁，请 {max(retry_after, 1)} 秒后重试。"
    return JSONResponse({"success": False, "error": message}, status_code=429, headers=headers)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """仅针对写接口执行的 IP 级别限流。"""

    async def dispatch(self, request: Request, call_next) -> Response:
        scope = _resolve_scope(request.url.path, request.method)
        if scope is None:
            return await call_next(request)

        try:
            decision = await rate_limit_service.check_request_allowed(request, scope=scope)
        except Exception as exc:
            # 限流存储暂时不可用时按放行处理，避免影响主业务可用性。
            logger.warning("限流检查失败，已放行: %s", exc)
            return await call_next(request)

        if decision.allowed:
            return await call_next(request)
        return _build_reject_response(decision.retry_after)
