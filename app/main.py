"""FastAPI 应用入口。

HTTP 接口由 FastAPI 提供，Socket.IO 网关挂载在其前面；
部署时使用 ``uvicorn app.main:asgi_app``。
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .apps.api.controllers.auth import router as auth_router
from .apps.api.controllers.rooms import router as rooms_router
from .apps.api.controllers.users import router as users_router
from .config import APP_NAME, APP_PORT, APP_VERSION, CORS_ORIGINS, LOG_LEVEL
from .db import close_db, init_db
from .middleware.rate_limit import RateLimitMiddleware
from .models.user import utc_now
from .services.cleanup_service import start_cleanup_scheduler, stop_cleanup_scheduler
from .services.errors import AppError
from .services.realtime_gateway import RealtimeGateway
from .services.redis_service import close_redis_client

# 配置日志
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时初始化，停止时清理资源。"""
    await init_db()
    start_cleanup_scheduler()

    yield

    stop_cleanup_scheduler()
    await close_redis_client()
    await close_db()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse({"success": False, "error": exc.message}, status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "请求参数不合法"
    if errors:
        location = ".".join(str(item) for item in errors[0].get("loc", ()) if item != "body")
        message = f"请求参数不合法: {location}" if location else message
    return JSONResponse({"success": False, "error": message}, status_code=400)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("未处理的异常 %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse({"success": False, "error": "服务器内部错误"}, status_code=500)


def create_app(gateway: RealtimeGateway | None = None) -> FastAPI:
    """创建 HTTP 应用，并注入实时网关。"""
    application = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    application.state.gateway = gateway or RealtimeGateway()

    application.add_middleware(RateLimitMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials="*" not in CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(AppError, app_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(auth_router)
    application.include_router(users_router)
    application.include_router(rooms_router)

    @application.get("/health")
    async def health() -> dict[str, Any]:
        """存活探针。"""
        return {
            "status": "OK",
            "message": f"{APP_NAME} Backend API is running",
            "timestamp": utc_now().isoformat(),
            "version": APP_VERSION,
        }

    return application


app = create_app()
gateway: RealtimeGateway = app.state.gateway
asgi_app = gateway.asgi_app(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:asgi_app", host="0.0.0.0", port=APP_PORT)
