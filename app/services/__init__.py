"""业务服务层。"""

from app.services import (
    auth_service,
    cleanup_service,
    errors,
    presence_service,
    rate_limit_service,
    realtime_gateway,
    redis_service,
    room_service,
    user_service,
    validators,
)

__all__ = [
    "auth_service",
    "cleanup_service",
    "errors",
    "presence_service",
    "rate_limit_service",
    "realtime_gateway",
    "redis_service",
    "room_service",
    "user_service",
    "validators",
]
