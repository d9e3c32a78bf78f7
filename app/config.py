"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


APP_NAME = os.getenv("APP_NAME", "OkeyOnline")
APP_ENV = os.getenv("APP_ENV", "dev")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
APP_PORT = _env_int("APP_PORT", 5000)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "okeymobil")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-jwt-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_HOURS = _env_int("JWT_EXPIRES_HOURS", 24)

# 逗号分隔，"*" 表示放行全部来源
CORS_ORIGINS = [item.strip() for item in os.getenv("CORS_ORIGINS", "*").split(",") if item.strip()]

REDIS_URL = os.getenv("REDIS_URL", "")

RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_TRUST_PROXY_HEADERS = _env_bool("RATE_LIMIT_TRUST_PROXY_HEADERS", False)
RATE_LIMIT_WINDOW_SECONDS = _env_int("RATE_LIMIT_WINDOW_SECONDS", 60)
RATE_LIMIT_MAX_REQUESTS = _env_int("RATE_LIMIT_MAX_REQUESTS", 120)
RATE_LIMIT_REGISTER_MAX_REQUESTS = _env_int("RATE_LIMIT_REGISTER_MAX_REQUESTS", 10)
RATE_LIMIT_LOGIN_MAX_REQUESTS = _env_int("RATE_LIMIT_LOGIN_MAX_REQUESTS", 20)
RATE_LIMIT_CREATE_ROOM_MAX_REQUESTS = _env_int("RATE_LIMIT_CREATE_ROOM_MAX_REQUESTS", 20)
RATE_LIMIT_JOIN_ROOM_MAX_REQUESTS = _env_int("RATE_LIMIT_JOIN_ROOM_MAX_REQUESTS", 40)

CLEANUP_ENABLED = _env_bool("CLEANUP_ENABLED", True)
CLEANUP_INTERVAL_MINUTES = _env_int("CLEANUP_INTERVAL_MINUTES", 30)
CLEANUP_WAITING_TIMEOUT_MINUTES = _env_int("CLEANUP_WAITING_TIMEOUT_MINUTES", 120)
CLEANUP_RETENTION_DAYS = _env_int("CLEANUP_RETENTION_DAYS", 7)
CLEANUP_PLAYING_TIMEOUT_MINUTES = _env_int("CLEANUP_PLAYING_TIMEOUT_MINUTES", 360)
