"""Redis 连接管理（限流计数使用）。"""

from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app import config as app_config

logger = logging.getLogger(__name__)

_redis_client: Redis | None = None
_redis_init_failed = False
_redis_lock = asyncio.Lock()


async def get_redis_client() -> Redis | None:
    """获取 Redis 客户端；未配置 REDIS_URL 或连接失败时返回 None，由调用方走内存兜底。"""
    global _redis_client, _redis_init_failed

    if not app_config.REDIS_URL or _redis_init_failed:
        return None
    if _redis_client is not None:
        return _redis_client

    async with _redis_lock:
        if _redis_client is not None or _redis_init_failed:
            return _redis_client

        client = Redis.from_url(app_config.REDIS_URL, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            _redis_init_failed = True
            logger.warning("Redis 不可用，限流改用进程内计数: %s", exc)
            await client.aclose()
            return None

        _redis_client = client
        logger.info("Redis 已连接")
        return _redis_client


async def close_redis_client() -> None:
    """关闭 Redis 客户端连接。"""
    global _redis_client, _redis_init_failed

    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
    _redis_init_failed = False
