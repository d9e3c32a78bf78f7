"""写接口 IP 限流：固定窗口计数，Redis 优先，进程内计数兜底。"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from fastapi import Request
from redis.exceptions import RedisError

from app import config as app_config

from .redis_service import get_redis_client

KEY_PREFIX = "okey:rl"
MEMORY_PRUNE_THRESHOLD = 10_000


@dataclass
class RateLimitDecision:
    """限流判定结果。"""

    allowed: bool
    remaining: int
    retry_after: int


@dataclass
class RateLimitPolicy:
    enabled: bool
    trust_proxy_headers: bool
    window_seconds: int
    default_limit: int
    scope_limits: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_config(cls) -> "RateLimitPolicy":
        return cls(
            enabled=app_config.RATE_LIMIT_ENABLED,
            trust_proxy_headers=app_config.RATE_LIMIT_TRUST_PROXY_HEADERS,
            window_seconds=max(1, app_config.RATE_LIMIT_WINDOW_SECONDS),
            default_limit=max(1, app_config.RATE_LIMIT_MAX_REQUESTS),
            scope_limits={
                "register": app_config.RATE_LIMIT_REGISTER_MAX_REQUESTS,
                "login": app_config.RATE_LIMIT_LOGIN_MAX_REQUESTS,
                "create_room": app_config.RATE_LIMIT_CREATE_ROOM_MAX_REQUESTS,
                "join_room": app_config.RATE_LIMIT_JOIN_ROOM_MAX_REQUESTS,
            },
        )

    def limit_for(self, scope: str) -> int:
        """场景未单独配置时使用默认上限。"""
        return max(1, self.scope_limits.get(scope, self.default_limit))


def get_rate_limit_policy() -> RateLimitPolicy:
    return RateLimitPolicy.from_config()


def extract_client_ip(request: Request, *, trust_proxy_headers: bool) -> str:
    """提取客户端 IP；仅在信任反向代理时读取 X-Forwarded-For / X-Real-IP。"""
    if trust_proxy_headers:
        for header in ("x-forwarded-for", "x-real-ip"):
            value = request.headers.get(header, "")
            candidate = value.split(",", 1)[0].strip()
            if candidate:
                return candidate

    client = request.client
    return client.host if client and client.host else "unknown"


class MemoryWindowCounter:
    """单进程固定窗口计数（未配置 Redis 时使用）。"""

    def __init__(self):
        self._counts: dict[tuple[str, int], int] = {}
        self._lock = asyncio.Lock()

    def clear(self) -> None:
        self._counts.clear()

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = time.time()
        window = int(now // window_seconds)
        retry_after = max(1, int((window + 1) * window_seconds - now))

        async with self._lock:
            if len(self._counts) > MEMORY_PRUNE_THRESHOLD:
                self._counts = {item: count for item, count in self._counts.items() if item[1] >= window}
            count = self._counts.get((key, window), 0) + 1
            self._counts[(key, window)] = count

        return RateLimitDecision(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            retry_after=retry_after,
        )


_memory_counter = MemoryWindowCounter()


async def _hit_with_redis(key: str, limit: int, window_seconds: int) -> RateLimitDecision | None:
    """Redis 计数；Redis 不可用时返回 None。"""
    client = await get_redis_client()
    if client is None:
        return None

    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.ttl(key)
            count, ttl = await pipe.execute()
        if ttl < 0:
            await client.expire(key, window_seconds)
            ttl = window_seconds
    except RedisError:
        return None

    return RateLimitDecision(
        allowed=count <= limit,
        remaining=max(0, limit - count),
        retry_after=max(1, int(ttl)),
    )


async def check_request_allowed(request: Request, *, scope: str) -> RateLimitDecision:
    """对一次写请求计数并判定是否放行。"""
    policy = get_rate_limit_policy()
    limit = policy.limit_for(scope)
    if not policy.enabled:
        return RateLimitDecision(allowed=True, remaining=limit, retry_after=0)

    ip = extract_client_ip(request, trust_proxy_headers=policy.trust_proxy_headers)
    key = f"{KEY_PREFIX}:{scope}:{ip}"

    decision = await _hit_with_redis(key, limit, policy.window_seconds)
    if decision is None:
        decision = await _memory_counter.hit(key, limit, policy.window_seconds)
    return decision
