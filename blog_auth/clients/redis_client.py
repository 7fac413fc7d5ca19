"""
全局 Redis 客户端

OAuth state 与 token 黑名单依赖 Redis 的原子操作，多实例部署时必须可用。
"""

import asyncio
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from blog_auth.config import config
from blog_auth.core.logger import logger

_redis: Optional[Redis] = None
_redis_lock = asyncio.Lock()


async def get_redis_client(require_redis: bool = False) -> Optional[Redis]:
    """
    获取共享 Redis 客户端（首次调用时连接并 ping）

    Args:
        require_redis: 为 True 时连接失败抛出 RuntimeError，否则返回 None

    Returns:
        Redis 客户端，不可用时为 None
    """
    global _redis

    if _redis is not None:
        return _redis

    async with _redis_lock:
        if _redis is not None:
            return _redis

        client = Redis.from_url(config.redis_url, decode_responses=True)
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            await client.aclose()
            if require_redis:
                raise RuntimeError("Redis 不可用") from exc
            logger.warning("Redis 连接失败，相关功能降级: {}", exc)
            return None

        _redis = client
        logger.info("Redis 已连接: {}", config.redis_url.split("@")[-1])
        return _redis


async def close_redis_client() -> None:
    global _redis
    if _redis is None:
        return
    try:
        await _redis.aclose()
    finally:
        _redis = None
