"""
Token 黑名单（可选）

默认关闭：令牌无状态，登出只清除客户端会话。开启后按 jti 写入 Redis，
TTL 等于令牌剩余有效期，过期后自动清理。
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from blog_auth.config import config
from blog_auth.config.constants import RedisKeys
from blog_auth.core.logger import logger
from blog_auth.services.auth.tokens import TokenClaims


def _blacklist_key(jti: str) -> str:
    return f"{RedisKeys.TOKEN_BLACKLIST_PREFIX}{jti}"


class TokenBlacklistService:
    def __init__(
        self,
        redis: Optional[Redis],
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self.enabled = (config.token_blacklist_enabled if enabled is None else enabled) and redis is not None
        self._clock = clock

    async def revoke(self, claims: TokenClaims) -> bool:
        """吊销令牌，返回是否实际写入"""
        if not self.enabled:
            return False
        assert self._redis is not None

        remaining = claims.exp - int(self._clock())
        if remaining <= 0:
            return False

        try:
            await self._redis.set(_blacklist_key(claims.jti), "1", ex=remaining)
        except RedisError as exc:
            logger.error("写入令牌黑名单失败: {}", exc)
            return False
        logger.info("令牌已吊销: user_id={}, kind={}", claims.sub, claims.kind.value)
        return True

    async def is_revoked(self, jti: str) -> bool:
        if not self.enabled:
            return False
        assert self._redis is not None

        try:
            return bool(await self._redis.exists(_blacklist_key(jti)))
        except RedisError as exc:
            # 黑名单查询失败时拒绝令牌
            logger.error("查询令牌黑名单失败: {}", exc)
            return True
