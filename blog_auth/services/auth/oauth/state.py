from __future__ import annotations

import json
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Optional, cast

from redis.asyncio import Redis

from blog_auth.config import config
from blog_auth.config.constants import RedisKeys, StateDefaults
from blog_auth.core.logger import logger

CONSUME_STATE_SCRIPT = r"""
local value = redis.call("GET", KEYS[1])
if value then
    redis.call("DEL", KEYS[1])
end
return value
"""


@dataclass(frozen=True)
class OAuthStateData:
    nonce: str
    provider_type: str
    created_at: int
    expires_at: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OAuthStateData":
        return cls(
            nonce=str(data.get("nonce") or ""),
            provider_type=str(data.get("provider_type") or ""),
            created_at=int(data.get("created_at") or 0),
            expires_at=int(data.get("expires_at") or 0),
        )


def _state_key(nonce: str) -> str:
    return f"{RedisKeys.OAUTH_STATE_PREFIX}{nonce}"


def generate_nonce() -> str:
    return secrets.token_urlsafe(StateDefaults.NONCE_BYTES)


class OAuthStateStore(ABC):
    """
    一次性 CSRF state 存储。

    issue 签发新 state；consume 原子地读取并删除，同一个 state 只有一次成功机会，
    无论后续登录成功与否记录都已删除。
    """

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        nonce_factory: Callable[[], str] = generate_nonce,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.oauth_state_ttl_seconds
        self._nonce_factory = nonce_factory
        self._clock = clock

    def _build(self, nonce: str, provider_type: str) -> OAuthStateData:
        now = int(self._clock())
        return OAuthStateData(
            nonce=nonce,
            provider_type=provider_type,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

    async def issue(self, provider_type: str) -> str:
        for _ in range(StateDefaults.ISSUE_MAX_ATTEMPTS):
            nonce = self._nonce_factory()
            if await self._store_if_absent(self._build(nonce, provider_type)):
                return nonce
            # 碰撞时重新生成，绝不覆盖已有记录
            logger.warning("OAuth state 碰撞，重新生成: provider={}", provider_type)
        raise RuntimeError("无法签发唯一的 OAuth state")

    async def consume(self, state: Optional[str]) -> Optional[OAuthStateData]:
        if not state:
            return None
        return await self._pop(state)

    @abstractmethod
    async def _store_if_absent(self, data: OAuthStateData) -> bool:
        """仅当 nonce 不存在时写入，返回是否写入成功"""

    @abstractmethod
    async def _pop(self, nonce: str) -> Optional[OAuthStateData]:
        """原子读取并删除"""


class RedisOAuthStateStore(OAuthStateStore):
    """多实例部署使用，过期交给 Redis TTL"""

    def __init__(self, redis: Redis, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._redis = redis

    async def _store_if_absent(self, data: OAuthStateData) -> bool:
        created = await self._redis.set(
            _state_key(data.nonce), json.dumps(asdict(data)), ex=self.ttl_seconds, nx=True
        )
        return bool(created)

    async def _pop(self, nonce: str) -> Optional[OAuthStateData]:
        # redis-py 的类型标注在 sync/async 之间会出现 Union；这里明确按 async 处理。
        raw = await cast(
            Awaitable[Optional[str]], self._redis.eval(CONSUME_STATE_SCRIPT, 1, _state_key(nonce))
        )
        if not raw:
            return None

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("OAuth state 记录损坏，已丢弃")
            return None

        return OAuthStateData.from_dict(parsed)


class MemoryOAuthStateStore(OAuthStateStore):
    """单进程存储（开发与测试），过期记录在 issue 时清理"""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._records: dict[str, OAuthStateData] = {}

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [nonce for nonce, data in self._records.items() if data.expires_at <= now]
        for nonce in expired:
            self._records.pop(nonce, None)

    async def _store_if_absent(self, data: OAuthStateData) -> bool:
        self._purge_expired()
        if data.nonce in self._records:
            return False
        self._records[data.nonce] = data
        return True

    async def _pop(self, nonce: str) -> Optional[OAuthStateData]:
        # 协程内 dict.pop 不会被打断，等价于原子的读取并删除
        data = self._records.pop(nonce, None)
        if data is None or data.expires_at <= self._clock():
            return None
        return data

    def __len__(self) -> int:
        return len(self._records)


_memory_store: Optional[MemoryOAuthStateStore] = None


async def get_oauth_state_store() -> OAuthStateStore:
    """按 OAUTH_STATE_BACKEND 返回 state 存储；memory 后端为进程内单例"""
    global _memory_store

    if config.oauth_state_backend == "memory":
        if _memory_store is None:
            _memory_store = MemoryOAuthStateStore()
        return _memory_store

    from blog_auth.clients.redis_client import get_redis_client

    redis = await get_redis_client(require_redis=True)
    assert redis is not None
    return RedisOAuthStateStore(redis)
