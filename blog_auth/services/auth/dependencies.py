"""
认证服务装配（FastAPI 依赖）

测试通过 app.dependency_overrides 替换这里的函数。
"""

from typing import Optional

from redis.asyncio import Redis

from blog_auth.config import config
from blog_auth.services.auth.blacklist import TokenBlacklistService
from blog_auth.services.auth.oauth.registry import get_oauth_provider_registry
from blog_auth.services.auth.oauth.service import OAuthService
from blog_auth.services.auth.oauth.state import get_oauth_state_store
from blog_auth.services.auth.refresh import RefreshCoordinator
from blog_auth.services.auth.tokens import TokenIssuer, TokenValidator


def get_token_issuer() -> TokenIssuer:
    return TokenIssuer()


def get_token_validator() -> TokenValidator:
    return TokenValidator()


async def get_token_blacklist() -> TokenBlacklistService:
    redis: Optional[Redis] = None
    if config.token_blacklist_enabled:
        from blog_auth.clients.redis_client import get_redis_client

        redis = await get_redis_client()
    return TokenBlacklistService(redis)


async def get_oauth_service() -> OAuthService:
    return OAuthService(
        registry=get_oauth_provider_registry(),
        state_store=await get_oauth_state_store(),
        issuer=get_token_issuer(),
    )


async def get_refresh_coordinator() -> RefreshCoordinator:
    return RefreshCoordinator(
        issuer=get_token_issuer(),
        validator=get_token_validator(),
        blacklist=await get_token_blacklist(),
    )
