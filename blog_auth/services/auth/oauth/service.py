from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from blog_auth.core.enums import AuthFlowStatus
from blog_auth.core.exceptions import (
    AuthErrorCode,
    IdentityPersistenceError,
    ProviderNotAvailableError,
)
from blog_auth.core.logger import logger
from blog_auth.models.database import User
from blog_auth.services.auth.oauth.base import OAuthProviderBase, OAuthProviderConfig
from blog_auth.services.auth.oauth.models import OAuthFlowError, OAuthToken, OAuthUserInfo
from blog_auth.services.auth.oauth.registry import OAuthProviderRegistry
from blog_auth.services.auth.oauth.state import OAuthStateData, OAuthStateStore
from blog_auth.services.auth.tokens import TokenIssuer, TokenPair
from blog_auth.services.user.service import UserService


@dataclass(frozen=True)
class LoginRedirect:
    url: str
    state: str
    status: AuthFlowStatus = AuthFlowStatus.STATE_PENDING


@dataclass(frozen=True)
class CallbackOutcome:
    status: AuthFlowStatus
    error_code: Optional[AuthErrorCode] = None
    user: Optional[User] = None
    tokens: Optional[TokenPair] = None
    login_time: Optional[datetime] = None

    @property
    def authenticated(self) -> bool:
        return self.status == AuthFlowStatus.AUTHENTICATED


def _rejected(error_code: AuthErrorCode) -> CallbackOutcome:
    return CallbackOutcome(status=AuthFlowStatus.REJECTED, error_code=error_code)


def _states_match(state: str, saved_state: str) -> bool:
    return hmac.compare_digest(state.encode("utf-8"), saved_state.encode("utf-8"))


class OAuthService:
    """
    OAuth 登录编排

    begin_login 签发 state 并构造授权 URL；handle_callback 依次完成 state 校验、
    授权码兑换、用户资料获取、用户 upsert 与令牌签发。任一步失败立即返回 REJECTED，
    不进入后续步骤，也不在内部重试。
    """

    def __init__(
        self,
        registry: OAuthProviderRegistry,
        state_store: OAuthStateStore,
        issuer: TokenIssuer,
    ) -> None:
        self.registry = registry
        self.state_store = state_store
        self.issuer = issuer

    def _require_provider(self, provider_type: str) -> tuple[OAuthProviderBase, OAuthProviderConfig]:
        configured = self.registry.get_configured(provider_type)
        if configured is None:
            raise ProviderNotAvailableError(provider_type)
        return configured

    def list_providers(self) -> list[dict[str, str]]:
        return [
            {"provider_type": p.provider_type, "display_name": p.display_name}
            for p in self.registry.list_configured()
        ]

    async def begin_login(self, provider_type: str) -> LoginRedirect:
        provider, provider_config = self._require_provider(provider_type)
        state = await self.state_store.issue(provider_type)
        url = provider.get_authorization_url(provider_config, state)
        logger.debug("OAuth 登录开始: provider={}", provider_type)
        return LoginRedirect(url=url, state=state)

    async def _consume_state(self, state: Optional[str]) -> Optional[OAuthStateData]:
        if not state:
            return None
        try:
            return await self.state_store.consume(state)
        except Exception as exc:
            # 存储不可用等同于 state 无效，拒绝本次回调
            logger.error("OAuth state 消费失败: {}", type(exc).__name__)
            return None

    async def handle_callback(
        self,
        db: Session,
        provider_type: str,
        *,
        code: Optional[str],
        state: Optional[str],
        saved_state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> CallbackOutcome:
        # state 无论结果如何只能使用一次，先于 provider 校验消费
        state_data = await self._consume_state(state)
        provider, provider_config = self._require_provider(provider_type)

        if error:
            logger.info(
                "OAuth 授权被拒绝: provider={}, error={}, description={}",
                provider_type,
                error,
                error_description or "",
            )
            return _rejected(AuthErrorCode.PROVIDER_DENIED)

        if not code:
            return _rejected(AuthErrorCode.MISSING_CODE)

        if (
            not state
            or not saved_state
            or not _states_match(state, saved_state)
            or state_data is None
            or state_data.provider_type != provider_type
        ):
            logger.warning(
                "OAuth state 校验失败: provider={}, consumed={}", provider_type, state_data is not None
            )
            return _rejected(AuthErrorCode.CSRF_MISMATCH)

        # 以下为 CALLBACK_RECEIVED 阶段
        try:
            token: OAuthToken = await provider.exchange_code(provider_config, code)
        except OAuthFlowError as exc:
            logger.warning("OAuth 授权码兑换失败: provider={}, detail={}", provider_type, exc.detail)
            return _rejected(AuthErrorCode.PROVIDER_EXCHANGE_FAILED)
        except Exception as exc:
            logger.error("OAuth 授权码兑换异常: provider={}, error={}", provider_type, type(exc).__name__)
            return _rejected(AuthErrorCode.PROVIDER_EXCHANGE_FAILED)

        try:
            identity: OAuthUserInfo = await provider.get_user_info(provider_config, token.access_token)
        except OAuthFlowError as exc:
            logger.warning("OAuth 用户信息获取失败: provider={}, detail={}", provider_type, exc.detail)
            return _rejected(AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE)
        except Exception as exc:
            logger.error("OAuth 用户信息获取异常: provider={}, error={}", provider_type, type(exc).__name__)
            return _rejected(AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE)

        try:
            user = UserService.upsert_from_provider(db, provider_type, identity)
        except IdentityPersistenceError:
            return _rejected(AuthErrorCode.IDENTITY_PERSISTENCE_FAILED)
        except Exception as exc:
            db.rollback()
            logger.error("OAuth 用户写入异常: provider={}, error={}", provider_type, type(exc).__name__)
            return _rejected(AuthErrorCode.IDENTITY_PERSISTENCE_FAILED)

        tokens = self.issuer.mint_pair(user.id)
        logger.info("OAuth 登录成功: user_id={}, provider={}", user.id, provider_type)
        return CallbackOutcome(
            status=AuthFlowStatus.AUTHENTICATED,
            user=user,
            tokens=tokens,
            login_time=datetime.now(timezone.utc),
        )
