from __future__ import annotations

import os
from typing import Dict, List, Optional

from blog_auth.config import config
from blog_auth.config.settings import _env_list
from blog_auth.core.logger import logger
from blog_auth.services.auth.oauth.base import OAuthProviderBase, OAuthProviderConfig

ENTRY_POINT_GROUP = "blog_auth.oauth_providers"


def build_provider_config(provider_type: str) -> OAuthProviderConfig:
    """
    从环境变量构造 provider 配置。

    GitHub 使用 Config 上的 GITHUB_* 项；插件 provider 读取 OAUTH_<TYPE>_* 变量。
    """
    if provider_type == "github":
        return OAuthProviderConfig(
            provider_type="github",
            client_id=config.github_client_id,
            client_secret=config.github_client_secret,
            redirect_uri=config.github_redirect_uri,
            scopes=tuple(config.github_scopes),
            authorization_url_override=config.github_authorization_url_override,
            token_url_override=config.github_token_url_override,
            userinfo_url_override=config.github_userinfo_url_override,
            timeout_seconds=config.oauth_http_timeout_seconds,
        )

    prefix = f"OAUTH_{provider_type.upper()}_"
    return OAuthProviderConfig(
        provider_type=provider_type,
        client_id=os.getenv(prefix + "CLIENT_ID", ""),
        client_secret=os.getenv(prefix + "CLIENT_SECRET", ""),
        redirect_uri=os.getenv(prefix + "REDIRECT_URI", ""),
        scopes=tuple(_env_list(prefix + "SCOPES")),
        authorization_url_override=os.getenv(prefix + "AUTHORIZATION_URL") or None,
        token_url_override=os.getenv(prefix + "TOKEN_URL") or None,
        userinfo_url_override=os.getenv(prefix + "USERINFO_URL") or None,
        timeout_seconds=config.oauth_http_timeout_seconds,
    )


class OAuthProviderRegistry:
    """Provider 注册表（支持延迟 discover）。"""

    def __init__(self) -> None:
        self._providers: Dict[str, OAuthProviderBase] = {}
        self._configs: Dict[str, OAuthProviderConfig] = {}
        self._discovered: bool = False

    def discover_providers(self) -> None:
        """发现并注册 providers（幂等）。"""
        if self._discovered:
            return
        self._discovered = True

        from blog_auth.services.auth.oauth.providers.github import GitHubOAuthProvider

        if "github" not in self._providers:
            self.register(GitHubOAuthProvider())

        # entry_points 插件（可选）
        from importlib.metadata import entry_points

        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                loaded = ep.load()
                provider = loaded() if isinstance(loaded, type) else loaded
            except Exception as exc:
                logger.warning("OAuth provider entry_point 加载失败: {}: {}", ep.name, exc)
                continue
            if not isinstance(provider, OAuthProviderBase):
                logger.warning("OAuth provider entry_point 无效: {} (type={})", ep.name, type(provider))
                continue
            if provider.provider_type in self._providers:
                continue
            self.register(provider)

    def register(
        self, provider: OAuthProviderBase, provider_config: Optional[OAuthProviderConfig] = None
    ) -> None:
        self._providers[provider.provider_type] = provider
        if provider_config is not None:
            self._configs[provider.provider_type] = provider_config

    def get_provider(self, provider_type: str) -> Optional[OAuthProviderBase]:
        return self._providers.get(provider_type)

    def get_config(self, provider_type: str) -> OAuthProviderConfig:
        cached = self._configs.get(provider_type)
        if cached is not None:
            return cached
        return build_provider_config(provider_type)

    def get_configured(self, provider_type: str) -> Optional[tuple[OAuthProviderBase, OAuthProviderConfig]]:
        """返回已注册且配置完整的 provider；否则 None"""
        provider = self.get_provider(provider_type)
        if provider is None:
            return None
        provider_config = self.get_config(provider_type)
        if not provider_config.is_complete:
            return None
        return provider, provider_config

    def list_configured(self) -> List[OAuthProviderBase]:
        return [
            p
            for p in sorted(self._providers.values(), key=lambda x: x.provider_type)
            if self.get_config(p.provider_type).is_complete
        ]


_registry: Optional[OAuthProviderRegistry] = None


def get_oauth_provider_registry() -> OAuthProviderRegistry:
    global _registry
    if _registry is None:
        _registry = OAuthProviderRegistry()
        _registry.discover_providers()
    return _registry


def reset_oauth_provider_registry() -> None:
    global _registry
    _registry = None
