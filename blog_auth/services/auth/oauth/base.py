from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx

from blog_auth.services.auth.oauth.models import OAuthToken, OAuthUserInfo
from blog_auth.utils.ssl_utils import get_ssl_context


@dataclass(frozen=True)
class OAuthProviderConfig:
    """provider 运行配置（来自环境变量）"""

    provider_type: str
    client_id: str
    client_secret: str
    redirect_uri: str
    display_name: Optional[str] = None
    scopes: tuple[str, ...] = ()
    authorization_url_override: Optional[str] = None
    token_url_override: Optional[str] = None
    userinfo_url_override: Optional[str] = None
    timeout_seconds: float = 5.0
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)


class OAuthProviderBase(ABC):
    """
    OAuth Provider 基类（稳定扩展点）。

    只实现授权码流程所需的最小接口：构造授权 URL、兑换 token、获取用户资料。
    """

    provider_type: str
    display_name: str

    authorization_url: str
    token_url: str
    userinfo_url: str
    default_scopes: tuple[str, ...] = ()

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        # 测试时注入 httpx.MockTransport
        self._transport = transport

    def get_effective_authorization_url(self, config: OAuthProviderConfig) -> str:
        return config.authorization_url_override or self.authorization_url

    def get_effective_token_url(self, config: OAuthProviderConfig) -> str:
        return config.token_url_override or self.token_url

    def get_effective_userinfo_url(self, config: OAuthProviderConfig) -> str:
        return config.userinfo_url_override or self.userinfo_url

    def get_effective_scopes(self, config: OAuthProviderConfig) -> str:
        scopes = config.scopes or self.default_scopes
        return " ".join(scopes)

    def get_authorization_url(self, config: OAuthProviderConfig, state: str) -> str:
        """
        构造 provider 授权 URL（纯函数，不发网络请求）。

        redirect_uri 必须由服务端控制，不从客户端传入。
        """
        client_id = config.client_id
        redirect_uri = config.redirect_uri
        if not client_id or not redirect_uri:
            raise ValueError("OAuth provider 配置不完整：client_id/redirect_uri 不能为空")

        base = self.get_effective_authorization_url(config)
        parsed = urlparse(base)
        # 保留授权地址自带的 query 参数
        query = dict(parse_qsl(parsed.query, keep_blank_values=True))
        query.update(
            {
                "response_type": "code",
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "scope": self.get_effective_scopes(config),
                "state": state,
            }
        )
        return urlunparse(parsed._replace(query=urlencode(query)))

    @abstractmethod
    async def exchange_code(self, config: OAuthProviderConfig, code: str) -> OAuthToken:
        """使用授权码兑换 token。"""

    @abstractmethod
    async def get_user_info(self, config: OAuthProviderConfig, access_token: str) -> OAuthUserInfo:
        """获取用户资料（含邮箱选择）。"""

    def _client(self, timeout_seconds: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            verify=get_ssl_context(),
            transport=self._transport,
        )

    async def _http_post_form(
        self,
        url: str,
        data: dict[str, str],
        *,
        timeout_seconds: float = 5.0,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        async with self._client(timeout_seconds) as client:
            return await client.post(url, data=data, headers=headers)

    async def _http_get(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        async with self._client(timeout_seconds) as client:
            return await client.get(url, headers=headers)
