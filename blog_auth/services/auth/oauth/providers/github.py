from __future__ import annotations

from typing import Any, Optional

import httpx

from blog_auth.core.logger import logger
from blog_auth.services.auth.oauth.base import OAuthProviderBase, OAuthProviderConfig
from blog_auth.services.auth.oauth.models import (
    OAuthFlowError,
    OAuthToken,
    OAuthUserInfo,
    ProviderEmail,
    select_email,
)


class GitHubOAuthProvider(OAuthProviderBase):
    """
    GitHub OAuth Provider。

    token 端点默认返回 form 编码，需显式要求 JSON；兑换失败时 GitHub 仍返回 200，
    错误放在响应体的 error 字段里。

    /user 返回的用户信息示例：
    {
        "id": 1,
        "login": "octocat",
        "name": "The Octocat",
        "bio": "...",
        "avatar_url": "https://avatars.githubusercontent.com/u/1",
        "email": null
    }
    """

    provider_type = "github"
    display_name = "GitHub"

    authorization_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    userinfo_url = "https://api.github.com/user"

    default_scopes = ("read:user", "user:email")

    def get_emails_url(self, config: OAuthProviderConfig) -> str:
        return self.get_effective_userinfo_url(config).rstrip("/") + "/emails"

    def _api_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }

    async def exchange_code(self, config: OAuthProviderConfig, code: str) -> OAuthToken:
        if not config.is_complete:
            raise OAuthFlowError("provider_unavailable", "client_id/client_secret/redirect_uri 未配置")

        try:
            resp = await self._http_post_form(
                self.get_effective_token_url(config),
                data={
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                    "code": code,
                    "redirect_uri": config.redirect_uri,
                },
                timeout_seconds=config.timeout_seconds,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("GitHub token 兑换网络错误: {}", type(exc).__name__)
            raise OAuthFlowError("token_exchange_failed", f"network: {type(exc).__name__}") from exc

        if resp.status_code >= 400:
            logger.warning("GitHub token 兑换失败: status={}", resp.status_code)
            raise OAuthFlowError("token_exchange_failed", f"status={resp.status_code}")

        try:
            data: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise OAuthFlowError("token_exchange_failed", "invalid json") from exc

        if not isinstance(data, dict):
            raise OAuthFlowError("token_exchange_failed", "unexpected payload")

        if data.get("error"):
            # bad_verification_code / incorrect_client_credentials / redirect_uri_mismatch
            logger.warning("GitHub token 兑换被拒绝: error={}", data.get("error"))
            raise OAuthFlowError("token_exchange_failed", str(data.get("error")))

        access_token = data.get("access_token")
        if not access_token:
            raise OAuthFlowError("token_exchange_failed", "missing access_token")

        return OAuthToken(
            access_token=str(access_token),
            token_type=str(data.get("token_type") or "bearer"),
            scope=(str(data["scope"]) if data.get("scope") else None),
            raw=data,
        )

    async def get_user_info(self, config: OAuthProviderConfig, access_token: str) -> OAuthUserInfo:
        try:
            resp = await self._http_get(
                self.get_effective_userinfo_url(config),
                timeout_seconds=config.timeout_seconds,
                headers=self._api_headers(access_token),
            )
        except httpx.HTTPError as exc:
            logger.warning("GitHub 用户信息网络错误: {}", type(exc).__name__)
            raise OAuthFlowError("userinfo_fetch_failed", f"network: {type(exc).__name__}") from exc

        if resp.status_code >= 400:
            logger.warning("GitHub 用户信息获取失败: status={}", resp.status_code)
            raise OAuthFlowError("userinfo_fetch_failed", f"status={resp.status_code}")

        try:
            data: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise OAuthFlowError("userinfo_fetch_failed", "invalid json") from exc

        if not isinstance(data, dict):
            raise OAuthFlowError("userinfo_fetch_failed", "unexpected payload")

        provider_user_id = data.get("id")
        login = data.get("login")
        if provider_user_id is None or not login:
            raise OAuthFlowError("userinfo_fetch_failed", "missing id/login")

        emails = await self._fetch_emails(config, access_token)
        email = select_email(emails)

        return OAuthUserInfo(
            id=str(provider_user_id),
            username=str(login),
            name=data.get("name") or None,
            bio=data.get("bio") or None,
            avatar_url=data.get("avatar_url") or None,
            email=email,
            emails=tuple(emails),
            raw=data,
        )

    async def _fetch_emails(
        self, config: OAuthProviderConfig, access_token: str
    ) -> list[ProviderEmail]:
        """邮箱列表获取失败不影响登录"""
        try:
            resp = await self._http_get(
                self.get_emails_url(config),
                timeout_seconds=config.timeout_seconds,
                headers=self._api_headers(access_token),
            )
        except httpx.HTTPError as exc:
            logger.info("GitHub 邮箱列表获取失败，继续登录: {}", type(exc).__name__)
            return []

        if resp.status_code >= 400:
            logger.info("GitHub 邮箱列表获取失败，继续登录: status={}", resp.status_code)
            return []

        try:
            payload = resp.json()
        except ValueError:
            logger.info("GitHub 邮箱列表不是合法 JSON，忽略")
            return []

        if not isinstance(payload, list):
            return []

        emails: list[ProviderEmail] = []
        for item in payload:
            address: Optional[str] = item.get("email") if isinstance(item, dict) else None
            if not address:
                continue
            emails.append(
                ProviderEmail(
                    email=str(address),
                    primary=bool(item.get("primary")),
                    verified=bool(item.get("verified")),
                )
            )
        return emails
