"""
博客认证 API 客户端

对应前端的 axios 封装：自动附带 Bearer 令牌，任何 401（HTTP 状态或信封 code）
都会立即清除本地会话，调用方据此跳转登录。
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from blog_auth.client.session_store import ClientSessionStore
from blog_auth.core.logger import logger
from blog_auth.services.auth.tokens import is_expiring_soon


class AuthClientError(Exception):
    def __init__(self, status_code: int, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.error_code = error_code

    def __repr__(self) -> str:
        return f"AuthClientError(status_code={self.status_code}, error_code={self.error_code!r})"


class BlogAuthClient:
    def __init__(
        self,
        base_url: str,
        store: Optional[ClientSessionStore] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store or ClientSessionStore()
        self._http = httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout), transport=transport
        )

    async def __aenter__(self) -> "BlogAuthClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authenticated: bool = True,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers: Dict[str, str] = {}
        if authenticated:
            token = self.store.get_access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            resp = await self._http.request(method, path, json=json, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("请求失败: {} {}: {}", method, path, type(exc).__name__)
            raise AuthClientError(0, "网络错误，请稍后重试") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None
        envelope: Dict[str, Any] = body if isinstance(body, dict) else {}

        code = envelope.get("code", resp.status_code)
        message = str(envelope.get("message") or resp.reason_phrase or "请求失败")
        data = envelope.get("data")
        error_code = data.get("error_code") if isinstance(data, dict) else None

        if resp.status_code == 401 or code == 401:
            # 会话失效：立即清除本地登录态
            self.store.clear()
            raise AuthClientError(401, message, error_code)

        if resp.status_code >= 400 or code != 200:
            raise AuthClientError(resp.status_code if resp.status_code >= 400 else int(code), message, error_code)

        return data

    async def begin_login(self, provider_type: str) -> str:
        """获取授权 URL 并保存待校验的 state"""
        url = await self._request(
            "GET", f"/auth/login/{provider_type}", authenticated=False, params={"redirect": "false"}
        )
        if not isinstance(url, str) or not url:
            raise AuthClientError(502, "登录地址无效")

        state = parse_qs(urlparse(url).query).get("state", [None])[0]
        if not state:
            raise AuthClientError(502, "登录地址缺少 state")
        self.store.save_pending_state(state)
        return url

    async def complete_login(self, provider_type: str, code: str, state: str) -> Dict[str, Any]:
        """提交回调参数，成功后一次性写入会话并返回用户信息"""
        saved_state = self.store.pop_pending_state()
        data = await self._request(
            "POST",
            f"/auth/callback/{provider_type}",
            authenticated=False,
            json={"code": code, "state": state, "saved_state": saved_state},
        )

        if not isinstance(data, dict):
            raise AuthClientError(502, "登录响应格式错误")
        try:
            tokens = {"access_token": data["access_token"], "refresh_token": data["refresh_token"]}
            expires_in = int(data["expires_in"])
            user_info = data["user_info"]
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthClientError(502, "登录响应格式错误") from exc

        self.store.persist(tokens, expires_in, user_info)
        logger.info("登录成功: user_id={}", user_info.get("id") if isinstance(user_info, dict) else None)
        return user_info

    async def refresh(self) -> str:
        refresh_token = self.store.get_refresh_token()
        if not refresh_token:
            self.store.clear()
            raise AuthClientError(401, "登录已失效，请重新登录")

        data = await self._request(
            "POST", "/auth/refresh", authenticated=False, json={"refresh_token": refresh_token}
        )
        try:
            access_token = str(data["access_token"])
            expires_in = int(data["expires_in"])
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthClientError(502, "刷新响应格式错误") from exc

        self.store.update_access_token(access_token, expires_in)
        return access_token

    async def ensure_fresh_token(self, threshold_seconds: Optional[int] = None) -> Optional[str]:
        """access token 即将过期时主动刷新；未登录时返回 None"""
        token = self.store.get_access_token()
        if not token:
            return None
        if is_expiring_soon(token, threshold_seconds):
            return await self.refresh()
        return token

    async def get_current_user(self) -> Dict[str, Any]:
        return await self._request("GET", "/auth/me")

    async def logout(self) -> None:
        """通知服务端后清除本地会话；服务端失败不影响本地登出"""
        try:
            await self._request("POST", "/auth/logout")
        except AuthClientError as exc:
            logger.info("服务端登出失败，仅清除本地会话: status={}", exc.status_code)
        finally:
            self.store.clear()
