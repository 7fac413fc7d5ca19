import json

import httpx
import pytest

from blog_auth.client.api_client import AuthClientError, BlogAuthClient
from blog_auth.client.session_store import ClientSessionStore, MemorySessionStorage
from blog_auth.core.enums import SessionChangeReason
from blog_auth.services.auth.tokens import TokenIssuer

AUTHORIZE_URL = "https://github.com/login/oauth/authorize?client_id=x&state=server-state"
USER_INFO = {
    "id": 1,
    "provider_id": "583231",
    "username": "octocat",
    "avatar_url": None,
    "created_at": "2026-01-01T00:00:00Z",
}


def envelope(data=None, code=200, message="success"):
    return {"code": code, "message": message, "data": data, "timestamp": 0}


class FakeServer:
    """按路径返回预设响应，并记录收到的请求"""

    def __init__(self) -> None:
        self.requests = []
        self.routes = {}

    def route(self, method, path, status_code, body):
        self.routes[(method, path)] = (status_code, body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.routes.get((request.method, request.url.path), (404, envelope(code=404)))
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status_code, json=body)


def _client(server: FakeServer, store=None) -> BlogAuthClient:
    return BlogAuthClient(
        "http://blog.test",
        store or ClientSessionStore(MemorySessionStorage()),
        transport=httpx.MockTransport(server),
    )


def _logged_in_store(access_token="access-1") -> ClientSessionStore:
    store = ClientSessionStore(MemorySessionStorage())
    store.persist({"access_token": access_token, "refresh_token": "refresh-1"}, 7200, USER_INFO)
    return store


class TestLoginFlow:
    @pytest.mark.asyncio
    async def test_begin_and_complete_login(self) -> None:
        server = FakeServer()
        server.route("GET", "/auth/login/github", 200, envelope(AUTHORIZE_URL))
        server.route(
            "POST",
            "/auth/callback/github",
            200,
            envelope(
                {
                    "access_token": "access-1",
                    "refresh_token": "refresh-1",
                    "expires_in": 7200,
                    "token_type": "Bearer",
                    "user_info": USER_INFO,
                    "login_time": "2026-01-01T00:00:00Z",
                }
            ),
        )
        store = ClientSessionStore(MemorySessionStorage())

        async with _client(server, store) as client:
            url = await client.begin_login("github")
            user = await client.complete_login("github", "code-1", "server-state")

        assert url == AUTHORIZE_URL
        assert user == USER_INFO
        assert store.is_valid()
        assert store.get_user_profile() == USER_INFO
        callback_body = json.loads(server.requests[1].content)
        assert callback_body == {"code": "code-1", "state": "server-state", "saved_state": "server-state"}
        assert store.pop_pending_state() is None

    @pytest.mark.asyncio
    async def test_failed_callback_leaves_no_session(self) -> None:
        server = FakeServer()
        server.route(
            "POST",
            "/auth/callback/github",
            502,
            envelope({"error_code": "provider_exchange_failed"}, code=502, message="授权码兑换失败，请重新登录"),
        )
        store = ClientSessionStore(MemorySessionStorage())

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError) as exc_info:
                await client.complete_login("github", "code-1", "state")

        assert exc_info.value.status_code == 502
        assert exc_info.value.error_code == "provider_exchange_failed"
        assert store.get_access_token() is None

    @pytest.mark.asyncio
    async def test_malformed_login_response_leaves_no_session(self) -> None:
        server = FakeServer()
        server.route("POST", "/auth/callback/github", 200, envelope({"access_token": "only"}))
        store = ClientSessionStore(MemorySessionStorage())

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError):
                await client.complete_login("github", "code-1", "state")

        assert store.get_access_token() is None


class TestUnauthorizedHandling:
    @pytest.mark.asyncio
    async def test_http_401_clears_session(self) -> None:
        server = FakeServer()
        server.route("GET", "/auth/me", 401, envelope({"error_code": "invalid_token"}, code=401))
        store = _logged_in_store()
        events = []
        store.subscribe(events.append)

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError) as exc_info:
                await client.get_current_user()

        assert exc_info.value.status_code == 401
        assert server.requests[0].headers["authorization"] == "Bearer access-1"
        assert store.get_access_token() is None
        assert not store.is_valid()
        assert events == [SessionChangeReason.CLEARED]

    @pytest.mark.asyncio
    async def test_envelope_code_401_clears_session(self) -> None:
        server = FakeServer()
        server.route("GET", "/auth/me", 200, envelope(None, code=401, message="登录已失效"))
        store = _logged_in_store()

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError):
                await client.get_current_user()

        assert store.get_access_token() is None

    @pytest.mark.asyncio
    async def test_other_errors_keep_session(self) -> None:
        server = FakeServer()
        server.route("GET", "/auth/me", 500, envelope(None, code=500, message="服务器内部错误"))
        store = _logged_in_store()

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError) as exc_info:
                await client.get_current_user()

        assert exc_info.value.status_code == 500
        assert store.get_access_token() == "access-1"


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_updates_access_token(self) -> None:
        server = FakeServer()
        server.route("POST", "/auth/refresh", 200, envelope({"access_token": "access-2", "expires_in": 7200}))
        store = _logged_in_store()

        async with _client(server, store) as client:
            assert await client.refresh() == "access-2"

        assert json.loads(server.requests[0].content) == {"refresh_token": "refresh-1"}
        assert "authorization" not in server.requests[0].headers
        assert store.get_access_token() == "access-2"
        assert store.get_refresh_token() == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self) -> None:
        async with _client(FakeServer()) as client:
            with pytest.raises(AuthClientError) as exc_info:
                await client.refresh()
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_session(self) -> None:
        server = FakeServer()
        server.route("POST", "/auth/refresh", 401, envelope({"error_code": "invalid_token"}, code=401))
        store = _logged_in_store()

        async with _client(server, store) as client:
            with pytest.raises(AuthClientError):
                await client.refresh()

        assert store.get_refresh_token() is None

    @pytest.mark.asyncio
    async def test_ensure_fresh_token_refreshes_when_expiring(self) -> None:
        issuer = TokenIssuer(secret_key="client-test-secret-0123456789abcdef", access_ttl_seconds=60)
        expiring, _ = issuer.mint_access_token(1)
        server = FakeServer()
        server.route("POST", "/auth/refresh", 200, envelope({"access_token": "access-2", "expires_in": 7200}))
        store = _logged_in_store(expiring)

        async with _client(server, store) as client:
            assert await client.ensure_fresh_token(threshold_seconds=1800) == "access-2"

    @pytest.mark.asyncio
    async def test_ensure_fresh_token_keeps_fresh_token(self) -> None:
        issuer = TokenIssuer(secret_key="client-test-secret-0123456789abcdef", access_ttl_seconds=7200)
        fresh, _ = issuer.mint_access_token(1)
        server = FakeServer()
        store = _logged_in_store(fresh)

        async with _client(server, store) as client:
            assert await client.ensure_fresh_token(threshold_seconds=1800) == fresh

        assert server.requests == []


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_clears_session(self) -> None:
        server = FakeServer()
        server.route("POST", "/auth/logout", 200, envelope(None, message="已登出"))
        store = _logged_in_store()

        async with _client(server, store) as client:
            await client.logout()

        assert server.requests[0].headers["authorization"] == "Bearer access-1"
        assert store.get_access_token() is None

    @pytest.mark.asyncio
    async def test_logout_clears_session_when_server_unreachable(self) -> None:
        server = FakeServer()
        server.route("POST", "/auth/logout", 0, httpx.ConnectError("connection refused"))
        store = _logged_in_store()

        async with _client(server, store) as client:
            await client.logout()

        assert store.get_access_token() is None
