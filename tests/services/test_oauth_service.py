from typing import Optional

import httpx
import pytest

from blog_auth.core.enums import AuthFlowStatus, TokenKind
from blog_auth.core.exceptions import AuthErrorCode, IdentityPersistenceError, ProviderNotAvailableError
from blog_auth.models.database import User
from blog_auth.services.auth.oauth.base import OAuthProviderBase, OAuthProviderConfig
from blog_auth.services.auth.oauth.models import OAuthFlowError, OAuthToken, OAuthUserInfo
from blog_auth.services.auth.oauth.providers.github import GitHubOAuthProvider
from blog_auth.services.auth.oauth.registry import OAuthProviderRegistry
from blog_auth.services.auth.oauth.service import OAuthService
from blog_auth.services.auth.oauth.state import MemoryOAuthStateStore
from blog_auth.services.auth.tokens import TokenIssuer, TokenValidator

SECRET = "orchestrator-test-secret-key-0123456789"


class FakeProvider(OAuthProviderBase):
    authorization_url = "https://provider.example.com/authorize"
    token_url = "https://provider.example.com/token"
    userinfo_url = "https://provider.example.com/user"

    def __init__(self, provider_type: str = "github") -> None:
        super().__init__()
        self.provider_type = provider_type
        self.display_name = provider_type.title()
        self.exchange_calls = 0
        self.profile_calls = 0
        self.exchange_error: Optional[Exception] = None
        self.profile_error: Optional[Exception] = None
        self.identity = OAuthUserInfo(id="1001", username="alice", email="alice@example.com")

    async def exchange_code(self, config, code):
        self.exchange_calls += 1
        if self.exchange_error:
            raise self.exchange_error
        return OAuthToken(access_token=f"provider-token-for-{code}")

    async def get_user_info(self, config, access_token):
        self.profile_calls += 1
        if self.profile_error:
            raise self.profile_error
        return self.identity


class FailingStateStore(MemoryOAuthStateStore):
    async def _pop(self, nonce):
        raise ConnectionError("redis down")


def _config(provider_type: str) -> OAuthProviderConfig:
    return OAuthProviderConfig(
        provider_type=provider_type,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="http://localhost:5173/auth/callback",
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def state_store():
    return MemoryOAuthStateStore(ttl_seconds=600)


@pytest.fixture
def service(provider, state_store):
    registry = OAuthProviderRegistry()
    registry.register(provider, _config("github"))
    return OAuthService(
        registry=registry,
        state_store=state_store,
        issuer=TokenIssuer(secret_key=SECRET, issuer="blog-auth", audience="blog-web"),
    )


class TestBeginLogin:
    @pytest.mark.asyncio
    async def test_issues_state_and_builds_url(self, service, state_store) -> None:
        redirect = await service.begin_login("github")

        assert redirect.status == AuthFlowStatus.STATE_PENDING
        assert f"state={redirect.state}" in redirect.url
        assert redirect.url.startswith("https://provider.example.com/authorize?")
        assert len(state_store) == 1

    @pytest.mark.asyncio
    async def test_unknown_provider(self, service) -> None:
        with pytest.raises(ProviderNotAvailableError):
            await service.begin_login("gitlab")

    @pytest.mark.asyncio
    async def test_unconfigured_provider(self, service) -> None:
        service.registry.register(
            FakeProvider("gitea"),
            OAuthProviderConfig(provider_type="gitea", client_id="", client_secret="", redirect_uri=""),
        )
        with pytest.raises(ProviderNotAvailableError):
            await service.begin_login("gitea")

    def test_list_providers(self, service) -> None:
        assert service.list_providers() == [{"provider_type": "github", "display_name": "Github"}]


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_first_login_authenticates(self, service, provider, db_session) -> None:
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.status == AuthFlowStatus.AUTHENTICATED
        assert outcome.error_code is None
        assert outcome.user.username == "alice"
        assert outcome.login_time is not None
        validator = TokenValidator(secret_key=SECRET, issuer="blog-auth", audience="blog-web")
        assert validator.verify(outcome.tokens.access_token, TokenKind.ACCESS).sub == outcome.user.id
        assert validator.verify(outcome.tokens.refresh_token, TokenKind.REFRESH).sub == outcome.user.id

    @pytest.mark.asyncio
    async def test_state_replay_is_rejected(self, service, provider, db_session) -> None:
        redirect = await service.begin_login("github")
        await service.handle_callback(db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state)

        replay = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert replay.status == AuthFlowStatus.REJECTED
        assert replay.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 1

    @pytest.mark.asyncio
    async def test_returning_user_keeps_local_id(self, service, provider, db_session) -> None:
        first_redirect = await service.begin_login("github")
        first = await service.handle_callback(
            db_session, "github", code="a", state=first_redirect.state, saved_state=first_redirect.state
        )
        first_id = first.user.id

        provider.identity = OAuthUserInfo(id="1001", username="alice-renamed", email=None)
        second_redirect = await service.begin_login("github")
        second = await service.handle_callback(
            db_session, "github", code="b", state=second_redirect.state, saved_state=second_redirect.state
        )

        assert second.user.id == first_id
        assert second.user.username == "alice-renamed"
        assert second.user.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_provider_denied(self, service, provider, state_store, db_session) -> None:
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session,
            "github",
            code=None,
            state=redirect.state,
            saved_state=redirect.state,
            error="access_denied",
            error_description="The user has denied your application access.",
        )

        assert outcome.error_code == AuthErrorCode.PROVIDER_DENIED
        assert provider.exchange_calls == 0
        # state 同样被消费
        assert len(state_store) == 0

    @pytest.mark.asyncio
    async def test_missing_code(self, service, provider, state_store, db_session) -> None:
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code=None, state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.MISSING_CODE
        assert provider.exchange_calls == 0
        assert len(state_store) == 0

    @pytest.mark.asyncio
    async def test_null_state_has_no_side_effects(self, service, provider, db_session) -> None:
        outcome = await service.handle_callback(db_session, "github", code="abc", state=None, saved_state=None)

        assert outcome.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 0
        assert provider.profile_calls == 0
        assert db_session.query(User).count() == 0

    @pytest.mark.asyncio
    async def test_mismatched_saved_state(self, service, provider, state_store, db_session) -> None:
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state="attacker-state"
        )

        assert outcome.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 0
        # 失败后原 state 也不可再用
        assert len(state_store) == 0

    @pytest.mark.asyncio
    async def test_unknown_state(self, service, provider, db_session) -> None:
        outcome = await service.handle_callback(
            db_session, "github", code="abc", state="forged", saved_state="forged"
        )
        assert outcome.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 0

    @pytest.mark.asyncio
    async def test_state_issued_for_other_provider(self, service, provider, db_session) -> None:
        other = FakeProvider("gitea")
        service.registry.register(other, _config("gitea"))
        redirect = await service.begin_login("gitea")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 0

    @pytest.mark.asyncio
    async def test_state_store_failure_rejects(self, provider, db_session) -> None:
        registry = OAuthProviderRegistry()
        registry.register(provider, _config("github"))
        service = OAuthService(registry, FailingStateStore(ttl_seconds=600), TokenIssuer(secret_key=SECRET))
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.CSRF_MISMATCH
        assert provider.exchange_calls == 0

    @pytest.mark.asyncio
    async def test_exchange_failure(self, service, provider, db_session) -> None:
        provider.exchange_error = OAuthFlowError("token_exchange_failed", "bad_verification_code")
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.PROVIDER_EXCHANGE_FAILED
        assert outcome.tokens is None
        assert provider.profile_calls == 0
        assert db_session.query(User).count() == 0

    @pytest.mark.asyncio
    async def test_profile_failure(self, service, provider, db_session) -> None:
        provider.profile_error = OAuthFlowError("userinfo_fetch_failed", "status=401")
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE
        assert db_session.query(User).count() == 0

    @pytest.mark.asyncio
    async def test_persistence_failure(self, service, provider, db_session, monkeypatch) -> None:
        def _fail(db, provider_type, identity):
            raise IdentityPersistenceError("database is locked")

        monkeypatch.setattr(
            "blog_auth.services.auth.oauth.service.UserService.upsert_from_provider", _fail
        )
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.status == AuthFlowStatus.REJECTED
        assert outcome.error_code == AuthErrorCode.IDENTITY_PERSISTENCE_FAILED
        assert outcome.tokens is None

    @pytest.mark.asyncio
    async def test_unexpected_exchange_exception_rejects(self, service, provider, db_session) -> None:
        provider.exchange_error = RuntimeError("sdk failure: secret=xyz")
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.status == AuthFlowStatus.REJECTED
        assert outcome.error_code == AuthErrorCode.PROVIDER_EXCHANGE_FAILED
        assert provider.profile_calls == 0
        assert db_session.query(User).count() == 0

    @pytest.mark.asyncio
    async def test_unexpected_profile_exception_rejects(self, service, provider, db_session) -> None:
        provider.profile_error = KeyError("login")
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE
        assert db_session.query(User).count() == 0

    @pytest.mark.asyncio
    async def test_unexpected_persistence_exception_rejects(
        self, service, provider, db_session, monkeypatch
    ) -> None:
        def _fail(db, provider_type, identity):
            raise RuntimeError("driver crashed")

        monkeypatch.setattr(
            "blog_auth.services.auth.oauth.service.UserService.upsert_from_provider", _fail
        )
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.IDENTITY_PERSISTENCE_FAILED
        assert outcome.tokens is None

    @pytest.mark.asyncio
    async def test_unknown_provider_still_consumes_state(self, service, state_store, db_session) -> None:
        redirect = await service.begin_login("github")
        assert len(state_store) == 1

        with pytest.raises(ProviderNotAvailableError):
            await service.handle_callback(
                db_session, "gitlab", code="abc", state=redirect.state, saved_state=redirect.state
            )

        assert len(state_store) == 0

    @pytest.mark.asyncio
    async def test_github_non_object_profile_rejects(self, state_store, db_session) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/login/oauth/access_token":
                return httpx.Response(200, json={"access_token": "gho_abc", "token_type": "bearer"})
            return httpx.Response(200, json=["unexpected"])

        registry = OAuthProviderRegistry()
        registry.register(GitHubOAuthProvider(transport=httpx.MockTransport(handler)), _config("github"))
        service = OAuthService(registry, state_store, TokenIssuer(secret_key=SECRET))
        redirect = await service.begin_login("github")

        outcome = await service.handle_callback(
            db_session, "github", code="abc", state=redirect.state, saved_state=redirect.state
        )

        assert outcome.error_code == AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE
        assert db_session.query(User).count() == 0
