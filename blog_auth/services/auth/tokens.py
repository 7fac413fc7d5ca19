"""
JWT 签发与校验

access / refresh 两类令牌使用同一个 HS256 密钥，只靠 kind 声明区分，
校验时必须显式指定期望的 kind，否则 refresh token 可以冒充 access token。
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import jwt

from blog_auth.config import config
from blog_auth.core.enums import TokenKind
from blog_auth.core.exceptions import InvalidTokenException

REQUIRED_CLAIMS = ["sub", "kind", "iat", "exp", "jti"]


@dataclass(frozen=True)
class TokenClaims:
    sub: int
    kind: TokenKind
    iat: int
    exp: int
    jti: str

    @property
    def user_id(self) -> int:
        return self.sub


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "Bearer"


class TokenIssuer:
    """签发 access / refresh 令牌（无状态，不落库）"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_ttl_seconds: Optional[int] = None,
        refresh_ttl_seconds: Optional[int] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret_key = secret_key or config.jwt_secret_key
        self.algorithm = algorithm or config.jwt_algorithm
        self.access_ttl_seconds = (
            access_ttl_seconds if access_ttl_seconds is not None else config.access_token_ttl_seconds
        )
        self.refresh_ttl_seconds = (
            refresh_ttl_seconds if refresh_ttl_seconds is not None else config.refresh_token_ttl_seconds
        )
        self.issuer = issuer or config.jwt_issuer
        self.audience = audience or config.jwt_audience
        self._clock = clock

    def _encode(self, user_id: int, kind: TokenKind, ttl_seconds: int) -> str:
        now = int(self._clock())
        payload = {
            "sub": str(user_id),
            "kind": kind.value,
            "iat": now,
            "exp": now + ttl_seconds,
            # 同一秒内签发的令牌也互不相同，黑名单按 jti 生效
            "jti": uuid.uuid4().hex,
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def mint_access_token(self, user_id: int) -> tuple[str, int]:
        token = self._encode(user_id, TokenKind.ACCESS, self.access_ttl_seconds)
        return token, self.access_ttl_seconds

    def mint_refresh_token(self, user_id: int) -> str:
        return self._encode(user_id, TokenKind.REFRESH, self.refresh_ttl_seconds)

    def mint_pair(self, user_id: int) -> TokenPair:
        access_token, expires_in = self.mint_access_token(user_id)
        return TokenPair(
            access_token=access_token,
            refresh_token=self.mint_refresh_token(user_id),
            expires_in=expires_in,
            refresh_expires_in=self.refresh_ttl_seconds,
        )


class TokenValidator:
    """纯函数式校验，无 I/O；时钟可注入便于测试过期边界"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret_key = secret_key or config.jwt_secret_key
        self.algorithm = algorithm or config.jwt_algorithm
        self.issuer = issuer or config.jwt_issuer
        self.audience = audience or config.jwt_audience
        self._clock = clock

    def verify(self, token: Optional[str], expected_kind: TokenKind) -> TokenClaims:
        if not token:
            raise InvalidTokenException("empty token")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                # 过期判断使用注入的时钟，exp == now 视为已过期
                options={"verify_exp": False, "verify_iat": False, "require": REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenException(type(exc).__name__) from exc

        try:
            claims = TokenClaims(
                sub=int(payload["sub"]),
                kind=TokenKind(payload["kind"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidTokenException("malformed claims") from exc

        if claims.exp <= int(self._clock()):
            raise InvalidTokenException("expired")
        if claims.kind != expected_kind:
            raise InvalidTokenException("kind mismatch")

        return claims


def is_expiring_soon(
    token: Optional[str],
    threshold_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    """
    判断令牌是否即将过期（默认 30 分钟内）

    只读取 exp，不校验签名，仅用于客户端决定是否提前刷新；无法解析的令牌视为即将过期。
    """
    if not token:
        return True
    threshold = threshold_seconds if threshold_seconds is not None else config.token_expiring_soon_seconds
    current = now if now is not None else time.time()

    try:
        payload = jwt.decode(token, options={"verify_signature": False})
        exp = int(payload["exp"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        return True

    return exp - current <= threshold
