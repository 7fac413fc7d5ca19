from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional


@dataclass(frozen=True)
class OAuthToken:
    """provider 返回的访问令牌，仅在本次回调请求内使用，不落库"""

    access_token: str
    token_type: str = "bearer"
    scope: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class ProviderEmail:
    email: str
    primary: bool = False
    verified: bool = False


def select_email(emails: Iterable[ProviderEmail]) -> Optional[str]:
    """优先主邮箱且已验证，其次列表第一项，否则 None"""
    candidates = list(emails)
    for item in candidates:
        if item.primary and item.verified:
            return item.email
    if candidates:
        return candidates[0].email
    return None


@dataclass(frozen=True)
class OAuthUserInfo:
    """provider 用户资料快照，每次登录重新获取"""

    id: str
    username: str
    name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None
    emails: tuple[ProviderEmail, ...] = field(default_factory=tuple)
    raw: Optional[dict[str, Any]] = None


class OAuthFlowError(Exception):
    """provider 层的可控错误，由编排层映射为对外错误码；detail 只进日志"""

    def __init__(self, error_code: str, detail: str = ""):
        super().__init__(error_code)
        self.error_code = error_code
        self.detail = detail
