"""
API 请求/响应模型
"""

import time
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """统一响应信封：{code, message, data, timestamp}"""

    code: int = 200
    message: str = "success"
    data: Optional[T] = None
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def build(cls, *, code: int = 200, message: str = "success", data: Any = None) -> "ApiResponse[Any]":
        return cls(code=code, message=message, data=data)


class UserInfo(BaseModel):
    id: int
    provider_id: str
    username: str
    avatar_url: Optional[str] = None
    created_at: datetime


class UserProfile(UserInfo):
    """/auth/me 返回的完整资料"""

    provider_type: str
    email: Optional[str] = None
    name: Optional[str] = None
    bio: Optional[str] = None
    updated_at: datetime


class OAuthCallbackRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None
    # 客户端自行保存的 state；缺省时回退到 state cookie
    saved_state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"
    user_info: UserInfo
    login_time: datetime


class RefreshTokenRequest(BaseModel):
    refresh_token: str = ""


class RefreshTokenResponse(BaseModel):
    access_token: str
    expires_in: int


class ProviderSummary(BaseModel):
    provider_type: str
    display_name: str
