"""
认证子系统的错误分类

所有 provider / 持久化层的异常都会在编排层归一化为 AuthErrorCode，
对外只暴露固定的错误码与提示文案，上游原始错误信息只写日志。
"""

from enum import Enum
from typing import Any, Dict, Optional

from fastapi import status


class AuthErrorCode(str, Enum):
    MISSING_CODE = "missing_code"
    PROVIDER_DENIED = "provider_denied"
    CSRF_MISMATCH = "csrf_mismatch"
    PROVIDER_EXCHANGE_FAILED = "provider_exchange_failed"
    PROVIDER_PROFILE_UNAVAILABLE = "provider_profile_unavailable"
    IDENTITY_PERSISTENCE_FAILED = "identity_persistence_failed"
    INVALID_TOKEN = "invalid_token"
    USER_NOT_FOUND = "user_not_found"


ERROR_STATUS: Dict[AuthErrorCode, int] = {
    AuthErrorCode.MISSING_CODE: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.PROVIDER_DENIED: status.HTTP_400_BAD_REQUEST,
    AuthErrorCode.CSRF_MISMATCH: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.PROVIDER_EXCHANGE_FAILED: status.HTTP_502_BAD_GATEWAY,
    AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    AuthErrorCode.IDENTITY_PERSISTENCE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    AuthErrorCode.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    # 已删除的用户同样按 401 处理，客户端据此清除本地会话
    AuthErrorCode.USER_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
}

ERROR_MESSAGES: Dict[AuthErrorCode, str] = {
    AuthErrorCode.MISSING_CODE: "未收到授权码，请重新登录",
    AuthErrorCode.PROVIDER_DENIED: "第三方授权被拒绝，请重新登录",
    AuthErrorCode.CSRF_MISMATCH: "登录请求已失效或来源不可信，请重新登录",
    AuthErrorCode.PROVIDER_EXCHANGE_FAILED: "授权码兑换失败，请重新登录",
    AuthErrorCode.PROVIDER_PROFILE_UNAVAILABLE: "获取第三方用户信息失败，请重新登录",
    AuthErrorCode.IDENTITY_PERSISTENCE_FAILED: "保存用户信息失败，请稍后重新登录",
    AuthErrorCode.INVALID_TOKEN: "登录已失效，请重新登录",
    AuthErrorCode.USER_NOT_FOUND: "用户不存在，请重新登录",
}


class AuthException(Exception):
    """可直接映射为 HTTP 响应的认证错误"""

    def __init__(self, error_code: AuthErrorCode, detail: str = ""):
        super().__init__(error_code.value)
        self.error_code = error_code
        # 仅用于日志，不返回给客户端
        self.detail = detail

    @property
    def status_code(self) -> int:
        return ERROR_STATUS[self.error_code]

    @property
    def message(self) -> str:
        return ERROR_MESSAGES[self.error_code]


class InvalidTokenException(AuthException):
    """签名、过期、kind 校验失败统一抛出此异常，不区分具体原因"""

    def __init__(self, detail: str = ""):
        super().__init__(AuthErrorCode.INVALID_TOKEN, detail)


class UserNotFoundException(AuthException):
    def __init__(self, detail: str = ""):
        super().__init__(AuthErrorCode.USER_NOT_FOUND, detail)


class IdentityPersistenceError(Exception):
    """用户 upsert 失败（事务已回滚）"""


class ProviderNotAvailableError(Exception):
    """provider 未注册或未配置"""

    def __init__(self, provider_type: str):
        super().__init__(provider_type)
        self.provider_type = provider_type


def build_error_body(
    status_code: int, message: str, error_code: Optional[str] = None
) -> Dict[str, Any]:
    from blog_auth.models.api import ApiResponse

    data = {"error_code": error_code} if error_code else None
    return ApiResponse.build(code=status_code, message=message, data=data).model_dump()
