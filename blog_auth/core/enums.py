"""
统一的枚举定义
"""

from enum import Enum


class TokenKind(str, Enum):
    """令牌类型（access / refresh 共用同一签名密钥，仅靠 kind 区分）"""

    ACCESS = "access"
    REFRESH = "refresh"


class AuthFlowStatus(str, Enum):
    """OAuth 登录流程状态"""

    IDLE = "idle"
    STATE_PENDING = "state_pending"  # 已签发 state，等待 provider 回调
    CALLBACK_RECEIVED = "callback_received"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class SessionChangeReason(str, Enum):
    """客户端会话变更原因"""

    PERSISTED = "persisted"
    REFRESHED = "refreshed"
    CLEARED = "cleared"
    EXTERNAL = "external"  # 其他进程修改了共享存储
