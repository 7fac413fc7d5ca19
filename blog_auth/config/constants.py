"""
常量定义
"""


class RedisKeys:
    OAUTH_STATE_PREFIX = "oauth_state:"
    TOKEN_BLACKLIST_PREFIX = "token_blacklist:"


class StateDefaults:
    # 256 bit 熵
    NONCE_BYTES = 32
    # 碰撞时重新生成的最大次数
    ISSUE_MAX_ATTEMPTS = 5
    COOKIE_PATH = "/auth"


class UserDefaults:
    # upsert 回退路径（非 SQLite/PostgreSQL）遇到唯一约束冲突时的重试次数
    UPSERT_MAX_RETRIES = 3
