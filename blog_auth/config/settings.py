"""
运行时配置

所有配置项均从环境变量读取，测试中可直接修改 config 实例的属性。
"""

import os
from typing import List, Optional

DEFAULT_JWT_SECRET = "change-me-in-production"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.replace(",", " ").split() if item.strip()]


class Config:
    """应用配置（环境变量驱动）"""

    def __init__(self) -> None:
        self.environment = os.getenv("ENVIRONMENT", "development")

        # 数据库
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./data/blog_auth.db")
        self.allow_sqlite_in_production = _env_bool("ALLOW_SQLITE_IN_PRODUCTION")
        self.db_pool_size = _env_int("DB_POOL_SIZE", 10)
        self.db_max_overflow = _env_int("DB_MAX_OVERFLOW", 20)
        self.db_pool_timeout = _env_int("DB_POOL_TIMEOUT", 30)
        self.db_pool_recycle = _env_int("DB_POOL_RECYCLE", 1800)

        # Redis（OAuth state / token 黑名单）
        self.redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.oauth_state_backend = os.getenv("OAUTH_STATE_BACKEND", "redis").strip().lower()
        self.oauth_state_ttl_seconds = _env_int("OAUTH_STATE_TTL_SECONDS", 600)

        # JWT
        self.jwt_secret_key = os.getenv("JWT_SECRET_KEY", DEFAULT_JWT_SECRET)
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")
        self.jwt_issuer = os.getenv("JWT_ISSUER", "blog-auth")
        self.jwt_audience = os.getenv("JWT_AUDIENCE", "blog-web")
        self.access_token_expire_minutes = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 120)
        self.refresh_token_expire_days = _env_int("REFRESH_TOKEN_EXPIRE_DAYS", 7)
        self.token_expiring_soon_seconds = _env_int("TOKEN_EXPIRING_SOON_SECONDS", 1800)
        self.token_blacklist_enabled = _env_bool("TOKEN_BLACKLIST_ENABLED")

        # GitHub OAuth
        self.github_client_id = os.getenv("GITHUB_CLIENT_ID", "")
        self.github_client_secret = os.getenv("GITHUB_CLIENT_SECRET", "")
        self.github_redirect_uri = os.getenv("GITHUB_REDIRECT_URI", "")
        self.github_scopes = _env_list("GITHUB_SCOPES", "read:user user:email")
        self.github_authorization_url_override: Optional[str] = (
            os.getenv("GITHUB_AUTHORIZATION_URL") or None
        )
        self.github_token_url_override: Optional[str] = os.getenv("GITHUB_TOKEN_URL") or None
        self.github_userinfo_url_override: Optional[str] = os.getenv("GITHUB_USERINFO_URL") or None

        self.oauth_http_timeout_seconds = _env_float("OAUTH_HTTP_TIMEOUT_SECONDS", 5.0)
        self.oauth_ca_bundle: Optional[str] = os.getenv("OAUTH_CA_BUNDLE") or None

        # state cookie（浏览器侧 CSRF 往返）
        self.oauth_state_cookie_name = os.getenv("OAUTH_STATE_COOKIE_NAME", "oauth_state")
        self.oauth_state_cookie_secure = _env_bool(
            "OAUTH_STATE_COOKIE_SECURE", default=self.environment == "production"
        )

        self.cors_origins = _env_list("CORS_ORIGINS", "http://localhost:5173")

        # 日志
        self.log_level = os.getenv("LOG_LEVEL", "DEBUG" if self.environment == "development" else "INFO")
        self.log_json = _env_bool("LOG_JSON")

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_days * 86400

    def validate(self) -> None:
        """启动时校验，生产环境拒绝不安全的默认值"""
        if self.environment != "production":
            return
        if self.jwt_secret_key == DEFAULT_JWT_SECRET or len(self.jwt_secret_key) < 32:
            raise ValueError("生产环境必须设置长度不少于 32 的 JWT_SECRET_KEY")
        if self.oauth_state_backend != "redis":
            raise ValueError("生产环境的 OAuth state 必须存储在 Redis 中（多实例共享）")


config = Config()
