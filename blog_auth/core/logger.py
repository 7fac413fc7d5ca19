"""
日志配置

项目统一使用 loguru，业务代码通过 `from blog_auth.core.logger import logger` 引用。
"""

import hashlib
import sys
from typing import Optional

from loguru import logger

_configured = False

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """安装 stderr sink（幂等）"""
    global _configured
    from blog_auth.config import config

    if _configured:
        return
    _configured = True

    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or config.log_level).upper(),
        format=LOG_FORMAT,
        serialize=config.log_json if json_logs is None else json_logs,
        backtrace=False,
        diagnose=False,
    )


def token_fingerprint(token: str) -> str:
    """日志中引用 token 时只输出指纹"""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


__all__ = ["logger", "setup_logging", "token_fingerprint"]
