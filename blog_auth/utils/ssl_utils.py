"""
SSL 工具函数

OAuth provider 出站请求统一使用这里的 SSL 上下文。
"""

import ssl
from functools import lru_cache

import certifi

from blog_auth.config import config


@lru_cache(maxsize=4)
def _build_context(cafile: str) -> ssl.SSLContext:
    return ssl.create_default_context(cafile=cafile)


def get_ssl_context() -> ssl.SSLContext:
    """
    获取 SSL 上下文

    配置了 OAUTH_CA_BUNDLE 时使用该证书包（企业代理场景），否则使用 certifi。
    同一证书包只创建一次上下文。
    """
    return _build_context(config.oauth_ca_bundle or certifi.where())
