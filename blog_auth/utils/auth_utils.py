"""
认证工具函数
提供统一的 Bearer 认证依赖
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from blog_auth.core.enums import TokenKind
from blog_auth.core.exceptions import InvalidTokenException, UserNotFoundException
from blog_auth.core.logger import logger, token_fingerprint
from blog_auth.database import get_db
from blog_auth.models.database import User
from blog_auth.services.auth.blacklist import TokenBlacklistService
from blog_auth.services.auth.dependencies import get_token_blacklist, get_token_validator
from blog_auth.services.auth.tokens import TokenClaims, TokenValidator
from blog_auth.services.user.service import UserService

# 缺少凭据时由我们统一返回 401 信封，而不是 HTTPBearer 默认的 403
security = HTTPBearer(auto_error=False)


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    validator: TokenValidator = Depends(get_token_validator),
    blacklist: TokenBlacklistService = Depends(get_token_blacklist),
) -> TokenClaims:
    """校验 access token 并返回声明"""
    if credentials is None or not credentials.credentials:
        raise InvalidTokenException("missing bearer token")

    token = credentials.credentials
    try:
        claims = validator.verify(token, TokenKind.ACCESS)
    except InvalidTokenException as exc:
        logger.debug("Token验证失败: reason={}, token_fp={}", exc.detail, token_fingerprint(token))
        raise

    if await blacklist.is_revoked(claims.jti):
        logger.info("Token已吊销: user_id={}, token_fp={}", claims.sub, token_fingerprint(token))
        raise InvalidTokenException("revoked")

    return claims


async def get_current_user(
    claims: TokenClaims = Depends(get_token_claims), db: Session = Depends(get_db)
) -> User:
    """
    获取当前登录用户

    令牌有效但用户已不存在时同样返回 401，客户端据此清除会话。
    """
    user = UserService.get_user(db, claims.sub)
    if user is None:
        logger.warning("用户不存在: user_id={}", claims.sub)
        raise UserNotFoundException()
    return user
