from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from blog_auth.core.enums import TokenKind
from blog_auth.core.exceptions import InvalidTokenException, UserNotFoundException
from blog_auth.core.logger import logger
from blog_auth.models.database import User
from blog_auth.services.auth.blacklist import TokenBlacklistService
from blog_auth.services.auth.tokens import TokenIssuer, TokenValidator
from blog_auth.services.user.service import UserService


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int
    user: User


class RefreshCoordinator:
    """
    使用 refresh token 换取新的 access token

    refresh token 不轮换，客户端继续持有原 refresh token 直到其过期。
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        validator: TokenValidator,
        blacklist: Optional[TokenBlacklistService] = None,
    ) -> None:
        self.issuer = issuer
        self.validator = validator
        self.blacklist = blacklist

    async def refresh(self, db: Session, refresh_token: Optional[str]) -> RefreshResult:
        claims = self.validator.verify(refresh_token, TokenKind.REFRESH)

        if self.blacklist is not None and await self.blacklist.is_revoked(claims.jti):
            raise InvalidTokenException("revoked")

        user = UserService.get_user(db, claims.sub)
        if user is None:
            logger.info("刷新令牌对应的用户不存在: user_id={}", claims.sub)
            raise UserNotFoundException()

        access_token, expires_in = self.issuer.mint_access_token(user.id)
        logger.debug("access token 已刷新: user_id={}", user.id)
        return RefreshResult(access_token=access_token, expires_in=expires_in, user=user)
