"""
用户身份解析

第三方身份 (provider_type, provider_id) 与本地用户一一对应，登录时按身份 upsert：
首次登录创建用户，之后只刷新资料字段，本地 id 与 created_at 保持不变。
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from blog_auth.config.constants import UserDefaults
from blog_auth.core.exceptions import IdentityPersistenceError
from blog_auth.core.logger import logger
from blog_auth.models.api import UserInfo, UserProfile
from blog_auth.models.database import User, utcnow
from blog_auth.services.auth.oauth.models import OAuthUserInfo

_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class UserService:
    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_by_provider_identity(db: Session, provider_type: str, provider_id: str) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.provider_type == provider_type, User.provider_id == provider_id)
            .first()
        )

    @staticmethod
    def upsert_from_provider(db: Session, provider_type: str, identity: OAuthUserInfo) -> User:
        """
        按第三方身份插入或更新用户

        email 为空时保留已有邮箱；任何数据库错误都会回滚并抛出 IdentityPersistenceError。
        """
        try:
            dialect = db.get_bind().dialect.name
            if dialect in _UPSERT_INSERTS:
                user = UserService._upsert_on_conflict(db, dialect, provider_type, identity)
            else:
                user = UserService._upsert_with_retry(db, provider_type, identity)
        except IdentityPersistenceError:
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "用户 upsert 失败: provider={}:{}, error={}", provider_type, identity.id, type(exc).__name__
            )
            raise IdentityPersistenceError(str(exc)) from exc

        logger.info("用户登录身份已同步: user_id={}, provider={}:{}", user.id, provider_type, identity.id)
        return user

    @staticmethod
    def _profile_values(identity: OAuthUserInfo) -> dict:
        return {
            "username": identity.username,
            "name": identity.name,
            "bio": identity.bio,
            "avatar_url": identity.avatar_url,
        }

    @staticmethod
    def _upsert_on_conflict(
        db: Session, dialect: str, provider_type: str, identity: OAuthUserInfo
    ) -> User:
        now = utcnow()
        insert = _UPSERT_INSERTS[dialect]
        stmt = insert(User).values(
            provider_type=provider_type,
            provider_id=identity.id,
            email=identity.email,
            created_at=now,
            updated_at=now,
            **UserService._profile_values(identity),
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[User.provider_type, User.provider_id],
            set_={
                "username": excluded.username,
                "name": excluded.name,
                "bio": excluded.bio,
                "avatar_url": excluded.avatar_url,
                "email": func.coalesce(excluded.email, User.email),
                "updated_at": excluded.updated_at,
            },
        )
        db.execute(stmt)
        db.commit()

        user = (
            db.query(User)
            .filter(User.provider_type == provider_type, User.provider_id == identity.id)
            .populate_existing()
            .first()
        )
        if user is None:
            raise IdentityPersistenceError("upsert 后未读取到用户")
        return user

    @staticmethod
    def _upsert_with_retry(db: Session, provider_type: str, identity: OAuthUserInfo) -> User:
        """不支持 ON CONFLICT 的数据库：先查后写，唯一约束冲突时回滚重试"""
        last_error: Optional[Exception] = None
        for _ in range(UserDefaults.UPSERT_MAX_RETRIES):
            now = utcnow()
            user = UserService.get_by_provider_identity(db, provider_type, identity.id)
            try:
                if user is None:
                    user = User(
                        provider_type=provider_type,
                        provider_id=identity.id,
                        email=identity.email,
                        created_at=now,
                        updated_at=now,
                        **UserService._profile_values(identity),
                    )
                    db.add(user)
                else:
                    for key, value in UserService._profile_values(identity).items():
                        setattr(user, key, value)
                    if identity.email is not None:
                        user.email = identity.email
                    user.updated_at = now
                db.commit()
                db.refresh(user)
                return user
            except IntegrityError as exc:
                # 并发首次登录：另一请求已插入同一身份，下一轮走更新分支
                db.rollback()
                last_error = exc

        raise IdentityPersistenceError(f"upsert 重试耗尽: {last_error}")

    @staticmethod
    def to_user_info(user: User) -> UserInfo:
        return UserInfo(
            id=user.id,
            provider_id=user.provider_id,
            username=user.username,
            avatar_url=user.avatar_url,
            created_at=user.created_at,
        )

    @staticmethod
    def to_user_profile(user: User) -> UserProfile:
        return UserProfile(
            id=user.id,
            provider_id=user.provider_id,
            provider_type=user.provider_type,
            username=user.username,
            avatar_url=user.avatar_url,
            email=user.email,
            name=user.name,
            bio=user.bio,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
