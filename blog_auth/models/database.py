"""
数据库模型

本子系统只管理用户身份记录，其余业务表（文章、评论等）由外部模块维护。
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    """本地用户，与第三方身份一一对应"""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("provider_type", "provider_id", name="uq_users_provider_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # 第三方身份，创建后不可变
    provider_type: Mapped[str] = mapped_column(String(32), nullable=False, default="github")
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)

    username: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<User id={self.id} provider={self.provider_type}:{self.provider_id} username={self.username}>"
