"""
数据库连接与会话管理
"""

from pathlib import Path
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from blog_auth.config import config
from blog_auth.core.logger import logger
from blog_auth.database.engine_factory import DatabaseEngineFactory
from blog_auth.models.database import Base

# 延迟初始化，导入模块时不连接数据库
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def _ensure_engine() -> Engine:
    """确保数据库引擎已创建（延迟加载）"""
    global _engine, _SessionLocal

    if _engine is not None:
        return _engine

    _ensure_sqlite_directory(config.database_url)
    _engine = DatabaseEngineFactory.create_engine(
        url=config.database_url,
        environment=config.environment,
        allow_sqlite_in_production=config.allow_sqlite_in_production,
    )
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    logger.debug(
        "数据库引擎已初始化: {}",
        config.database_url.split("@")[-1] if "@" in config.database_url else "local",
    )
    return _engine


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（FastAPI 依赖）

    本函数不自动提交事务，由 service 层显式 commit；异常时回滚。
    """
    _ensure_engine()
    assert _SessionLocal is not None
    db = _SessionLocal()
    try:
        yield db
    except Exception:
        try:
            db.rollback()
        except Exception as rollback_error:
            logger.debug("回滚事务时出错（可忽略）: {}", rollback_error)
        raise
    finally:
        db.close()


def init_db() -> None:
    """
    初始化数据库

    生产环境表结构由 Alembic 管理；开发环境（SQLite）直接建表便于本地启动。
    """
    engine = _ensure_engine()
    if engine.dialect.name == "sqlite" and config.environment != "production":
        Base.metadata.create_all(bind=engine)
        logger.info("SQLite 开发库表结构已同步")


def dispose_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
