"""
数据库引擎工厂

根据 URL 自动适配 SQLite 与 PostgreSQL：
- SQLite: StaticPool + PRAGMA（外键、WAL、锁超时）
- PostgreSQL: QueuePool + 连接池参数
- 生产环境默认禁止 SQLite
"""

from typing import Any, Optional, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.pool import QueuePool, StaticPool

from blog_auth.core.logger import logger


class DatabaseEngineFactory:
    """
    数据库引擎工厂

    使用示例:
        engine = DatabaseEngineFactory.create_engine(
            url="sqlite:///./data/blog_auth.db",
            environment="development",
        )
    """

    SQLITE_PRAGMAS = {
        "foreign_keys": "ON",
        "journal_mode": "WAL",
        "synchronous": "NORMAL",
        "busy_timeout": 5000,  # 毫秒；并发 upsert 时等待写锁而不是立即失败
        "temp_store": "MEMORY",
    }

    @classmethod
    def create_engine(
        cls,
        url: Union[str, URL],
        environment: str = "production",
        allow_sqlite_in_production: bool = False,
        **kwargs: Any,
    ) -> Engine:
        """
        创建同步数据库引擎

        Raises:
            ValueError: 生产环境使用 SQLite 且未显式允许
        """
        if isinstance(url, str):
            url = make_url(url)

        is_sqlite = url.drivername.startswith("sqlite")

        if environment == "production" and is_sqlite and not allow_sqlite_in_production:
            raise ValueError(
                "生产环境使用 SQLite 需要显式设置 ALLOW_SQLITE_IN_PRODUCTION=true，建议使用 PostgreSQL。"
            )

        if is_sqlite:
            return cls._create_sqlite_engine(url, **kwargs)
        return cls._create_postgres_engine(url, **kwargs)

    @classmethod
    def _create_sqlite_engine(cls, url: URL, **kwargs: Any) -> Engine:
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=kwargs.pop("echo", False),
            **kwargs,
        )
        cls._apply_sqlite_pragmas(engine, url.database)

        logger.info("创建 SQLite 引擎: {}", url.database or ":memory:")
        return engine

    @classmethod
    def _create_postgres_engine(cls, url: URL, **kwargs: Any) -> Engine:
        # 延迟导入以避免循环依赖
        from blog_auth.config import config

        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_timeout=config.db_pool_timeout,
            pool_recycle=config.db_pool_recycle,
            pool_pre_ping=True,
            echo=kwargs.pop("echo", False),
            **kwargs,
        )

        logger.info("创建 PostgreSQL 引擎: {}:{}", url.host, url.port)
        return engine

    @classmethod
    def _apply_sqlite_pragmas(cls, engine: Engine, db_name: Optional[str] = None) -> None:
        @event.listens_for(engine, "connect")
        def set_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            try:
                # 内存数据库不支持 WAL
                is_memory = db_name in (None, "", ":memory:")
                for pragma_name, pragma_value in cls.SQLITE_PRAGMAS.items():
                    if is_memory and pragma_name == "journal_mode":
                        continue
                    cursor.execute(f"PRAGMA {pragma_name}={pragma_value}")
            except Exception as exc:
                logger.warning("SQLite PRAGMA 配置失败（可能为只读库）: {}", exc)
            finally:
                cursor.close()

