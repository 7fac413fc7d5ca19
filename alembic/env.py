"""
Alembic 环境配置
用于数据库迁移的运行时环境设置
"""

import os
import sys
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, event, pool

from alembic import context

# 添加项目根目录到 Python 路径
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# 加载 .env 文件（本地开发时需要）
env_file = Path(__file__).parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)

from blog_auth.config import config as app_config  # noqa: E402
from blog_auth.database.engine_factory import DatabaseEngineFactory  # noqa: E402
from blog_auth.models.database import Base  # noqa: E402

# Alembic Config 对象
config = context.config

# 数据库 URL 与应用保持一致（DATABASE_URL）
config.set_main_option("sqlalchemy.url", app_config.database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """离线模式：只生成 SQL 脚本"""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """
    在线模式：直接连接数据库执行迁移

    SQLite 使用 batch 模式并复用应用的 PRAGMA 配置。
    """
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    is_sqlite = connectable.dialect.name == "sqlite"

    if is_sqlite:

        @event.listens_for(connectable, "connect")
        def set_sqlite_pragmas(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            try:
                for name, value in DatabaseEngineFactory.SQLITE_PRAGMAS.items():
                    cursor.execute(f"PRAGMA {name}={value}")
            finally:
                cursor.close()

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=is_sqlite,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
