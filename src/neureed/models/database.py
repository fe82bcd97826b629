"""数据库引擎与会话管理."""

import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _configure_sqlite(dbapi_connection: Any, _record: Any) -> None:
    # 刷新器、调度器和请求各自持有会话，WAL 允许读写并发
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    """创建异步引擎，SQLite 连接开启外键约束和 WAL."""
    engine = create_async_engine(database_url, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _configure_sqlite)
    return engine


async def create_tables(engine: AsyncEngine) -> None:
    """创建所有表."""
    # 确保所有表模型已注册到 metadata
    import neureed.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def init_db(database_url: str) -> None:
    """初始化全局引擎和会话工厂."""
    global _engine, _session_factory

    _engine = create_engine(database_url)
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    await create_tables(_engine)
    logger.info(f"数据库已就绪: {_engine.url.render_as_string(hide_password=True)}")


async def close_db() -> None:
    """释放数据库连接."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def async_session_maker() -> async_sessionmaker[AsyncSession]:
    """获取会话工厂（后台任务和调度器使用）."""
    if _session_factory is None:
        msg = "数据库未初始化，请先调用 init_db()"
        raise RuntimeError(msg)
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个会话."""
    async with async_session_maker()() as session:
        yield session
