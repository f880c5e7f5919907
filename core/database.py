# =============================================================================
# 数据库连接与会话管理模块
# =============================================================================
# 本模块负责 PaperPulse 的数据库连接管理，是整个后端系统的数据访问基础层。
# 主要职责：
#   1. 创建和管理 SQLAlchemy 异步数据库引擎（AsyncEngine）
#   2. 提供异步会话工厂（async_sessionmaker），由 PaperStore、FetchOrchestrator、
#      SummaryService 等组件通过构造参数注入使用
#   3. 提供事务作用域（session_scope），自动提交或回滚
#   4. 提供数据库初始化（建表）、健康检查和关闭功能
#
# 架构设计说明：
#   - 使用模块级全局变量（_engine、_session_factory）实现单例模式，
#     确保整个进程共享同一连接池。
#   - 延迟导入 settings 模块，避免循环依赖问题。
#   - SQLite（本地开发 / 测试）不支持连接池参数，创建引擎时区分处理。
# =============================================================================

"""Database connection and session management for PaperPulse."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.models.base import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Returns:
        AsyncEngine: A shared asynchronous engine bound to ``settings.database_url``.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the engine cannot be created due to
            invalid configuration or driver issues.
    """
    global _engine
    if _engine is None:
        from settings import settings

        if settings.is_sqlite:
            _engine = create_async_engine(settings.database_url, echo=settings.db_echo)
        else:
            # pool_recycle: 连接回收时间（秒），防止 MySQL 服务端超时断开
            _engine = create_async_engine(
                settings.database_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_recycle=settings.db_pool_recycle,
                echo=settings.db_echo,
            )
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory.

    ``expire_on_commit=False`` keeps attribute values readable after commit,
    which the orchestrator relies on when logging journal names post-commit.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Provide a transactional scope around a series of operations.

    正常退出时提交事务，出现异常时回滚并重新抛出。

    Args:
        factory: Session factory to use; defaults to the shared one.

    Yields:
        AsyncSession: An active async SQLAlchemy session.
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def import_models() -> None:
    """Import every ORM module so all tables are registered on Base.metadata."""
    import apps.journals.models  # noqa: F401
    import apps.papers.models  # noqa: F401
    import apps.fetcher.models  # noqa: F401
    import apps.summary.models  # noqa: F401


async def init_db() -> None:
    """Create all tables registered on ``Base.metadata`` if missing."""
    import_models()
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified")


async def close_db() -> None:
    """Dispose the database engine and clear session factory."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connections closed")


async def check_db_connection() -> bool:
    """Check whether the database connection is healthy.

    Returns:
        bool: ``True`` if ``SELECT 1`` succeeds, otherwise ``False``.
    """
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
