# =============================================================================
# 模块: main.py
# 功能: PaperPulse 后台服务主入口
# 架构角色: 常驻进程的启动和编排中心，负责：
#   1. 初始化日志系统
#   2. 检查数据库连接并建表
#   3. 写入默认论文誌
#   4. 启动定时抓取调度器，直到收到中断信号后按顺序关闭
# =============================================================================
"""Main entry point for the PaperPulse fetch daemon."""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import asynccontextmanager

from apps.journals.defaults import seed_default_journals
from apps.scheduler import start_scheduler, stop_scheduler
from common.logger import setup_logging
from core.database import check_db_connection, close_db, init_db
from settings import settings

setup_logging("DEBUG" if settings.debug else "INFO")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan():
    """Start and stop the daemon's resources."""
    # ======================== 启动阶段 ========================
    logger.info(f"Starting {settings.app_name}...")

    # 数据库不可达时直接阻止启动
    if not await check_db_connection():
        logger.error("Database connection failed")
        raise RuntimeError("Cannot connect to database")

    await init_db()
    logger.info("Database initialized")

    created = await seed_default_journals()
    logger.info(f"Default journals ready ({created} new)")

    await start_scheduler()
    logger.info(f"{settings.app_name} started successfully")

    try:
        yield
    finally:
        # ======================== 关闭阶段 ========================
        logger.info(f"Shutting down {settings.app_name}...")
        await stop_scheduler()
        await close_db()
        logger.info(f"{settings.app_name} shutdown complete")


async def serve() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows 事件循环不支持信号处理，依赖 KeyboardInterrupt
            pass

    async with lifespan():
        await stop_event.wait()


def run() -> None:
    """Run the daemon until interrupted."""
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
