# ==============================================================================
# 模块: PaperPulse 调度任务注册与管理模块
# 作用: 创建和管理 APScheduler 调度器单例，并注册论文誌定时抓取任务。
# 设计思路: 调度器只负责"何时触发"，抓取逻辑全部在 FetchOrchestrator 中，
#           命令行手动抓取与定时抓取走同一入口。
# ==============================================================================

"""Scheduler tasks for PaperPulse."""

from __future__ import annotations

import logging
from typing import Optional

# AsyncIOScheduler: 基于 asyncio 事件循环的调度器
# CronTrigger: 由 FETCH_SCHEDULE 的 cron 表达式构造（默认每天 06:00）
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from settings import settings

logger = logging.getLogger(__name__)

FETCH_JOB_ID = "fetch_job"

# 模块级别的调度器单例变量，确保整个应用只有一个调度器实例
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler singleton."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)
    return _scheduler


def build_fetch_trigger(schedule: Optional[str] = None, timezone: Optional[str] = None) -> CronTrigger:
    """Build the cron trigger for the fetch job.

    Raises:
        ValueError: ``schedule`` is not a valid five-field cron expression.
    """
    return CronTrigger.from_crontab(
        schedule or settings.fetch_schedule,
        timezone=timezone or settings.scheduler_timezone,
    )


def register_jobs(scheduler: AsyncIOScheduler) -> None:
    """Register the fetch job when scheduled fetching is enabled."""
    if not settings.fetch_enabled:
        logger.info("Scheduled fetching disabled (FETCH_ENABLED=false)")
        return

    from apps.scheduler.jobs.fetch_job import run_fetch_job

    scheduler.add_job(
        run_fetch_job,
        build_fetch_trigger(),
        id=FETCH_JOB_ID,
        name="Fetch papers from all active journals",
        # 重启时不会出现重复任务；上一次未结束时不叠加执行
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Fetch job scheduled with '{settings.fetch_schedule}' ({settings.scheduler_timezone})")


async def start_scheduler() -> None:
    """Register jobs and start the scheduler."""
    scheduler = get_scheduler()
    register_jobs(scheduler)
    scheduler.start()
    logger.info("Scheduler started")


async def stop_scheduler() -> None:
    """Stop the scheduler without waiting for a running fetch."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
