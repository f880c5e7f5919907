# ==============================================================================
# 模块: PaperPulse 论文誌抓取定时任务
# 作用: 由 APScheduler 按 FETCH_SCHEDULE（cron 表达式）触发，
#       对所有启用的论文誌执行一次 FetchOrchestrator.run_all()。
# 副作用: 1. 写入新论文、更新已有论文的 abstract/url/doi
#         2. 每个论文誌写入一条 FetchLog
#         3. FULLTEXT_ENABLED 时为新论文获取全文
# ==============================================================================

"""Scheduled fetch job for PaperPulse."""

from __future__ import annotations

import logging
from typing import Optional

from apps.fetcher.orchestrator import FetchOrchestrator
from apps.fulltext.service import FullTextService
from apps.papers.store import PaperStore
from core.database import get_session_factory
from settings import settings

logger = logging.getLogger(__name__)

# 进程内共享同一个编排器，互斥锁才能覆盖定时触发与手动触发
_orchestrator: Optional[FetchOrchestrator] = None


def get_orchestrator() -> FetchOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        session_factory = get_session_factory()
        store = PaperStore(session_factory)
        fulltext_service = FullTextService(store) if settings.fulltext_enabled else None
        _orchestrator = FetchOrchestrator(
            session_factory=session_factory,
            store=store,
            fulltext_service=fulltext_service,
        )
    return _orchestrator


def set_orchestrator(orchestrator: Optional[FetchOrchestrator]) -> None:
    global _orchestrator
    _orchestrator = orchestrator


async def run_fetch_job() -> dict:
    """Fetch all active journals once.

    Returns:
        dict: Run summary (journals processed, new papers, failed journal ids).
    """
    logger.info("Starting fetch job")
    run = await get_orchestrator().run_all()
    if run.already_running:
        return {"status": "skipped", "reason": "already running"}

    summary = {
        "status": "completed",
        "journals": len(run),
        "new_papers": run.total_new,
        "failed": run.failed,
    }
    logger.info(f"Fetch job completed: {summary}")
    return summary
