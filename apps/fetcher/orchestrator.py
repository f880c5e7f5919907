# =============================================================================
# 模块: apps/fetcher/orchestrator.py
# 功能: 论文誌批量抓取编排
# 架构角色: 连接 FeedParser、PaperStore、FullTextService 的主流程。
#           定时任务（apps/scheduler）与命令行（scripts/fetch_rss.py）都调用这里的入口。
# 执行规则:
#   1. 单实例互斥：run_all 持有实例自己的 asyncio.Lock，并发调用直接返回
#      already_running，不产生任何副作用
#   2. 论文誌严格串行处理，相邻两个之间休眠 min_interval_ms
#   3. 单个论文誌的任何异常都在本层捕获并记录，不影响后续论文誌
#   4. 每个论文誌处理结束恰好写入一条 FetchLog；仅成功时更新 last_fetched_at
#   5. 有条目因存储错误被跳过时状态记为 partial
# =============================================================================

"""Fetch orchestration over all active journals."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.feeds.parser import CandidatePaper, FeedFetchError, FeedParser
from apps.fetcher.models import FetchLog, FetchStatus
from apps.journals.models import GeneratedFeed, Journal
from apps.papers.store import PaperStore, Skipped
from core.database import get_session_factory, session_scope
from core.models.base import utcnow

logger = logging.getLogger(__name__)


class GeneratedFeedSource(Protocol):
    """Produces candidates for journals whose feed is generated from a web page."""

    async def extract(self, journal: Journal, generated_feed: GeneratedFeed) -> List[CandidatePaper]:
        ...


@dataclass
class FetchResult:
    """Outcome of fetching one journal."""

    journal_id: str
    status: str
    papers_fetched: int = 0
    new_papers: int = 0
    failed_items: int = 0
    full_text_fetched: int = 0
    error: Optional[str] = None
    execution_time_ms: int = 0
    new_paper_ids: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != FetchStatus.ERROR.value


@dataclass
class RunAllResult:
    """Outcome of a batch run, keyed by journal id."""

    results: Dict[str, FetchResult] = field(default_factory=dict)
    already_running: bool = False
    started_at: Optional[datetime] = None

    def __getitem__(self, journal_id: str) -> FetchResult:
        return self.results[journal_id]

    def __len__(self) -> int:
        return len(self.results)

    @property
    def total_new(self) -> int:
        return sum(r.new_papers for r in self.results.values())

    @property
    def failed(self) -> List[str]:
        return [jid for jid, r in self.results.items() if not r.ok]


class FetchOrchestrator:
    """Runs journal fetches sequentially with a single-flight guard.

    Args:
        session_factory: Async session factory; defaults to the shared one.
        parser: Feed parser; a default one uses ``settings`` timeouts.
        store: Paper store bound to the same session factory.
        fulltext_service: When given and full text is enabled, newly created
            papers get their full text resolved right after storage.
        generated_source: Handler for ``ai_generated`` journals.
        min_interval_ms: Pause between journals.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        parser: Optional[FeedParser] = None,
        store: Optional[PaperStore] = None,
        fulltext_service=None,
        generated_source: Optional[GeneratedFeedSource] = None,
        min_interval_ms: Optional[int] = None,
        fulltext_enabled: Optional[bool] = None,
    ):
        from settings import settings

        self._session_factory = session_factory or get_session_factory()
        self.parser = parser or FeedParser(
            timeout=settings.fetch_timeout,
            retries=settings.fetch_http_retries,
        )
        self.store = store or PaperStore(self._session_factory)
        self.fulltext_service = fulltext_service
        self.generated_source = generated_source
        self.min_interval_ms = (
            settings.fetch_min_interval_ms if min_interval_ms is None else min_interval_ms
        )
        self.fulltext_enabled = (
            settings.fulltext_enabled if fulltext_enabled is None else fulltext_enabled
        )
        self.schedule = settings.fetch_schedule
        self.schedule_enabled = settings.fetch_enabled
        self.timezone = settings.scheduler_timezone

        self._lock = asyncio.Lock()
        self._last_run_time: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def status(self) -> dict:
        """Running state, last run time and the next scheduled run."""
        return {
            "is_running": self.is_running,
            "is_scheduled": self.schedule_enabled,
            "schedule": self.schedule,
            "last_run_time": self._last_run_time.isoformat() if self._last_run_time else None,
            "next_run_time": self._next_run_time(),
        }

    def _next_run_time(self) -> Optional[str]:
        if not self.schedule_enabled:
            return None
        try:
            trigger = CronTrigger.from_crontab(self.schedule, timezone=self.timezone)
        except ValueError as e:
            logger.warning(f"Invalid fetch schedule '{self.schedule}': {e}")
            return None
        next_time = trigger.get_next_fire_time(None, datetime.now(trigger.timezone))
        return next_time.isoformat() if next_time else None

    async def run_all(self, user_id: Optional[int] = None) -> RunAllResult:
        """Fetch every active journal, optionally only those owned by ``user_id``."""
        if self._lock.locked():
            logger.warning("Fetch already running, skipping this trigger")
            return RunAllResult(already_running=True)

        async with self._lock:
            started = utcnow()
            self._last_run_time = started
            run = RunAllResult(started_at=started)

            journals = await self.active_journals(user_id)
            logger.info(f"Fetching {len(journals)} journal(s)")

            for index, journal in enumerate(journals):
                if index and self.min_interval_ms > 0:
                    await asyncio.sleep(self.min_interval_ms / 1000)
                try:
                    run.results[journal.id] = await self.run_one(journal)
                except Exception as e:
                    logger.exception(f"Fetch of {journal.name} aborted")
                    run.results[journal.id] = FetchResult(
                        journal_id=journal.id,
                        status=FetchStatus.ERROR.value,
                        error=str(e) or e.__class__.__name__,
                    )

            logger.info(
                f"Fetch finished: {len(run)} journal(s), {run.total_new} new paper(s), "
                f"{len(run.failed)} failed"
            )
            return run

    async def active_journals(self, user_id: Optional[int] = None) -> List[Journal]:
        stmt = select(Journal).where(Journal.is_active.is_(True))
        if user_id is not None:
            stmt = stmt.where(Journal.user_id == user_id)
        stmt = stmt.order_by(Journal.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_journal(self, journal_id: str) -> Optional[Journal]:
        async with self._session_factory() as session:
            return await session.get(Journal, journal_id)

    async def run_one(self, journal: Journal) -> FetchResult:
        """Fetch a single journal and record exactly one FetchLog row."""
        start = time.monotonic()
        result = FetchResult(journal_id=journal.id, status=FetchStatus.SUCCESS.value)

        try:
            if journal.is_ai_generated:
                logger.info(f"Fetching AI-generated feed for journal: {journal.name}")
                candidates: Iterable[CandidatePaper] = await self._generated_candidates(journal)
            else:
                logger.info(f"Fetching RSS for journal: {journal.name}")
                raw = await self.parser.fetch(journal.rss_url)
                candidates = self.parser.parse(raw, journal)

            for candidate in candidates:
                result.papers_fetched += 1
                outcome = await self.store.upsert(candidate, journal.id)
                if outcome.created:
                    result.new_papers += 1
                    result.new_paper_ids.append(outcome.paper_id)
                elif isinstance(outcome, Skipped) and outcome.is_error:
                    result.failed_items += 1

            if result.new_paper_ids:
                result.full_text_fetched = await self._fetch_full_text(result.new_paper_ids)

            if result.failed_items:
                result.status = FetchStatus.PARTIAL.value
                result.error = f"{result.failed_items} item(s) could not be stored"
        except Exception as e:
            # 论文誌粒度兜底：记录错误后继续处理下一个
            if isinstance(e, FeedFetchError):
                logger.error(f"Error fetching RSS for {journal.name}: {e}")
            else:
                logger.exception(f"Unexpected error fetching {journal.name}")
            result.status = FetchStatus.ERROR.value
            result.error = str(e) or e.__class__.__name__

        result.execution_time_ms = int((time.monotonic() - start) * 1000)
        await self._record(journal, result)

        if result.ok:
            logger.info(
                f"Fetched {result.papers_fetched} papers ({result.new_papers} new, "
                f"{result.full_text_fetched} full text) for {journal.name}"
            )
        return result

    async def _generated_candidates(self, journal: Journal) -> List[CandidatePaper]:
        if self.generated_source is None:
            raise FeedFetchError(f"No generator configured for AI-generated journal {journal.id}")

        async with session_scope(self._session_factory) as session:
            generated = (
                await session.execute(
                    select(GeneratedFeed).where(GeneratedFeed.journal_id == journal.id)
                )
            ).scalar_one_or_none()
            if generated is None:
                raise FeedFetchError(
                    "AI generated feed configuration not found. Please regenerate the feed."
                )
            try:
                candidates = await self.generated_source.extract(journal, generated)
            except Exception as e:
                generated.mark_error(str(e))
                await session.commit()
                raise
            generated.mark_success(utcnow())
        return list(candidates)

    async def _fetch_full_text(self, paper_ids: List[int]) -> int:
        if not (self.fulltext_enabled and self.fulltext_service):
            return 0
        fetched = 0
        for paper_id in paper_ids:
            try:
                ft = await self.fulltext_service.process_paper(paper_id)
            except Exception:
                logger.exception(f"Full-text fetch crashed for paper {paper_id}")
                continue
            if ft.success:
                fetched += 1
        return fetched

    @staticmethod
    def _log_row(journal_id: Optional[str], result: FetchResult) -> FetchLog:
        return FetchLog(
            journal_id=journal_id,
            status=result.status,
            papers_fetched=result.papers_fetched,
            new_papers=result.new_papers,
            error_message=result.error,
            execution_time_ms=result.execution_time_ms,
        )

    async def _record(self, journal: Journal, result: FetchResult) -> None:
        """Write the FetchLog row; storage failures are logged, never raised."""
        now = utcnow()
        try:
            async with session_scope(self._session_factory) as session:
                session.add(self._log_row(journal.id, result))
                if result.status == FetchStatus.SUCCESS.value:
                    await session.execute(
                        update(Journal).where(Journal.id == journal.id).values(last_fetched_at=now)
                    )
        except IntegrityError as e:
            # 抓取过程中论文誌被删除：日志照常写入，journal_id 置空
            logger.warning(f"Journal {journal.id} no longer exists, logging fetch without it: {e.orig}")
            try:
                async with session_scope(self._session_factory) as session:
                    session.add(self._log_row(None, result))
            except SQLAlchemyError:
                logger.exception(f"Failed to record fetch log for {journal.name}")
            return
        except SQLAlchemyError:
            logger.exception(f"Failed to record fetch log for {journal.name}")
            return

        if result.status == FetchStatus.SUCCESS.value:
            journal.last_fetched_at = now
