# =============================================================================
# 模块: apps/papers/store.py
# 功能: 论文去重写入（upsert）与全文状态维护
# 架构角色: 抓取流水线的持久化层。FetchOrchestrator 对每条候选论文调用 upsert()，
#           FullTextService 通过 mark_full_text() / pending_full_text() 读写全文状态。
# 去重规则:
#   1. 默认按 (journal_id, 标题前 255 字符) 查找；开启 dedup_on_external_id 后
#      先按 (journal_id, external_id) 查找，找不到再退回标题前缀
#   2. 已存在：仅当新值非空时更新 abstract / url / doi，不会用空值覆盖
#   3. 不存在：插入完整记录
# 事务与错误:
#   每次 upsert 使用独立事务。插入时触发唯一约束（并发抓取抢先写入）视为
#   "already exists"；其他数据库错误记录日志后以 Skipped 返回，绝不向上抛出，
#   保证单条坏数据不会中断整个批次。
# =============================================================================

"""Deduplicating paper persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.feeds.parser import CandidatePaper
from apps.papers.models import FullTextSource, Paper, title_prefix
from core.database import get_session_factory
from core.models.base import utcnow

logger = logging.getLogger(__name__)

ALREADY_EXISTS = "already exists"


class UpsertOutcome:
    """Result of ``PaperStore.upsert``: ``Created``, ``Updated`` or ``Skipped``."""

    created: ClassVar[bool] = False
    paper_id: Optional[int] = None


@dataclass(frozen=True)
class Created(UpsertOutcome):
    paper_id: int
    created: ClassVar[bool] = True


@dataclass(frozen=True)
class Updated(UpsertOutcome):
    paper_id: int
    changed: bool = False


@dataclass(frozen=True)
class Skipped(UpsertOutcome):
    reason: str

    @property
    def is_error(self) -> bool:
        """True when the item was dropped because of a storage failure."""
        return self.reason != ALREADY_EXISTS


# upsert 时允许被新值更新的字段（候选字段名 -> 模型字段名）
_UPDATABLE_FIELDS = (
    ("abstract", "abstract"),
    ("link", "url"),
    ("doi", "doi"),
)


class PaperStore:
    """Stores candidate papers with title-prefix deduplication.

    Args:
        session_factory: Async session factory; defaults to the shared one.
        dedup_on_external_id: Try ``(journal_id, external_id)`` before the
            title prefix when looking up an existing paper.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        dedup_on_external_id: Optional[bool] = None,
    ):
        if dedup_on_external_id is None:
            from settings import settings

            dedup_on_external_id = settings.paper_dedup_on_external_id
        self._session_factory = session_factory or get_session_factory()
        self.dedup_on_external_id = dedup_on_external_id

    async def upsert(self, candidate: CandidatePaper, journal_id: str) -> UpsertOutcome:
        """Insert or update one candidate paper.

        Never raises; storage failures come back as ``Skipped``.
        """
        prefix = title_prefix(candidate.title)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    paper = await self._find(session, journal_id, candidate, prefix)
                    if paper is not None:
                        changed = self._apply_update(paper, candidate)
                        return Updated(paper_id=paper.id, changed=changed)

                    paper = Paper(
                        journal_id=journal_id,
                        external_id=candidate.external_id,
                        title=candidate.title,
                        title_prefix=prefix,
                        authors=list(candidate.authors),
                        abstract=candidate.abstract or None,
                        url=candidate.link,
                        doi=candidate.doi,
                        published_date=candidate.published_date,
                        full_text_source=FullTextSource.NONE.value,
                    )
                    session.add(paper)
                    await session.flush()
                    return Created(paper_id=paper.id)
        except IntegrityError:
            logger.debug(f"Paper already stored by a concurrent fetch: {prefix[:60]}")
            return Skipped(reason=ALREADY_EXISTS)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to store paper '{prefix[:60]}' for {journal_id}: {e}")
            return Skipped(reason=str(e))

    async def _find(
        self,
        session: AsyncSession,
        journal_id: str,
        candidate: CandidatePaper,
        prefix: str,
    ) -> Optional[Paper]:
        if self.dedup_on_external_id and candidate.external_id:
            result = await session.execute(
                select(Paper)
                .where(
                    Paper.journal_id == journal_id,
                    Paper.external_id == candidate.external_id,
                )
                .limit(1)
            )
            paper = result.scalars().first()
            if paper is not None:
                return paper

        result = await session.execute(
            select(Paper).where(
                Paper.journal_id == journal_id,
                Paper.title_prefix == prefix,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply_update(paper: Paper, candidate: CandidatePaper) -> bool:
        changed = False
        for source, target in _UPDATABLE_FIELDS:
            value = getattr(candidate, source)
            if value and getattr(paper, target) != value:
                setattr(paper, target, value)
                changed = True
        return changed

    # ---- 全文状态 ----

    async def get(self, paper_id: int) -> Optional[Paper]:
        async with self._session_factory() as session:
            return await session.get(Paper, paper_id)

    async def mark_full_text(self, paper_id: int, result) -> None:
        """Record a full-text attempt.

        ``full_text_fetched_at`` is set on success and failure alike; the text
        fields are written only on success.
        """
        async with self._session_factory() as session:
            async with session.begin():
                paper = await session.get(Paper, paper_id)
                if paper is None:
                    logger.warning(f"Paper {paper_id} vanished before full text was recorded")
                    return
                if result.success:
                    paper.full_text = result.text
                    paper.full_text_source = result.source
                    paper.pdf_url = result.pdf_url or paper.pdf_url
                    paper.pdf_path = result.pdf_path or paper.pdf_path
                elif result.pdf_url and not paper.pdf_url:
                    paper.pdf_url = result.pdf_url
                paper.full_text_fetched_at = utcnow()

    def _pending_filter(self, stmt, journal_id: Optional[str], retry: bool):
        stmt = stmt.where(Paper.full_text.is_(None))
        if not retry:
            stmt = stmt.where(Paper.full_text_fetched_at.is_(None))
        if journal_id:
            stmt = stmt.where(Paper.journal_id == journal_id)
        return stmt

    async def pending_full_text(
        self,
        limit: int = 100,
        journal_id: Optional[str] = None,
        retry: bool = False,
    ) -> List[Paper]:
        """Papers without full text, newest first.

        Args:
            limit: Maximum number of papers.
            journal_id: Restrict to one journal.
            retry: Include papers whose earlier attempt failed.
        """
        stmt = self._pending_filter(select(Paper), journal_id, retry)
        stmt = stmt.order_by(Paper.published_date.desc(), Paper.id.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_pending_full_text(
        self,
        journal_id: Optional[str] = None,
        retry: bool = False,
    ) -> int:
        stmt = self._pending_filter(select(func.count(Paper.id)), journal_id, retry)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()
