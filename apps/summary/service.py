"""Persisted summaries: single papers, tags and trend windows.

Every call inserts a new row; earlier summaries of the same paper, tag or
window are kept as history. Paper summaries also carry a follow-up
conversation (``SummaryMessage``) driven by ``ask``.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from apps.journals.models import Journal
from apps.papers.models import Paper, PaperTag, Tag
from apps.summary.engine import StructuredSummary, SummaryEngine
from apps.summary.errors import RecordNotFoundError
from apps.summary.models import Summary, SummaryMessage, TagSummary, TrendSummary
from core.database import get_session_factory, session_scope

logger = logging.getLogger(__name__)

TAG_SUMMARY_MAX_PAPERS = 30
PERSPECTIVE_MAX_LENGTH = 1000
CHAT_MESSAGE_MAX_LENGTH = 2000
# 拼入 Prompt 的历史消息条数上限
CHAT_HISTORY_LIMIT = 20

PERIODS = ("day", "week", "month", "halfyear", "custom")

PERIOD_LABELS = {
    "day": "today",
    "week": "over the past week",
    "month": "over the past month",
    "halfyear": "over the past six months",
}


def _sub_months(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def period_range(
    period: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[str, str]:
    """Resolve a trend period to an inclusive ``(YYYY-MM-DD, YYYY-MM-DD)`` window.

    Args:
        period: ``day``, ``week``, ``month``, ``halfyear`` or ``custom``.
        date_from: Start date, required for ``custom``.
        date_to: End date, required for ``custom``.
        today: Reference date; defaults to the current local date.

    Raises:
        ValueError: Unknown period, or ``custom`` without valid dates.
    """
    if period == "custom":
        if not date_from or not date_to:
            raise ValueError("custom period requires date_from and date_to")
        start = date.fromisoformat(date_from)
        end = date.fromisoformat(date_to)
        if start > end:
            raise ValueError("date_from must not be after date_to")
        return start.isoformat(), end.isoformat()

    today = today or date.today()
    if period == "day":
        start = today
    elif period == "week":
        start = today - timedelta(weeks=1)
    elif period == "month":
        start = _sub_months(today, 1)
    elif period == "halfyear":
        start = _sub_months(today, 6)
    else:
        raise ValueError(f"Unknown period: {period}")
    return start.isoformat(), today.isoformat()


class SummaryService:
    """Loads papers, calls ``SummaryEngine`` and stores the result."""

    def __init__(
        self,
        engine: Optional[SummaryEngine] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.engine = engine or SummaryEngine()
        self._session_factory = session_factory or get_session_factory()

    async def summarize_paper(
        self,
        paper_id: int,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Summary:
        async with self._session_factory() as session:
            paper = (
                await session.execute(
                    select(Paper).options(selectinload(Paper.journal)).where(Paper.id == paper_id)
                )
            ).scalar_one_or_none()
        if paper is None:
            raise RecordNotFoundError(f"Paper {paper_id} not found")

        result = await self.engine.summarize(
            paper,
            provider=provider,
            model=model,
            user_id=user_id,
            journal_name=paper.journal.name if paper.journal else None,
        )
        summary = Summary(paper_id=paper.id, user_id=user_id)
        return await self._store(summary, result)

    async def summarize_tag(
        self,
        tag_id: int,
        perspective: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> TagSummary:
        """Summarise the latest papers carrying ``tag_id`` from ``perspective``."""
        perspective = (perspective or "").strip()[:PERSPECTIVE_MAX_LENGTH]

        async with self._session_factory() as session:
            tag = await session.get(Tag, tag_id)
            # 其他用户的标签按不存在处理
            if tag is None or (user_id is not None and tag.user_id != user_id):
                raise RecordNotFoundError(f"Tag {tag_id} not found")
            papers = list((
                await session.execute(
                    select(Paper)
                    .join(PaperTag, PaperTag.paper_id == Paper.id)
                    .where(PaperTag.tag_id == tag_id)
                    .order_by(Paper.published_date.desc(), Paper.id.desc())
                    .limit(TAG_SUMMARY_MAX_PAPERS)
                )
            ).scalars().all())
            journal_names = await self._journal_names(session, papers)

        if not papers:
            raise RecordNotFoundError(f"Tag '{tag.name}' has no papers")

        result = await self.engine.summarize_aggregate(
            papers,
            perspective,
            provider=provider,
            model=model,
            user_id=user_id,
            kind="tag",
            title=tag.name,
            journal_names=journal_names,
        )
        summary = TagSummary(
            tag_id=tag.id,
            user_id=user_id,
            perspective_prompt=perspective,
            paper_count=len(papers),
        )
        return await self._store(summary, result)

    async def summarize_trend(
        self,
        period: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        tag_ids: Optional[List[int]] = None,
        journal_ids: Optional[List[str]] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
        today: Optional[date] = None,
    ) -> TrendSummary:
        """Summarise papers published within a period, optionally filtered.

        With ``user_id`` only papers from that user's journals are included.
        """
        start, end = period_range(period, date_from, date_to, today)

        stmt = (
            select(Paper)
            .where(Paper.published_date >= start, Paper.published_date <= end)
            .order_by(Paper.published_date.desc(), Paper.id.desc())
        )
        if user_id is not None:
            stmt = stmt.join(Journal, Journal.id == Paper.journal_id).where(Journal.user_id == user_id)
        if journal_ids:
            stmt = stmt.where(Paper.journal_id.in_(journal_ids))
        if tag_ids:
            tagged = select(PaperTag.paper_id).where(PaperTag.tag_id.in_(tag_ids))
            stmt = stmt.where(Paper.id.in_(tagged))

        async with self._session_factory() as session:
            papers = list((await session.execute(stmt)).scalars().all())
            journal_names = await self._journal_names(session, papers)

        if not papers:
            raise RecordNotFoundError(f"No papers published between {start} and {end}")

        label = PERIOD_LABELS.get(period, f"between {start} and {end}")
        result = await self.engine.summarize_aggregate(
            papers,
            f"Research trends {label}",
            provider=provider,
            model=model,
            user_id=user_id,
            kind="trend",
            title=label,
            journal_names=journal_names,
        )
        summary = TrendSummary(
            user_id=user_id,
            period=period,
            date_from=start,
            date_to=end,
            tag_ids=list(tag_ids) if tag_ids else None,
            journal_ids=list(journal_ids) if journal_ids else None,
            paper_count=len(papers),
        )
        return await self._store(summary, result)

    async def ask(
        self,
        summary_id: int,
        question: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Tuple[SummaryMessage, SummaryMessage]:
        """Ask a follow-up question about a paper summary.

        The latest ``CHAT_HISTORY_LIMIT`` messages are sent along as context.
        Both the question and the answer are stored only when the provider
        answers; a failed call leaves the conversation unchanged.

        Returns:
            The stored ``(user_message, assistant_message)`` pair.

        Raises:
            ValueError: Empty question or longer than ``CHAT_MESSAGE_MAX_LENGTH``.
            RecordNotFoundError: Unknown summary, or one outside the user's journals.
        """
        question = (question or "").strip()
        if not question:
            raise ValueError("Question must not be empty")
        if len(question) > CHAT_MESSAGE_MAX_LENGTH:
            raise ValueError(f"Question must be at most {CHAT_MESSAGE_MAX_LENGTH} characters")

        async with self._session_factory() as session:
            summary, paper = await self._load_summary(session, summary_id, user_id)
            recent = list((
                await session.execute(
                    select(SummaryMessage)
                    .where(SummaryMessage.summary_id == summary_id)
                    .order_by(SummaryMessage.created_at.desc(), SummaryMessage.id.desc())
                    .limit(CHAT_HISTORY_LIMIT)
                )
            ).scalars().all())
        history = list(reversed(recent))

        reply = await self.engine.follow_up(
            summary,
            question,
            history=history,
            paper=paper,
            journal_name=paper.journal.name if paper.journal else None,
            provider=provider,
            model=model,
            user_id=user_id,
        )

        question_msg = SummaryMessage(
            summary_id=summary_id, user_id=user_id, role="user", content=question,
        )
        answer_msg = SummaryMessage(
            summary_id=summary_id,
            user_id=user_id,
            role="assistant",
            content=reply.content,
            provider=reply.provider,
            model=reply.model,
            tokens_used=reply.tokens_used,
        )
        async with session_scope(self._session_factory) as session:
            session.add(question_msg)
            # 先落 user 消息，保证同一时间戳下 id 顺序即对话顺序
            await session.flush()
            session.add(answer_msg)
        logger.info(f"Stored follow-up on summary {summary_id} ({reply.provider}/{reply.model})")
        return question_msg, answer_msg

    async def chat_history(self, summary_id: int, user_id: Optional[int] = None) -> List[SummaryMessage]:
        """All follow-up messages of a summary, oldest first."""
        async with self._session_factory() as session:
            await self._load_summary(session, summary_id, user_id)
            return list((
                await session.execute(
                    select(SummaryMessage)
                    .where(SummaryMessage.summary_id == summary_id)
                    .order_by(SummaryMessage.created_at, SummaryMessage.id)
                )
            ).scalars().all())

    async def clear_chat(self, summary_id: int, user_id: Optional[int] = None) -> int:
        """Delete a summary's follow-up messages; returns how many were removed."""
        async with session_scope(self._session_factory) as session:
            await self._load_summary(session, summary_id, user_id)
            result = await session.execute(
                delete(SummaryMessage).where(SummaryMessage.summary_id == summary_id)
            )
        return result.rowcount or 0

    @staticmethod
    async def _load_summary(
        session: AsyncSession, summary_id: int, user_id: Optional[int]
    ) -> Tuple[Summary, Paper]:
        row = (
            await session.execute(
                select(Summary, Paper)
                .join(Paper, Paper.id == Summary.paper_id)
                .options(selectinload(Paper.journal))
                .where(Summary.id == summary_id)
            )
        ).one_or_none()
        # 其他用户论文誌下的摘要按不存在处理
        if row is None or (
            user_id is not None and (row.Paper.journal is None or row.Paper.journal.user_id != user_id)
        ):
            raise RecordNotFoundError(f"Summary {summary_id} not found")
        return row.Summary, row.Paper

    @staticmethod
    async def _journal_names(session: AsyncSession, papers: Sequence[Paper]) -> Dict[str, str]:
        ids = {p.journal_id for p in papers}
        if not ids:
            return {}
        rows = await session.execute(select(Journal.id, Journal.name).where(Journal.id.in_(ids)))
        return {row.id: row.name for row in rows}

    async def _store(self, record, result: StructuredSummary):
        record.apply_structured(result)
        async with session_scope(self._session_factory) as session:
            session.add(record)
        logger.info(f"Stored {record.__class__.__name__} ({result.provider}/{result.model})")
        return record
