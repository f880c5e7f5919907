"""Full-text backfill over stored papers.

``process_paper`` resolves one paper and records the attempt; ``backfill``
walks papers still lacking full text, newest first, pausing between papers
so publisher sites are not hammered.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from apps.fulltext.resolver import FullTextResolver, FullTextResult
from apps.papers.store import PaperStore

logger = logging.getLogger(__name__)


class FullTextService:
    """Couples a ``FullTextResolver`` with ``PaperStore`` bookkeeping."""

    def __init__(
        self,
        store: PaperStore,
        resolver: Optional[FullTextResolver] = None,
        request_interval: Optional[float] = None,
    ):
        if request_interval is None:
            from settings import settings

            request_interval = settings.fulltext_request_interval
        self.store = store
        self.resolver = resolver or FullTextResolver()
        self.request_interval = request_interval

    async def process_paper(self, paper_id: int) -> FullTextResult:
        paper = await self.store.get(paper_id)
        if paper is None:
            return FullTextResult.failure(f"Paper {paper_id} not found")

        try:
            result = await self.resolver.resolve(paper)
        except Exception as e:
            # 任何情况下都要记录本次尝试
            logger.exception(f"Full-text resolution crashed for paper {paper_id}")
            result = FullTextResult.failure(f"Full-text resolution crashed: {str(e) or e.__class__.__name__}")
        await self.store.mark_full_text(paper_id, result)
        if result.success:
            logger.info(
                f"Full text for paper {paper_id}: {len(result.text or '')} chars via {result.source}"
            )
        else:
            logger.info(f"No full text for paper {paper_id}: {result.error}")
        return result

    async def backfill(
        self,
        limit: int = 100,
        journal_id: Optional[str] = None,
        retry: bool = False,
    ) -> Dict[str, int]:
        """Process up to ``limit`` papers without full text.

        Args:
            limit: Maximum papers to process in this run.
            journal_id: Restrict to one journal.
            retry: Also revisit papers whose earlier attempt failed.

        Returns:
            dict: ``processed``, ``success``, ``failed`` and ``remaining``.
        """
        papers = await self.store.pending_full_text(limit=limit, journal_id=journal_id, retry=retry)
        stats = {"processed": 0, "success": 0, "failed": 0, "remaining": 0}

        for index, paper in enumerate(papers):
            if index and self.request_interval > 0:
                await asyncio.sleep(self.request_interval)
            try:
                result = await self.process_paper(paper.id)
            except Exception:
                logger.exception(f"Full-text processing crashed for paper {paper.id}")
                stats["failed"] += 1
            else:
                stats["success" if result.success else "failed"] += 1
            stats["processed"] += 1

        stats["remaining"] = await self.store.count_pending_full_text(journal_id=journal_id)
        logger.info(
            f"Full-text backfill: processed={stats['processed']} success={stats['success']} "
            f"failed={stats['failed']} remaining={stats['remaining']}"
        )
        return stats
