#!/usr/bin/env python3
"""为尚未获取全文的论文补抓开放获取全文。

按发表日期从新到旧处理，每篇之间间隔 FULLTEXT_REQUEST_INTERVAL 秒。
成功与失败都会写入 full_text_fetched_at，失败的论文默认不再重试，
需要重试时使用 --retry。

用法示例：
    python scripts/fetch_fulltext.py
    python scripts/fetch_fulltext.py --limit 20 --journal ijaied
    python scripts/fetch_fulltext.py --retry
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 将项目根目录添加到 Python 路径，以便导入项目模块
sys.path.insert(0, str(Path(__file__).parent.parent))

from apps.fulltext.service import FullTextService
from apps.papers.store import PaperStore
from common.logger import setup_logging
from core.database import close_db, get_session_factory, init_db
from settings import settings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PaperPulse 全文补抓工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--limit", type=int, default=100, help="最多处理的论文数（默认 100）")
    parser.add_argument("--journal", default=None, help="只处理指定论文誌 id")
    parser.add_argument("--retry", action="store_true", help="包含之前失败过的论文")
    parser.add_argument("--verbose", "-v", action="store_true", help="显示详细输出")
    return parser


def main():
    """CLI 主入口函数。"""
    args = build_parser().parse_args()
    setup_logging(verbose=args.verbose)

    if not settings.unpaywall_email:
        logger.warning("UNPAYWALL_EMAIL is not set; only direct page scraping will be attempted")

    async def run() -> dict:
        try:
            await init_db()
            service = FullTextService(PaperStore(get_session_factory()))
            return await service.backfill(limit=args.limit, journal_id=args.journal, retry=args.retry)
        finally:
            await close_db()

    try:
        stats = asyncio.run(run())
    except Exception as e:
        logger.error(f"Full-text backfill failed: {e}", exc_info=args.verbose)
        sys.exit(1)

    print(
        f"Processed {stats['processed']} paper(s): {stats['success']} succeeded, "
        f"{stats['failed']} failed"
    )
    print(f"Remaining papers without full text: {stats['remaining']}")
    sys.exit(0)


if __name__ == "__main__":
    main()
