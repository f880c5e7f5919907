#!/usr/bin/env python3
"""手动抓取论文誌 RSS 的命令行工具。

与定时任务使用同一个 FetchOrchestrator，结果同样写入 FetchLog。

用法示例：
    # 抓取所有启用的论文誌
    python scripts/fetch_rss.py all

    # 只抓取某个用户拥有的论文誌
    python scripts/fetch_rss.py all --user-id 3

    # 抓取指定论文誌
    python scripts/fetch_rss.py journal ijaied

    # 列出论文誌
    python scripts/fetch_rss.py list

    # 检查一个 Feed 地址是否可解析（不写入数据库）
    python scripts/fetch_rss.py test https://example.org/feed.rss
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 将项目根目录添加到 Python 路径，以便导入项目模块
sys.path.insert(0, str(Path(__file__).parent.parent))

from apps.fetcher.orchestrator import FetchOrchestrator, FetchResult
from apps.journals.defaults import seed_default_journals
from apps.scheduler.jobs.fetch_job import get_orchestrator
from common.logger import setup_logging
from core.database import close_db, init_db

logger = logging.getLogger(__name__)


def _print_result(journal_id: str, result: FetchResult) -> None:
    if result.ok:
        line = (
            f"  {journal_id}: {result.status} - {result.papers_fetched} fetched, "
            f"{result.new_papers} new ({result.execution_time_ms}ms)"
        )
        if result.error:
            line += f" [{result.error}]"
        print(line)
    else:
        print(f"  {journal_id}: error - {result.error}")


async def _fetch_all(orchestrator: FetchOrchestrator, user_id: int | None) -> int:
    run = await orchestrator.run_all(user_id=user_id)
    if run.already_running:
        print("Fetch is already running")
        return 1
    print(f"Fetched {len(run)} journal(s):")
    for journal_id, result in run.results.items():
        _print_result(journal_id, result)
    print(f"Total new papers: {run.total_new}")
    return 1 if run.failed else 0


async def _fetch_journal(orchestrator: FetchOrchestrator, journal_id: str) -> int:
    journal = await orchestrator.get_journal(journal_id)
    if journal is None:
        print(f"Journal not found: {journal_id}")
        return 1
    result = await orchestrator.run_one(journal)
    _print_result(journal_id, result)
    return 0 if result.ok else 1


async def _list_journals(orchestrator: FetchOrchestrator) -> int:
    journals = await orchestrator.active_journals()
    if not journals:
        print("No active journals")
        return 0
    for journal in journals:
        last = journal.last_fetched_at.isoformat() if journal.last_fetched_at else "never"
        print(f"  {journal.id:<20} {journal.name:<40} {journal.source_type:<12} last fetched: {last}")
    status = orchestrator.status()
    print(f"Schedule: {status['schedule']} (next run: {status['next_run_time'] or '-'})")
    return 0


async def _test_feed(orchestrator: FetchOrchestrator, url: str) -> int:
    info = await orchestrator.parser.preview(url)
    print(f"Title: {info['title'] or '-'}")
    print(f"Items: {info['item_count']}")
    for item in info["sample_items"]:
        print(f"  - {item['title']} ({item['date'] or 'n.d.'}) {item['author'] or ''}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PaperPulse 论文誌 RSS 手动抓取工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="显示详细输出")
    subparsers = parser.add_subparsers(dest="command", required=True)

    all_parser = subparsers.add_parser("all", help="抓取所有启用的论文誌")
    all_parser.add_argument("--user-id", type=int, default=None, help="只抓取该用户的论文誌")

    journal_parser = subparsers.add_parser("journal", help="抓取指定论文誌")
    journal_parser.add_argument("journal_id", help="论文誌 id")

    subparsers.add_parser("list", help="列出启用的论文誌")

    test_parser = subparsers.add_parser("test", help="检查 Feed 是否可解析")
    test_parser.add_argument("url", help="Feed 地址")
    return parser


def main():
    """CLI 主入口函数。"""
    args = build_parser().parse_args()
    setup_logging(verbose=args.verbose)

    async def run() -> int:
        try:
            await init_db()
            await seed_default_journals()
            orchestrator = get_orchestrator()
            if args.command == "all":
                return await _fetch_all(orchestrator, args.user_id)
            if args.command == "journal":
                return await _fetch_journal(orchestrator, args.journal_id)
            if args.command == "list":
                return await _list_journals(orchestrator)
            return await _test_feed(orchestrator, args.url)
        finally:
            # 关闭数据库连接，避免事件循环关闭后连接清理报错
            await close_db()

    try:
        exit_code = asyncio.run(run())
    except Exception as e:
        logger.error(f"Fetch failed: {e}", exc_info=args.verbose)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
