#!/usr/bin/env python3
"""生成 LLM 结构化摘要的命令行工具。

用法示例：
    # 为单篇论文生成摘要（默认 Provider）
    python scripts/summarize.py paper 42

    # 指定 Provider 与模型
    python scripts/summarize.py paper 42 --provider claude --model claude-sonnet-4-20250514

    # 标签摘要（指定观点）
    python scripts/summarize.py tag 7 --perspective "Focus on assessment methods"

    # 趋势报告
    python scripts/summarize.py trend week
    python scripts/summarize.py trend custom --from 2025-01-01 --to 2025-03-31

    # 针对已有摘要追问（历史对话会一并发送）
    python scripts/summarize.py ask 12 "How large was the sample?"

    # 列出已配置密钥的 Provider
    python scripts/summarize.py providers
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# 将项目根目录添加到 Python 路径，以便导入项目模块
sys.path.insert(0, str(Path(__file__).parent.parent))

from apps.summary import SummaryEngine, SummaryError, SummaryService
from apps.summary.service import PERIODS
from common.logger import setup_logging
from core.database import close_db, init_db

logger = logging.getLogger(__name__)

FIELD_LABELS = (
    ("summary_text", "Summary"),
    ("purpose", "Purpose"),
    ("methodology", "Methodology"),
    ("findings", "Findings"),
    ("implications", "Implications"),
)


def _print_summary(record) -> None:
    for field, label in FIELD_LABELS:
        value = getattr(record, field)
        if value:
            print(f"[{label}]\n{value}\n")
    print(
        f"-- {record.provider}/{record.model}, {record.tokens_used} tokens, "
        f"{record.generation_time_ms}ms"
    )


def _print_answer(question, answer) -> None:
    print(f"Q: {question.content}\n")
    print(f"A: {answer.content}\n")
    print(f"-- {answer.provider}/{answer.model}, {answer.tokens_used} tokens")


def _add_provider_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--provider", default=None, help="Provider id（openai / claude）")
    sub.add_argument("--model", default=None, help="模型名称")
    sub.add_argument("--user-id", type=int, default=None, help="归属用户 id")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PaperPulse 摘要生成工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="显示详细输出")
    subparsers = parser.add_subparsers(dest="command", required=True)

    paper_parser = subparsers.add_parser("paper", help="单篇论文摘要")
    paper_parser.add_argument("paper_id", type=int)
    _add_provider_args(paper_parser)

    tag_parser = subparsers.add_parser("tag", help="标签摘要")
    tag_parser.add_argument("tag_id", type=int)
    tag_parser.add_argument("--perspective", default="", help="分析观点（最多 1000 字符）")
    _add_provider_args(tag_parser)

    trend_parser = subparsers.add_parser("trend", help="趋势报告")
    trend_parser.add_argument("period", choices=PERIODS)
    trend_parser.add_argument("--from", dest="date_from", default=None, help="YYYY-MM-DD")
    trend_parser.add_argument("--to", dest="date_to", default=None, help="YYYY-MM-DD")
    trend_parser.add_argument("--tag", dest="tag_ids", type=int, action="append", help="标签 id（可多次指定）")
    trend_parser.add_argument("--journal", dest="journal_ids", action="append", help="论文誌 id（可多次指定）")
    _add_provider_args(trend_parser)

    ask_parser = subparsers.add_parser("ask", help="针对论文摘要追问")
    ask_parser.add_argument("summary_id", type=int)
    ask_parser.add_argument("question", help="问题（最多 2000 字符）")
    _add_provider_args(ask_parser)

    providers_parser = subparsers.add_parser("providers", help="列出可用 Provider")
    providers_parser.add_argument("--user-id", type=int, default=None)
    return parser


def main():
    """CLI 主入口函数。"""
    args = build_parser().parse_args()
    setup_logging(verbose=args.verbose)

    engine = SummaryEngine()

    if args.command == "providers":
        providers = engine.available_providers(args.user_id)
        if not providers:
            print("No provider has an API key configured")
        for info in providers:
            print(f"  {info['id']:<10} default={info['default_model']}  models={', '.join(info['models'])}")
        sys.exit(0)

    async def run():
        try:
            await init_db()
            service = SummaryService(engine)
            options = {"provider": args.provider, "model": args.model, "user_id": args.user_id}
            if args.command == "paper":
                return await service.summarize_paper(args.paper_id, **options)
            if args.command == "ask":
                return await service.ask(args.summary_id, args.question, **options)
            if args.command == "tag":
                return await service.summarize_tag(args.tag_id, args.perspective, **options)
            return await service.summarize_trend(
                args.period,
                date_from=args.date_from,
                date_to=args.date_to,
                tag_ids=args.tag_ids,
                journal_ids=args.journal_ids,
                **options,
            )
        finally:
            await close_db()

    try:
        record = asyncio.run(run())
    except (SummaryError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Summary generation failed: {e}", exc_info=args.verbose)
        sys.exit(1)

    if args.command == "ask":
        _print_answer(*record)
    else:
        _print_summary(record)
    sys.exit(0)


if __name__ == "__main__":
    main()
