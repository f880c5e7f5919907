# =============================================================================
# 模块: apps/summary/__init__.py
# 功能: 摘要生成模块包入口，导出核心组件
# =============================================================================

"""LLM-backed structured summaries for PaperPulse.

Usage:
    from apps.summary import SummaryEngine, SummaryService

    service = SummaryService(SummaryEngine())
    summary = await service.summarize_paper(paper_id, provider="claude")

Adding a provider:
    @ProviderRegistry.register("my_llm")
    class MyProvider(BaseSummaryProvider):
        ...
"""

from apps.summary.engine import ChatReply, StructuredSummary, SummaryEngine, parse_structured_response
from apps.summary.errors import (
    ProviderAPIError,
    ProviderNotConfiguredError,
    RecordNotFoundError,
    SummaryError,
    UnknownProviderError,
)
from apps.summary.providers import BaseSummaryProvider, ProviderRegistry
from apps.summary.service import SummaryService, period_range

__all__ = [
    "BaseSummaryProvider",
    "ChatReply",
    "ProviderAPIError",
    "ProviderNotConfiguredError",
    "ProviderRegistry",
    "RecordNotFoundError",
    "StructuredSummary",
    "SummaryEngine",
    "SummaryError",
    "SummaryService",
    "UnknownProviderError",
    "parse_structured_response",
    "period_range",
]
