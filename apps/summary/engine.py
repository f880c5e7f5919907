# =============================================================================
# 模块: apps/summary/engine.py
# 功能: 结构化论文摘要生成引擎
# 架构角色: 位于 SummaryService（持久化）与 LLM Provider（HTTP 调用）之间，负责：
#   1. 选择 Provider：显式参数 > 用户偏好 > 默认配置
#   2. 获取 API 密钥（SecretProvider），缺失时抛 ProviderNotConfiguredError
#   3. 构建 Prompt：单篇论文优先全文（截断），否则用摘要；聚合 Prompt 列出论文清单
#   4. 解析五字段 JSON（summary_text/purpose/methodology/findings/implications），
#      解析失败时整段原文作为 summary_text，不抛异常
#   5. 统计 token 用量与生成耗时
#   6. 针对已存摘要的追问：摘要五字段 + 历史对话拼入 Prompt，回答为自由文本
# =============================================================================

"""Structured summary generation over pluggable LLM providers."""

from __future__ import annotations

import json
import logging
import re
import time
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from sqlalchemy import inspect as sa_inspect

from apps.summary.credentials import PreferenceProvider, SecretProvider, SettingsSecretProvider
from apps.summary.errors import ProviderNotConfiguredError
from apps.summary.providers import BaseSummaryProvider, ProviderRegistry, ProviderResponse

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = ("summary_text", "purpose", "methodology", "findings", "implications")

AGGREGATE_SYSTEM_PROMPT = (
    "You are an academic research trend analysis assistant. Always respond in valid JSON format."
)

_FENCE_START = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")

# 单篇论文摘要 Prompt
PAPER_PROMPT = """Create a structured summary of the following academic paper. Write in {language}.

[Paper]
Title: {title}
Authors: {authors}
Journal: {journal}

[{content_label}]
{content}

Respond with JSON in exactly this form:
{{
  "summary_text": "Summary of the whole paper (3-4 sentences)",
  "purpose": "Research purpose (1-2 sentences)",
  "methodology": "Research method (1-2 sentences)",
  "findings": "Main findings and results (2-3 sentences)",
  "implications": "Implications for practice (1 sentence)"
}}

Important: respond with JSON only and include no other text."""

# 聚合摘要 Prompt（标签摘要 / 趋势报告共用）
AGGREGATE_PROMPT = """Analyse the following {scope} and summarise them from the perspective below. Write in {language}.

## Perspective
{perspective}

## Statistics
- Total papers: {total}
- By journal: {journal_stats}

## Papers
{paper_list}

Respond with JSON in exactly this form:
{{
  "summary_text": "Overview of the papers as a whole (4-6 sentences)",
  "purpose": "Common research goals and questions",
  "methodology": "Prevailing methods and study designs",
  "findings": "Key topics, findings and emerging trends",
  "implications": "Recommendations and directions for researchers"
}}

Important: respond with JSON only and include no other text."""

AGGREGATE_SCOPES = {
    "tag": "papers grouped under the tag \"{title}\"",
    "trend": "papers collected {title}",
}

CHAT_SYSTEM_PROMPT = (
    "You are a research assistant answering follow-up questions about an academic paper. "
    "Base your answers on the paper and its summary; say so when they do not contain the answer."
)

# 追问 Prompt：论文信息 + 已有摘要 + 历史对话 + 新问题，回答为自由文本
FOLLOW_UP_PROMPT = """Answer the question about the paper below. Write in {language}.

[Paper]
Title: {title}
Journal: {journal}

[Summary]
{summary}

[Conversation so far]
{history}

[Question]
{question}"""

FIELD_HEADINGS = {
    "summary_text": "Overview",
    "purpose": "Purpose",
    "methodology": "Methodology",
    "findings": "Findings",
    "implications": "Implications",
}


@dataclass
class StructuredSummary:
    provider: str
    model: str
    summary_text: Optional[str] = None
    purpose: Optional[str] = None
    methodology: Optional[str] = None
    findings: Optional[str] = None
    implications: Optional[str] = None
    tokens_used: int = 0
    generation_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChatReply:
    provider: str
    model: str
    content: str
    tokens_used: int = 0
    generation_time_ms: int = 0


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(_as_text(v) or "" for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_structured_response(content: str) -> Dict[str, Optional[str]]:
    """Parse an LLM reply into the five summary fields.

    A leading ```` ```json ```` (or bare ```` ``` ````) fence and a trailing
    fence are removed before strict JSON decoding. Anything that is not a
    JSON object yields the raw reply as ``summary_text`` with the remaining
    fields ``None``. Never raises.
    """
    raw = content or ""
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", raw)).strip()

    try:
        parsed = json.loads(cleaned)
    except ValueError as e:
        logger.warning(f"Failed to parse AI response as JSON: {e}")
        parsed = None

    if not isinstance(parsed, dict):
        fields: Dict[str, Optional[str]] = dict.fromkeys(SUMMARY_FIELDS)
        fields["summary_text"] = raw
        return fields

    fields = {name: _as_text(parsed.get(name)) for name in SUMMARY_FIELDS}
    if not fields["summary_text"]:
        fields["summary_text"] = raw
    return fields


def _loaded_journal_name(paper: Any) -> Optional[str]:
    """Journal name when the relationship is already loaded, without lazy IO."""
    state = sa_inspect(paper, raiseerr=False)
    if state is not None and "journal" in state.unloaded:
        return None
    journal = getattr(paper, "journal", None)
    return getattr(journal, "name", None)


def build_paper_prompt(
    paper: Any,
    journal_name: Optional[str] = None,
    max_content_length: int = 30000,
    language: str = "English",
) -> str:
    authors = paper.authors or []
    if isinstance(authors, (list, tuple)):
        authors = ", ".join(a for a in authors if a)

    full_text = getattr(paper, "full_text", None)
    if full_text:
        content_label = "Full text"
        content = full_text[:max_content_length]
    else:
        content_label = "Abstract"
        content = paper.abstract or "(no abstract available)"

    return PAPER_PROMPT.format(
        language=language,
        title=paper.title,
        authors=authors or "Unknown",
        journal=journal_name or _loaded_journal_name(paper) or "Unknown",
        content_label=content_label,
        content=content,
    )


def build_aggregate_prompt(
    papers: Sequence[Any],
    perspective: str,
    kind: str = "tag",
    title: str = "",
    journal_names: Optional[Dict[str, str]] = None,
    max_papers: int = 50,
    language: str = "English",
) -> str:
    journal_names = journal_names or {}

    def name_of(paper: Any) -> str:
        return (
            journal_names.get(paper.journal_id)
            or _loaded_journal_name(paper)
            or paper.journal_id
        )

    counts = Counter(name_of(p) for p in papers)
    journal_stats = ", ".join(f"{name}: {count}" for name, count in counts.most_common()) or "none"

    lines: List[str] = []
    for index, paper in enumerate(papers[:max_papers], start=1):
        lines.append(f"{index}. [{name_of(paper)}] {paper.title} ({paper.published_date or 'n.d.'})")
        if paper.abstract:
            lines.append(f"   Abstract: {paper.abstract[:500]}")

    scope = AGGREGATE_SCOPES.get(kind, "{title}").format(title=title)
    return AGGREGATE_PROMPT.format(
        scope=scope,
        language=language,
        perspective=perspective or "General overview of the research",
        total=len(papers),
        journal_stats=journal_stats,
        paper_list="\n".join(lines),
    )


def build_follow_up_prompt(
    summary: Any,
    question: str,
    history: Sequence[Any] = (),
    paper: Any = None,
    journal_name: Optional[str] = None,
    language: str = "English",
) -> str:
    """Prompt for a follow-up question on a stored paper summary.

    ``history`` holds earlier turns, each with ``role`` and ``content``.
    """
    sections = []
    for name in SUMMARY_FIELDS:
        value = getattr(summary, name, None)
        if value:
            sections.append(f"{FIELD_HEADINGS[name]}: {value}")

    turns = [
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
        for turn in history
    ]

    return FOLLOW_UP_PROMPT.format(
        language=language,
        title=getattr(paper, "title", None) or "Unknown",
        journal=journal_name or (_loaded_journal_name(paper) if paper is not None else None) or "Unknown",
        summary="\n".join(sections) or "(no summary text)",
        history="\n".join(turns) or "(none)",
        question=question,
    )


class SummaryEngine:
    """Generates ``StructuredSummary`` objects with a registered provider.

    Args:
        secret_provider: Supplies API keys; defaults to environment settings.
        preference_provider: Optional per-user default provider lookup.
        client: Optional shared ``httpx.AsyncClient`` for provider calls.
    """

    def __init__(
        self,
        secret_provider: Optional[SecretProvider] = None,
        preference_provider: Optional[PreferenceProvider] = None,
        client: Optional[httpx.AsyncClient] = None,
        default_provider: Optional[str] = None,
        timeout: Optional[float] = None,
        aggregate_timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        aggregate_max_tokens: Optional[int] = None,
        max_content_length: Optional[int] = None,
        aggregate_max_papers: Optional[int] = None,
        language: Optional[str] = None,
    ):
        from settings import settings

        self.secret_provider = secret_provider or SettingsSecretProvider()
        self.preference_provider = preference_provider
        self._client = client
        self.default_provider = default_provider or settings.ai_default_provider
        self.timeout = timeout or settings.ai_timeout
        self.aggregate_timeout = aggregate_timeout or settings.ai_aggregate_timeout
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.aggregate_max_tokens = aggregate_max_tokens or settings.ai_aggregate_max_tokens
        self.max_content_length = max_content_length or settings.ai_max_content_length
        self.aggregate_max_papers = aggregate_max_papers or settings.ai_aggregate_max_papers
        self.language = language or settings.ai_summary_language
        self._providers: Dict[str, BaseSummaryProvider] = {}

    def resolve_provider_id(self, provider: Optional[str], user_id: Optional[int]) -> str:
        if provider:
            return provider.strip().lower()
        if self.preference_provider is not None:
            preferred = self.preference_provider.get_provider(user_id)
            if preferred:
                return preferred.strip().lower()
        return self.default_provider

    def get_provider(self, provider_id: str) -> BaseSummaryProvider:
        """Provider instance for ``provider_id`` (raises ``UnknownProviderError``)."""
        if provider_id not in self._providers:
            self._providers[provider_id] = ProviderRegistry.create(provider_id)
        return self._providers[provider_id]

    async def summarize(
        self,
        paper: Any,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
        journal_name: Optional[str] = None,
    ) -> StructuredSummary:
        """Summarise one paper.

        Raises:
            UnknownProviderError: The provider id is not registered.
            ProviderNotConfiguredError: No API key for the provider.
            ProviderAPIError: The provider call failed.
        """
        prompt = build_paper_prompt(
            paper,
            journal_name=journal_name,
            max_content_length=self.max_content_length,
            language=self.language,
        )
        return await self._generate(
            prompt,
            provider_id=self.resolve_provider_id(provider, user_id),
            model=model,
            user_id=user_id,
            system=None,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )

    async def summarize_aggregate(
        self,
        papers: Sequence[Any],
        perspective: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
        kind: str = "tag",
        title: str = "",
        journal_names: Optional[Dict[str, str]] = None,
    ) -> StructuredSummary:
        """Summarise a set of papers (a tag's papers or a trend window)."""
        prompt = build_aggregate_prompt(
            papers,
            perspective,
            kind=kind,
            title=title,
            journal_names=journal_names,
            max_papers=self.aggregate_max_papers,
            language=self.language,
        )
        return await self._generate(
            prompt,
            provider_id=self.resolve_provider_id(provider, user_id),
            model=model,
            user_id=user_id,
            system=AGGREGATE_SYSTEM_PROMPT,
            max_tokens=self.aggregate_max_tokens,
            timeout=self.aggregate_timeout,
        )

    async def follow_up(
        self,
        summary: Any,
        question: str,
        history: Sequence[Any] = (),
        paper: Any = None,
        journal_name: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> ChatReply:
        """Answer a follow-up question about a stored paper summary.

        The reply is free text and is not parsed into summary fields.
        Raises the same errors as ``summarize``.
        """
        prompt = build_follow_up_prompt(
            summary,
            question,
            history=history,
            paper=paper,
            journal_name=journal_name,
            language=self.language,
        )
        provider_id = self.resolve_provider_id(provider, user_id)
        response, model, elapsed = await self._call(
            prompt,
            provider_id=provider_id,
            model=model,
            user_id=user_id,
            system=CHAT_SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )
        return ChatReply(
            provider=provider_id,
            model=model,
            content=(response.text or "").strip(),
            tokens_used=response.tokens_used,
            generation_time_ms=elapsed,
        )

    async def _generate(
        self,
        prompt: str,
        provider_id: str,
        model: Optional[str],
        user_id: Optional[int],
        system: Optional[str],
        max_tokens: int,
        timeout: float,
    ) -> StructuredSummary:
        response, model, elapsed = await self._call(
            prompt,
            provider_id=provider_id,
            model=model,
            user_id=user_id,
            system=system,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        return StructuredSummary(
            provider=provider_id,
            model=model,
            tokens_used=response.tokens_used,
            generation_time_ms=elapsed,
            **parse_structured_response(response.text),
        )

    async def _call(
        self,
        prompt: str,
        provider_id: str,
        model: Optional[str],
        user_id: Optional[int],
        system: Optional[str],
        max_tokens: int,
        timeout: float,
    ) -> Tuple[ProviderResponse, str, int]:
        llm = self.get_provider(provider_id)
        api_key = self.secret_provider.get_key(user_id, provider_id)
        if not api_key:
            raise ProviderNotConfiguredError(provider_id)

        model = model or llm.default_model
        start = time.monotonic()
        try:
            response = await llm.complete(
                prompt,
                api_key=api_key,
                model=model,
                max_tokens=max_tokens,
                system=system,
                timeout=timeout,
                client=self._client,
            )
        except Exception:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning(f"Generation with {provider_id}/{model} failed after {elapsed}ms")
            raise

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Generated with {provider_id}/{model}: "
            f"{response.tokens_used} tokens in {elapsed}ms"
        )
        return response, model, elapsed

    def available_providers(self, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Registered providers that have a usable API key for ``user_id``."""
        available = []
        for provider_id in ProviderRegistry.list_ids():
            if not self.secret_provider.get_key(user_id, provider_id):
                continue
            available.append(self.get_provider(provider_id).describe())
        return available
