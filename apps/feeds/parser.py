# =============================================================================
# 模块: apps/feeds/parser.py
# 功能: RSS/Atom 文档解析为规范化的候选论文（CandidatePaper）
# 架构角色: 抓取流水线的第一步。FetchOrchestrator 调用 fetch() 下载 Feed，
#           再调用 parse() 获得候选论文序列，逐条交给 PaperStore 去重落库。
# 设计决策:
#   1. parse() 先同步完成整体解析与合法性校验（不可解析时立即抛 FeedFetchError），
#      再返回惰性生成器；每次调用都是独立的一次遍历，不保留跨调用状态
#   2. 出版社 Feed 格式差异大：标题、作者、正文、日期都采用多级降级读取
#   3. 没有标题的条目直接丢弃（正常过滤，不算错误）
#   4. 不在内部重试；传输层重试次数由调用方配置（默认 0）
# =============================================================================

"""RSS/Atom feed parsing for PaperPulse."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

import feedparser
import httpx
from bs4 import BeautifulSoup

from common.http import ACCEPT_FEED, build_async_client, get_bytes

logger = logging.getLogger(__name__)

# Crossref 风格 DOI：10.<4 位以上注册号>/<非空白后缀>
DOI_PATTERN = re.compile(r"10\.\d{4,}/\S+")

_WHITESPACE = re.compile(r"\s+")

# 出版社在 description 中放置的期刊介绍 / 订阅提示，不是论文摘要
BOILERPLATE_PATTERNS = [
    re.compile(r"^The International Journal of", re.IGNORECASE),
    re.compile(r"^This journal publishes", re.IGNORECASE),
    re.compile(r"^Subscribe to", re.IGNORECASE),
    re.compile(r"^Access the full", re.IGNORECASE),
    re.compile(r"^Click here", re.IGNORECASE),
    re.compile(r"^Read the full", re.IGNORECASE),
    re.compile(r"publishes original research", re.IGNORECASE),
]


class FeedFetchError(Exception):
    """A feed could not be downloaded or parsed at all."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


@dataclass
class CandidatePaper:
    """A parsed, not yet persisted feed item."""

    title: str
    authors: List[str] = field(default_factory=list)
    abstract: Optional[str] = None
    link: Optional[str] = None
    doi: Optional[str] = None
    published_date: Optional[str] = None
    external_id: Optional[str] = None


def clean_text(raw: str) -> str:
    """Strip markup and collapse whitespace runs into single spaces."""
    if not raw:
        return ""
    if "<" in raw or "&" in raw:
        raw = BeautifulSoup(raw, "html.parser").get_text(" ")
    return _WHITESPACE.sub(" ", raw).strip()


def is_boilerplate(text: str) -> bool:
    return any(pattern.search(text) for pattern in BOILERPLATE_PATTERNS)


def extract_doi(*candidates: Optional[str]) -> Optional[str]:
    """Return the first DOI found scanning ``candidates`` in order."""
    for value in candidates:
        if not value:
            continue
        match = DOI_PATTERN.search(value)
        if match:
            return match.group(0)
    return None


def _format_date(parsed: Optional[time.struct_time]) -> Optional[str]:
    if not parsed:
        return None
    try:
        return time.strftime("%Y-%m-%d", parsed)
    except (TypeError, ValueError):
        return None


class FeedParser:
    """Downloads and parses journal feeds into ``CandidatePaper`` records.

    Args:
        client: Optional shared ``httpx.AsyncClient``; one is created per
            ``fetch`` call when omitted.
        timeout: Download timeout in seconds.
        retries: Transport retries for the download (0 disables).
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        retries: int = 0,
    ):
        self._client = client
        self.timeout = timeout
        self.retries = retries

    async def fetch(self, url: str) -> bytes:
        """Download a feed document.

        Raises:
            FeedFetchError: On any transport error or non-2xx response.
        """
        try:
            if self._client is not None:
                return await get_bytes(
                    self._client, url, accept=ACCEPT_FEED,
                    timeout=self.timeout, retries=self.retries,
                )
            async with build_async_client(self.timeout) as client:
                return await get_bytes(
                    client, url, accept=ACCEPT_FEED,
                    timeout=self.timeout, retries=self.retries,
                )
        except httpx.HTTPError as exc:
            raise FeedFetchError(f"Failed to fetch feed {url}: {exc}", cause=exc) from exc

    def parse(self, raw: bytes | str, journal: Any = None) -> Iterator[CandidatePaper]:
        """Parse a raw feed document.

        Args:
            raw: RSS/Atom document.
            journal: Journal the feed belongs to (used for log context only).

        Returns:
            Iterator[CandidatePaper]: Lazy sequence of candidates; items
            without a title are skipped.

        Raises:
            FeedFetchError: The document is not a parseable feed.
        """
        feed = feedparser.parse(raw)
        label = getattr(journal, "name", None) or getattr(journal, "id", None) or "feed"

        if not feed.get("version") and not feed.entries:
            cause = feed.get("bozo_exception")
            reason = str(cause) if cause else "document is not an RSS/Atom feed"
            raise FeedFetchError(f"Unable to parse {label}: {reason}", cause=cause)

        if feed.get("bozo"):
            # 宽松模式下仍能解析出条目，仅记录警告
            logger.debug("Feed %s parsed with warnings: %s", label, feed.get("bozo_exception"))

        return self._iter_candidates(feed.entries)

    def _iter_candidates(self, entries: list) -> Iterator[CandidatePaper]:
        for entry in entries:
            candidate = self.parse_entry(entry)
            if candidate is not None:
                yield candidate

    def parse_entry(self, entry: feedparser.FeedParserDict) -> Optional[CandidatePaper]:
        """Convert a single feed entry, or ``None`` when it has no title."""
        title = clean_text(entry.get("title", ""))
        if not title:
            return None

        link = self._extract_link(entry)
        doi = extract_doi(link, entry.get("prism_doi"), entry.get("dc_identifier"))
        guid = entry.get("id") or None

        return CandidatePaper(
            title=title,
            authors=self._extract_authors(entry),
            abstract=self._extract_abstract(entry),
            link=link,
            doi=doi,
            published_date=self._extract_date(entry),
            external_id=doi or guid or link,
        )

    @staticmethod
    def _extract_link(entry: feedparser.FeedParserDict) -> Optional[str]:
        if entry.get("link"):
            return entry.link
        links = entry.get("links") or []
        for link in links:
            if link.get("type", "").startswith("text/html") and link.get("href"):
                return link["href"]
        if links and links[0].get("href"):
            return links[0]["href"]
        return None

    @staticmethod
    def _extract_authors(entry: feedparser.FeedParserDict) -> List[str]:
        names: List[str] = []
        for author in entry.get("authors") or []:
            names.append(clean_text(author.get("name", "")))
        if not names and entry.get("author"):
            names.append(clean_text(entry.author))
        for contributor in entry.get("contributors") or []:
            names.append(clean_text(contributor.get("name", "")))

        # 保持 Feed 中的原始顺序，只去掉空名；同名合著者各自保留
        return [name for name in names if name]

    @staticmethod
    def _extract_abstract(entry: feedparser.FeedParserDict) -> Optional[str]:
        raw = ""
        contents = entry.get("content") or []
        for content in contents:
            if content.get("value"):
                raw = content["value"]
                break
        if not raw:
            raw = entry.get("summary", "") or entry.get("description", "")

        text = clean_text(raw)
        if not text or is_boilerplate(text):
            return None
        return text

    @staticmethod
    def _extract_date(entry: feedparser.FeedParserDict) -> Optional[str]:
        for key in ("published_parsed", "updated_parsed", "created_parsed"):
            formatted = _format_date(entry.get(key))
            if formatted:
                return formatted
        return None

    async def preview(self, url: str, sample: int = 3) -> dict:
        """Fetch a feed and describe it without storing anything."""
        raw = await self.fetch(url)
        feed = feedparser.parse(raw)
        if not feed.get("version") and not feed.entries:
            raise FeedFetchError(f"Unable to parse {url}: document is not an RSS/Atom feed")
        items = []
        for candidate in self._iter_candidates(feed.entries):
            items.append({
                "title": candidate.title,
                "date": candidate.published_date,
                "author": candidate.authors[0] if candidate.authors else None,
            })
            if len(items) >= sample:
                break
        return {
            "title": clean_text(feed.feed.get("title", "")),
            "item_count": len(feed.entries),
            "sample_items": items,
        }
