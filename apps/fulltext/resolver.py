# =============================================================================
# 模块: apps/fulltext/resolver.py
# 功能: 通过开放获取（OA）渠道获取论文全文
# 处理流程:
#   1. 有 DOI：查询 Unpaywall，依次取 best_oa_location.url_for_pdf、
#      oa_locations[].url_for_pdf、best_oa_location.url（落地页）
#   2. 下载文档（流式读取，超过 max_bytes 立即中止）
#   3. PDF：pypdf 逐页抽取（最多 max_pdf_pages 页），成功后按内容哈希落盘
#   4. HTML：去掉 script/style/nav 等噪声后按正文容器启发式提取
#   5. OA 渠道失败或无 OA 位置时，退回论文自身 URL
#   6. 既无 DOI 也无 URL：直接返回失败，不发任何请求
# 设计决策:
#   - 每个阶段只请求一次，不做重试；失败原因写入 FullTextResult.error
#   - 内部用 FullTextError 传递阶段失败，对外永远返回结果对象而不抛异常
# =============================================================================

"""Open-access full-text resolution for stored papers."""

from __future__ import annotations

import asyncio
import html
import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup
from pypdf import PdfReader

from apps.papers.models import FullTextSource
from common.http import (
    ACCEPT_JSON,
    PayloadTooLargeError,
    build_async_client,
    build_headers,
    build_timeout,
    download_limited,
)
from common.storage import store_content

logger = logging.getLogger(__name__)

UNPAYWALL_API_URL = "https://api.unpaywall.org/v2/"
TRUNCATION_MARKER = "\n\n[... truncated ...]"

# 正文容器候选，按优先级排列
_CONTENT_CLASS_PATTERN = re.compile(
    r"article-body|full-text|paper-content|main-content|c-article-body"
)
_NOISE_TAGS = ["script", "style", "noscript", "nav", "header", "footer"]


class FullTextError(Exception):
    """A single resolution stage failed."""


@dataclass
class FullTextResult:
    success: bool
    text: Optional[str] = None
    source: str = FullTextSource.NONE.value
    pdf_url: Optional[str] = None
    pdf_path: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, pdf_url: Optional[str] = None) -> "FullTextResult":
        return cls(success=False, error=error, pdf_url=pdf_url)


@dataclass
class OALocation:
    url: str
    is_pdf: bool


def clean_extracted_text(text: str) -> str:
    """Normalise whitespace in extracted text.

    Newlines are canonicalised, space/tab runs collapse to one space, blank
    line runs collapse to a single blank line, every line is trimmed and
    HTML entities are decoded.
    """
    text = text.replace("\x00", "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    # 行首尾空白去掉后可能重新出现连续空行
    text = re.sub(r"\n{3,}", "\n\n", text)
    return html.unescape(text).strip()


def truncate_text(text: str, max_length: int) -> str:
    """Cap ``text`` at ``max_length`` characters.

    Cuts at the last paragraph break when it falls in the final 20 % of the
    window, otherwise hard-cuts and appends a truncation marker.
    """
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_paragraph = truncated.rfind("\n\n")
    if last_paragraph != -1 and last_paragraph > max_length * 0.8:
        return truncated[:last_paragraph]
    return truncated + TRUNCATION_MARKER


def extract_main_content(document: str | bytes) -> str:
    """Pick the most article-like region of an HTML page and return its text."""
    soup = BeautifulSoup(document, "html.parser")
    for tag in soup.find_all(_NOISE_TAGS):
        tag.decompose()

    candidates = [
        soup.find("article"),
        soup.find("div", class_=_CONTENT_CLASS_PATTERN),
        soup.find("main"),
    ]
    for node in candidates:
        if node is None:
            continue
        text = clean_extracted_text(node.get_text("\n"))
        if len(text) > 500:
            return text

    body = soup.body or soup
    return clean_extracted_text(body.get_text("\n"))


def extract_pdf_text(content: bytes, max_pages: int) -> str:
    """Extract text from the first ``max_pages`` pages of a PDF."""
    reader = PdfReader(io.BytesIO(content))
    parts: List[str] = []
    for page in reader.pages[:max_pages]:
        page_text = page.extract_text() or ""
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


class FullTextResolver:
    """Resolves a paper's full text through open-access sources.

    All limits default to the values in ``settings``.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        email: Optional[str] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        max_text_length: Optional[int] = None,
        max_pdf_pages: Optional[int] = None,
        min_text_length: Optional[int] = None,
        pdf_dir: Optional[Path] = None,
    ):
        from settings import settings

        self._client = client
        self.email = settings.unpaywall_email if email is None else email
        self.timeout = timeout or settings.fulltext_timeout
        self.max_bytes = max_bytes or settings.fulltext_max_bytes
        self.max_text_length = max_text_length or settings.fulltext_max_text_length
        self.max_pdf_pages = max_pdf_pages or settings.fulltext_max_pdf_pages
        self.min_text_length = min_text_length or settings.fulltext_min_text_length
        self.pdf_dir = Path(pdf_dir) if pdf_dir else settings.pdf_dir

    async def resolve(self, paper: Any) -> FullTextResult:
        """Resolve full text for ``paper`` (anything with ``doi`` and ``url``).

        Returns:
            FullTextResult: Never raises; failures carry ``error``.
        """
        doi = getattr(paper, "doi", None)
        url = getattr(paper, "url", None)
        if not doi and not url:
            return FullTextResult.failure("No DOI or accessible URL available")

        if self._client is not None:
            return await self._resolve(self._client, doi, url)
        async with build_async_client(self.timeout) as client:
            return await self._resolve(client, doi, url)

    async def _resolve(
        self,
        client: httpx.AsyncClient,
        doi: Optional[str],
        url: Optional[str],
    ) -> FullTextResult:
        pdf_url: Optional[str] = None

        if doi:
            location = await self.find_oa_location(client, doi)
            if location is not None:
                if location.is_pdf:
                    pdf_url = location.url
                result = await self._attempt(
                    client, location.url,
                    pdf_source=FullTextSource.UNPAYWALL,
                    html_source=FullTextSource.UNPAYWALL,
                )
                if result.success:
                    return result
                logger.warning(f"OA location failed for DOI {doi}: {result.error}")

        if url:
            result = await self._attempt(
                client, url,
                pdf_source=FullTextSource.PDF_EXTRACTED,
                html_source=FullTextSource.HTML_SCRAPE,
            )
            if result.success:
                return result
            logger.warning(f"Scrape failed for URL {url}: {result.error}")
            if not doi:
                return FullTextResult.failure(result.error or "Scrape failed", pdf_url)

        return FullTextResult.failure("All extraction methods failed", pdf_url)

    async def find_oa_location(self, client: httpx.AsyncClient, doi: str) -> Optional[OALocation]:
        """Query Unpaywall for an open-access copy of ``doi``.

        Lookup failures are logged and reported as "no location".
        """
        if not self.email:
            logger.warning("Unpaywall email not configured, skipping OA lookup")
            return None

        api_url = f"{UNPAYWALL_API_URL}{quote(doi, safe='/')}?email={quote(self.email)}"
        try:
            response = await client.get(
                api_url,
                headers=build_headers(ACCEPT_JSON),
                timeout=build_timeout(self.timeout),
            )
        except httpx.HTTPError as e:
            logger.error(f"Unpaywall request failed for DOI {doi}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"Unpaywall API error for DOI {doi}: {response.status_code}")
            return None

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Unpaywall returned invalid JSON for DOI {doi}")
            return None

        best = data.get("best_oa_location") or {}
        if best.get("url_for_pdf"):
            return OALocation(best["url_for_pdf"], is_pdf=True)
        for location in data.get("oa_locations") or []:
            if location and location.get("url_for_pdf"):
                return OALocation(location["url_for_pdf"], is_pdf=True)
        if best.get("url"):
            return OALocation(best["url"], is_pdf=False)
        return None

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        url: str,
        pdf_source: FullTextSource,
        html_source: FullTextSource,
    ) -> FullTextResult:
        try:
            return await self._extract_from_url(client, url, pdf_source, html_source)
        except PayloadTooLargeError as e:
            return FullTextResult.failure(str(e))
        except httpx.HTTPStatusError as e:
            return FullTextResult.failure(f"Download failed: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return FullTextResult.failure(f"Download failed: {e}")
        except FullTextError as e:
            return FullTextResult.failure(str(e))

    async def _extract_from_url(
        self,
        client: httpx.AsyncClient,
        url: str,
        pdf_source: FullTextSource,
        html_source: FullTextSource,
    ) -> FullTextResult:
        # PDF 较大，下载超时取普通请求的两倍
        download = await download_limited(
            client, url, max_bytes=self.max_bytes, timeout=self.timeout * 2
        )

        if download.is_pdf:
            text = await self._pdf_text(download.content)
            try:
                pdf_path: Optional[str] = str(store_content(self.pdf_dir, download.content, ".pdf"))
            except OSError as e:
                # 落盘失败不影响已抽取的正文
                logger.error(f"Failed to store PDF from {url} under {self.pdf_dir}: {e}")
                pdf_path = None
            return FullTextResult(
                success=True,
                text=truncate_text(text, self.max_text_length),
                source=pdf_source.value,
                pdf_url=url,
                pdf_path=pdf_path,
            )

        if download.is_html or not download.content_type:
            text = extract_main_content(download.content)
            if len(text) < self.min_text_length:
                raise FullTextError("Extracted content too short")
            return FullTextResult(
                success=True,
                text=truncate_text(text, self.max_text_length),
                source=html_source.value,
            )

        raise FullTextError(f"Unsupported content type: {download.content_type}")

    async def _pdf_text(self, content: bytes) -> str:
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(
                None, extract_pdf_text, content, self.max_pdf_pages
            )
        except Exception as e:
            # pypdf 对损坏文件会抛出多种异常类型
            raise FullTextError(f"PDF parsing error: {e}") from e

        text = clean_extracted_text(raw)
        if len(text) < self.min_text_length:
            raise FullTextError("Extracted text too short (possibly scanned PDF)")
        return text
