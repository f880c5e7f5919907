# =============================================================================
# 模块: common/http.py
# 功能: 异步 HTTP 请求工具模块
# 架构角色: 为 Feed 下载、Unpaywall 查询、全文下载提供统一的 httpx 客户端构建、
#   请求头策略和带字节上限的流式下载。LLM 调用由各 Provider 自行管理客户端。
#
# 设计决策:
#   - 超时细分为 connect/read/write/pool 四个维度，避免连接池耗尽导致的无限等待
#   - Feed 下载可选传输层重试（tenacity），默认关闭；全文下载从不重试
#   - 流式下载在累计字节超过上限时立即中止，不把超大文件读入内存
# =============================================================================
"""Async HTTP helpers for PaperPulse."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# 学术用途的礼貌型 User-Agent，出版社一般据此放行
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; PaperPulse/1.0; Academic Research)"

ACCEPT_FEED = "application/rss+xml,application/atom+xml,application/xml;q=0.9,text/xml;q=0.8,*/*;q=0.5"
ACCEPT_JSON = "application/json"
ACCEPT_DOCUMENT = "application/pdf,text/html;q=0.9,*/*;q=0.5"


class PayloadTooLargeError(Exception):
    """Raised when a streamed download exceeds its byte ceiling."""

    def __init__(self, url: str, limit: int):
        super().__init__(f"Download from {url} exceeded {limit} bytes")
        self.url = url
        self.limit = limit


@dataclass
class Download:
    """A completed download: body plus the headers callers inspect."""

    url: str
    content: bytes
    content_type: str
    status_code: int

    @property
    def is_pdf(self) -> bool:
        if "pdf" in self.content_type:
            return True
        return self.content[:5] == b"%PDF-"

    @property
    def is_html(self) -> bool:
        return "html" in self.content_type


def build_timeout(timeout: float) -> httpx.Timeout:
    """Split a single timeout into per-phase limits.

    Args:
        timeout: Overall read/write timeout in seconds.

    Returns:
        httpx.Timeout: connect capped at 10s, pool capped at 5s.
    """
    return httpx.Timeout(
        connect=min(timeout, 10.0),   # TCP 连接超时：上限 10 秒
        read=timeout,
        write=timeout,
        pool=min(timeout, 5.0),       # 等待连接池空闲位置超时：上限 5 秒
    )


def build_headers(accept: str, user_agent: str = DEFAULT_USER_AGENT) -> Dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": accept,
        "Accept-Language": "en-US,en;q=0.9",
    }


def build_async_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Create an AsyncClient configured for crawler-style requests.

    调用方负责关闭客户端（async with 或 aclose）。
    """
    return httpx.AsyncClient(
        timeout=build_timeout(timeout),
        follow_redirects=True,
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": DEFAULT_USER_AGENT},
    )


async def get_bytes(
    client: httpx.AsyncClient,
    url: str,
    accept: str = ACCEPT_FEED,
    timeout: float = 30.0,
    retries: int = 0,
    backoff: float = 1.0,
) -> bytes:
    """GET a URL and return the raw body.

    ``retries`` > 0 retries transport errors and 5xx responses with
    exponential backoff; 4xx responses are never retried.

    Args:
        client: Shared async client.
        url: URL to fetch.
        accept: Accept header value.
        timeout: Request timeout in seconds.
        retries: Additional attempts after the first one.
        backoff: Base backoff multiplier in seconds.

    Returns:
        bytes: Response body.

    Raises:
        httpx.HTTPError: Transport failure or non-2xx status after all attempts.
    """

    async def _once() -> bytes:
        response = await client.get(
            url, headers=build_headers(accept), timeout=build_timeout(timeout)
        )
        response.raise_for_status()
        return response.content

    if retries <= 0:
        return await _once()

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=backoff, max=30),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            reraise=True,
        ):
            with attempt:
                try:
                    return await _once()
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code >= 500:
                        logger.debug(
                            "HTTP %d from %s (attempt %d/%d)",
                            exc.response.status_code, url,
                            attempt.retry_state.attempt_number, retries + 1,
                        )
                        raise _ServerError(exc) from exc
                    raise
    except _ServerError as exc:
        raise exc.cause from None
    raise RuntimeError("unreachable")  # pragma: no cover


class _ServerError(Exception):
    """Internal marker so tenacity only retries 5xx status errors."""

    def __init__(self, cause: httpx.HTTPStatusError):
        super().__init__(str(cause))
        self.cause = cause


async def download_limited(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: int,
    timeout: float = 60.0,
    accept: str = ACCEPT_DOCUMENT,
) -> Download:
    """Stream a document, aborting once ``max_bytes`` is exceeded.

    Args:
        client: Shared async client.
        url: Document URL.
        max_bytes: Hard size ceiling.
        timeout: Request timeout in seconds.
        accept: Accept header value.

    Returns:
        Download: Body and content type.

    Raises:
        PayloadTooLargeError: Declared or streamed size above the ceiling.
        httpx.HTTPError: Transport failure or non-2xx status.
    """
    async with client.stream(
        "GET", url, headers=build_headers(accept), timeout=build_timeout(timeout)
    ) as response:
        response.raise_for_status()
        declared: Optional[str] = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise PayloadTooLargeError(url, max_bytes)

        chunks = bytearray()
        async for chunk in response.aiter_bytes():
            chunks.extend(chunk)
            if len(chunks) > max_bytes:
                raise PayloadTooLargeError(url, max_bytes)

        return Download(
            url=str(response.url),
            content=bytes(chunks),
            content_type=response.headers.get("Content-Type", "").lower(),
            status_code=response.status_code,
        )
