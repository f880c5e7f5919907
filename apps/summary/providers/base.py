# =============================================================================
# LLM Provider 基类模块
# =============================================================================
# 本模块定义摘要生成所用 LLM 服务的统一接口。每个 Provider 只负责三件事：
#   - build_request：把 prompt 转成该服务的 HTTP 请求（URL、头、请求体）
#   - call：发送请求，非 2xx 转为 ProviderAPIError
#   - parse_response：从响应体中取出文本和 token 用量
# Prompt 构建、JSON 解析和计时都在 SummaryEngine 中完成，Provider 之间不重复。
# 所有调用只请求一次，不做重试。
# =============================================================================

"""Base class for summary LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from apps.summary.errors import ProviderAPIError
from common.http import build_timeout

logger = logging.getLogger(__name__)


@dataclass
class ProviderRequest:
    url: str
    headers: Dict[str, str]
    payload: Dict[str, Any]
    timeout: float = 120.0


@dataclass
class ProviderResponse:
    text: str
    tokens_used: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)


class BaseSummaryProvider(ABC):
    """Abstract base class for LLM providers.

    Subclasses set ``provider_id`` / ``display_name`` and implement
    ``build_request`` and ``parse_response``; registration happens through
    ``@ProviderRegistry.register(...)``.
    """

    provider_id: str = ""
    display_name: str = ""

    def __init__(
        self,
        base_url: str,
        default_model: str,
        available_models: Optional[List[str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.available_models = available_models or [default_model]

    @classmethod
    @abstractmethod
    def from_settings(cls) -> "BaseSummaryProvider":
        """Build an instance from ``settings``."""
        ...

    @abstractmethod
    def build_request(
        self,
        prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
        system: Optional[str] = None,
        timeout: float = 120.0,
    ) -> ProviderRequest:
        ...

    @abstractmethod
    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, int]:
        """Return ``(text, tokens_used)`` from a successful response body."""
        ...

    async def call(
        self,
        request: ProviderRequest,
        client: Optional[httpx.AsyncClient] = None,
    ) -> Dict[str, Any]:
        """POST ``request`` once and return the decoded JSON body.

        Raises:
            ProviderAPIError: Transport failure, non-2xx status or a
                body that is not a JSON object.
        """
        if client is None:
            async with httpx.AsyncClient() as own_client:
                return await self._post(own_client, request)
        return await self._post(client, request)

    async def _post(self, client: httpx.AsyncClient, request: ProviderRequest) -> Dict[str, Any]:
        try:
            response = await client.post(
                request.url,
                headers=request.headers,
                json=request.payload,
                timeout=build_timeout(request.timeout),
            )
        except httpx.HTTPError as e:
            raise ProviderAPIError(self.provider_id, None, str(e) or e.__class__.__name__) from e

        if not response.is_success:
            logger.error(
                f"{self.display_name or self.provider_id} API error: "
                f"status={response.status_code} body={response.text[:500]}"
            )
            raise ProviderAPIError(self.provider_id, response.status_code, response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderAPIError(self.provider_id, response.status_code, response.text) from e
        if not isinstance(body, dict):
            raise ProviderAPIError(self.provider_id, response.status_code, response.text)
        return body

    async def complete(
        self,
        prompt: str,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 2000,
        system: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> ProviderResponse:
        """Build, send and parse one completion request."""
        request = self.build_request(
            prompt,
            model or self.default_model,
            api_key,
            max_tokens,
            system=system,
            timeout=timeout,
        )
        body = await self.call(request, client)
        try:
            text, tokens = self.parse_response(body)
        except (AttributeError, TypeError, KeyError, IndexError, ValueError) as e:
            # 2xx 但结构不符合约定，视同接口错误
            raise ProviderAPIError(
                self.provider_id, None, f"Unexpected response shape: {e}"
            ) from e
        return ProviderResponse(text=text, tokens_used=tokens, raw=body)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.provider_id,
            "name": self.display_name or self.provider_id,
            "default_model": self.default_model,
            "models": list(self.available_models),
        }
