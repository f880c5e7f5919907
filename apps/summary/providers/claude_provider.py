"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from apps.summary.providers.base import BaseSummaryProvider, ProviderRequest
from apps.summary.providers.registry import ProviderRegistry

ANTHROPIC_VERSION = "2023-06-01"


@ProviderRegistry.register("claude")
class ClaudeSummaryProvider(BaseSummaryProvider):
    """Claude provider; the prompt is sent as a single user message."""

    display_name = "Claude"

    @classmethod
    def from_settings(cls) -> "ClaudeSummaryProvider":
        from settings import settings

        return cls(
            base_url=settings.claude_base_url,
            default_model=settings.claude_default_model,
            available_models=settings.claude_models_list,
        )

    def build_request(
        self,
        prompt: str,
        model: str,
        api_key: str,
        max_tokens: int,
        system: Optional[str] = None,
        timeout: float = 120.0,
    ) -> ProviderRequest:
        return ProviderRequest(
            url=f"{self.base_url}/messages",
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            },
            payload={
                "model": model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=timeout,
        )

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, int]:
        # content 是分块数组，只取文本块
        text = "".join(
            block.get("text", "")
            for block in body.get("content") or []
            if block.get("type", "text") == "text"
        )
        usage = body.get("usage") or {}
        tokens = (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)
        return text, int(tokens)
