# =============================================================================
# OpenAI Provider 模块
# =============================================================================
# 通过 Chat Completions API 生成论文摘要。
#   - 使用 httpx 直接调用，不依赖 openai 官方 SDK
#   - temperature=0.3：低温度确保输出稳定
#   - gpt-4o / gpt-4-turbo 系列使用 max_completion_tokens，其余模型使用 max_tokens
# =============================================================================

"""OpenAI chat completions provider."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from apps.summary.providers.base import BaseSummaryProvider, ProviderRequest
from apps.summary.providers.registry import ProviderRegistry

DEFAULT_SYSTEM_PROMPT = (
    "You are an academic paper summarization assistant. Always respond in valid JSON format."
)


def uses_completion_tokens(model: str) -> bool:
    return "gpt-4o" in model or "gpt-4-turbo" in model


@ProviderRegistry.register("openai")
class OpenAISummaryProvider(BaseSummaryProvider):
    """OpenAI API provider."""

    display_name = "OpenAI"

    @classmethod
    def from_settings(cls) -> "OpenAISummaryProvider":
        from settings import settings

        return cls(
            base_url=settings.openai_base_url,
            default_model=settings.openai_default_model,
            available_models=settings.openai_models_list,
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
        payload: Dict[str, Any] = {
            "model": model,
            "temperature": 0.3,
            "messages": [
                {"role": "system", "content": system or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        if uses_completion_tokens(model):
            payload["max_completion_tokens"] = max_tokens
        else:
            payload["max_tokens"] = max_tokens

        return ProviderRequest(
            url=f"{self.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            payload=payload,
            timeout=timeout,
        )

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, int]:
        choices = body.get("choices") or [{}]
        message = choices[0].get("message") or {}
        text = message.get("content") or ""
        tokens = (body.get("usage") or {}).get("total_tokens") or 0
        return text, int(tokens)
