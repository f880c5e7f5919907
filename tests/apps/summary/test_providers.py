"""Tests for the summary provider registry and built-in providers."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import httpx
import pytest

from apps.summary.errors import ProviderAPIError, UnknownProviderError
from apps.summary.providers import BaseSummaryProvider, ProviderRegistry, ProviderRequest
from apps.summary.providers.claude_provider import ClaudeSummaryProvider
from apps.summary.providers.openai_provider import OpenAISummaryProvider, uses_completion_tokens


class EchoProvider(BaseSummaryProvider):
    """Minimal provider used to exercise registration."""

    display_name = "Echo"

    @classmethod
    def from_settings(cls) -> "EchoProvider":
        return cls(base_url="https://echo.example.org/", default_model="echo-1")

    def build_request(self, prompt: str, model: str, api_key: str, max_tokens: int,
                      system: Optional[str] = None, timeout: float = 120.0) -> ProviderRequest:
        return ProviderRequest(url=f"{self.base_url}/echo", headers={"key": api_key},
                               payload={"prompt": prompt, "model": model}, timeout=timeout)

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, int]:
        return body["echo"], body.get("tokens", 0)


@pytest.fixture
def echo_registered():
    ProviderRegistry.register("echo")(EchoProvider)
    yield EchoProvider
    ProviderRegistry.unregister("echo")


class TestProviderRegistry:
    def test_builtin_providers_registered(self):
        assert ProviderRegistry.is_registered("openai")
        assert ProviderRegistry.is_registered("claude")
        assert ProviderRegistry.get("openai") is OpenAISummaryProvider
        assert OpenAISummaryProvider.provider_id == "openai"
        assert ClaudeSummaryProvider.provider_id == "claude"

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError) as exc_info:
            ProviderRegistry.get("gemini")
        assert exc_info.value.provider_id == "gemini"

    def test_register_and_create(self, echo_registered):
        assert "echo" in ProviderRegistry.list_ids()
        provider = ProviderRegistry.create("echo")
        assert isinstance(provider, EchoProvider)
        assert provider.base_url == "https://echo.example.org"
        assert provider.describe() == {
            "id": "echo",
            "name": "Echo",
            "default_model": "echo-1",
            "models": ["echo-1"],
        }

    def test_unregister(self, echo_registered):
        ProviderRegistry.unregister("echo")
        assert not ProviderRegistry.is_registered("echo")


class TestOpenAIProvider:
    @pytest.mark.parametrize(
        "model, expected",
        [
            ("gpt-4o", True),
            ("gpt-4o-mini", True),
            ("gpt-4-turbo", True),
            ("gpt-3.5-turbo", False),
            ("gpt-4", False),
        ],
    )
    def test_completion_token_parameter(self, model, expected):
        assert uses_completion_tokens(model) is expected
        provider = OpenAISummaryProvider("https://api.openai.com/v1", "gpt-4o")
        payload = provider.build_request("hi", model, "sk", 100).payload
        key = "max_completion_tokens" if expected else "max_tokens"
        assert payload[key] == 100

    def test_default_system_prompt(self):
        provider = OpenAISummaryProvider("https://api.openai.com/v1", "gpt-4o")
        request = provider.build_request("hi", "gpt-4o", "sk", 100)
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.payload["messages"][0]["role"] == "system"
        assert request.payload["messages"][1] == {"role": "user", "content": "hi"}

    def test_parse_response_without_usage(self):
        provider = OpenAISummaryProvider("https://api.openai.com/v1", "gpt-4o")
        assert provider.parse_response({"choices": [{"message": {"content": "x"}}]}) == ("x", 0)


class TestClaudeProvider:
    def test_parse_response_skips_non_text_blocks(self):
        provider = ClaudeSummaryProvider("https://api.anthropic.com/v1", "claude-sonnet-4-20250514")
        body = {
            "content": [
                {"type": "text", "text": "Hello "},
                {"type": "tool_use", "id": "t1"},
                {"type": "text", "text": "world"},
            ],
            "usage": {"input_tokens": 7, "output_tokens": 3},
        }
        assert provider.parse_response(body) == ("Hello world", 10)

    def test_request_has_no_system_field(self):
        provider = ClaudeSummaryProvider("https://api.anthropic.com/v1", "claude-sonnet-4-20250514")
        request = provider.build_request("prompt", "claude-sonnet-4-20250514", "ck", 500, system="ignored")
        assert "system" not in request.payload
        assert request.payload["max_tokens"] == 500


class TestProviderCall:
    @pytest.mark.asyncio
    async def test_transport_error_becomes_api_error(self):
        def _fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(_fail)) as client:
            provider = EchoProvider.from_settings()
            with pytest.raises(ProviderAPIError) as exc_info:
                await provider.complete("hi", api_key="k", client=client)

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_non_json_body_becomes_api_error(self, http_router, mock_client):
        http_router.add("https://echo.example.org/echo", content=b"<html>gateway</html>")
        provider = EchoProvider.from_settings()

        with pytest.raises(ProviderAPIError) as exc_info:
            await provider.complete("hi", api_key="k", client=mock_client)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_json_array_body_becomes_api_error(self, http_router, mock_client):
        http_router.add("https://echo.example.org/echo", content=b'[{"echo": "pong"}]')
        provider = EchoProvider.from_settings()

        with pytest.raises(ProviderAPIError) as exc_info:
            await provider.complete("hi", api_key="k", client=mock_client)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"choices": [None]}, {"choices": "oops"}])
    async def test_malformed_openai_body_becomes_api_error(self, http_router, mock_client, body):
        http_router.add("https://api.openai.com/v1/chat/completions", json=body)
        provider = OpenAISummaryProvider("https://api.openai.com/v1", "gpt-4o")

        with pytest.raises(ProviderAPIError, match="Unexpected response shape"):
            await provider.complete("hi", api_key="sk", client=mock_client)

    @pytest.mark.asyncio
    async def test_malformed_claude_body_becomes_api_error(self, http_router, mock_client):
        http_router.add("https://api.anthropic.com/v1/messages", json={"content": ["plain string"]})
        provider = ClaudeSummaryProvider("https://api.anthropic.com/v1", "claude-x")

        with pytest.raises(ProviderAPIError, match="Unexpected response shape"):
            await provider.complete("hi", api_key="ak", client=mock_client)

    @pytest.mark.asyncio
    async def test_complete_round_trip(self, http_router, mock_client):
        http_router.add("https://echo.example.org/echo", json={"echo": "pong", "tokens": 4})
        provider = EchoProvider.from_settings()

        response = await provider.complete("ping", api_key="k", client=mock_client)

        assert response.text == "pong"
        assert response.tokens_used == 4
        assert response.raw == {"echo": "pong", "tokens": 4}
