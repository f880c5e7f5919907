"""Exceptions raised by the summary engine.

``ProviderNotConfiguredError`` and ``UnknownProviderError`` are configuration
problems the operator must fix; ``ProviderAPIError`` is a transient failure
of the remote API and can be retried by calling again.
"""

from __future__ import annotations

from typing import Optional


class SummaryError(Exception):
    """Base class for summary generation failures."""


class UnknownProviderError(SummaryError):
    def __init__(self, provider_id: str):
        super().__init__(f"Unknown AI provider: {provider_id}")
        self.provider_id = provider_id


class ProviderNotConfiguredError(SummaryError):
    def __init__(self, provider_id: str):
        super().__init__(
            f"{provider_id} API key is not configured. Set the API key before requesting summaries."
        )
        self.provider_id = provider_id


class ProviderAPIError(SummaryError):
    def __init__(self, provider_id: str, status_code: Optional[int], body: str):
        if status_code is None:
            message = f"{provider_id} API request failed: {body}"
        else:
            message = f"{provider_id} API request failed with HTTP {status_code}: {body[:500]}"
        super().__init__(message)
        self.provider_id = provider_id
        self.status_code = status_code
        self.body = body


class RecordNotFoundError(SummaryError):
    """The paper, tag or date window to summarise has nothing in it."""
