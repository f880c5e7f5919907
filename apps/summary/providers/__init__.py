"""Summary LLM providers.

Importing this package registers the built-in providers.
"""

from apps.summary.providers.base import BaseSummaryProvider, ProviderRequest, ProviderResponse
from apps.summary.providers.registry import ProviderRegistry
from apps.summary.providers import claude_provider, openai_provider  # noqa: F401  (registration)

__all__ = ["BaseSummaryProvider", "ProviderRegistry", "ProviderRequest", "ProviderResponse"]
