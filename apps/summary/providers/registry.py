# =============================================================================
# 模块: apps/summary/providers/registry.py
# 功能: LLM Provider 注册表
# 设计理念:
#   与爬虫注册表相同的注册表模式：类级别字典保存 id -> Provider 类，
#   新增一个 Provider 只需实现一个类并加上 @ProviderRegistry.register("id")。
# =============================================================================

"""Registry of summary providers keyed by id.

Usage:
    @ProviderRegistry.register("openai")
    class OpenAISummaryProvider(BaseSummaryProvider):
        ...

    provider = ProviderRegistry.create("openai")
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Type

from apps.summary.errors import UnknownProviderError
from apps.summary.providers.base import BaseSummaryProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Central registry for provider classes."""

    _providers: Dict[str, Type[BaseSummaryProvider]] = {}

    @classmethod
    def register(cls, provider_id: str) -> Callable[[Type[BaseSummaryProvider]], Type[BaseSummaryProvider]]:
        """Class decorator registering a provider under ``provider_id``."""

        def decorator(provider_class: Type[BaseSummaryProvider]) -> Type[BaseSummaryProvider]:
            if provider_id in cls._providers and cls._providers[provider_id] is not provider_class:
                logger.warning(f"Provider '{provider_id}' re-registered by {provider_class.__name__}")
            provider_class.provider_id = provider_id
            cls._providers[provider_id] = provider_class
            return provider_class

        return decorator

    @classmethod
    def unregister(cls, provider_id: str) -> None:
        cls._providers.pop(provider_id, None)

    @classmethod
    def get(cls, provider_id: str) -> Type[BaseSummaryProvider]:
        """Return the provider class for ``provider_id``.

        Raises:
            UnknownProviderError: No provider registered under that id.
        """
        try:
            return cls._providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    @classmethod
    def create(cls, provider_id: str) -> BaseSummaryProvider:
        return cls.get(provider_id).from_settings()

    @classmethod
    def list_ids(cls) -> List[str]:
        return sorted(cls._providers)

    @classmethod
    def is_registered(cls, provider_id: str) -> bool:
        return provider_id in cls._providers
