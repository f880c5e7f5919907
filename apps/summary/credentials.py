# =============================================================================
# 模块: apps/summary/credentials.py
# 功能: API 密钥与用户偏好的注入接口
# 设计决策:
#   SummaryEngine 不直接读取配置或用户表，而是通过 SecretProvider / PreferenceProvider
#   获取密钥和默认 Provider，便于按用户覆盖密钥以及在测试中替换。
# =============================================================================

"""API key and provider preference lookups for the summary engine."""

from __future__ import annotations

from typing import Dict, Optional, Protocol


class SecretProvider(Protocol):
    def get_key(self, user_id: Optional[int], provider: str) -> Optional[str]:
        """Return the API key for ``provider``, or ``None`` when unset."""
        ...


class PreferenceProvider(Protocol):
    def get_provider(self, user_id: Optional[int]) -> Optional[str]:
        """Return the user's preferred provider id, or ``None``."""
        ...


class SettingsSecretProvider:
    """Reads ``<PROVIDER>_API_KEY`` values from ``settings``; ignores the user."""

    def __init__(self, settings_obj=None):
        if settings_obj is None:
            from settings import settings as settings_obj
        self._settings = settings_obj

    def get_key(self, user_id: Optional[int], provider: str) -> Optional[str]:
        key = getattr(self._settings, f"{provider}_api_key", None)
        return key or None


class StaticSecretProvider:
    """Fixed keys per provider, optionally overridden per user."""

    def __init__(
        self,
        keys: Dict[str, str],
        user_keys: Optional[Dict[int, Dict[str, str]]] = None,
    ):
        self._keys = dict(keys)
        self._user_keys = user_keys or {}

    def get_key(self, user_id: Optional[int], provider: str) -> Optional[str]:
        if user_id is not None:
            key = self._user_keys.get(user_id, {}).get(provider)
            if key:
                return key
        return self._keys.get(provider) or None


class StaticPreferenceProvider:
    def __init__(self, preferences: Dict[int, str]):
        self._preferences = dict(preferences)

    def get_provider(self, user_id: Optional[int]) -> Optional[str]:
        if user_id is None:
            return None
        return self._preferences.get(user_id)
