"""
Layered configuration lookup.

Keys are plain strings such as ``BACKTEST_CACHE_DIR`` or ``LOG_LEVEL``. The
first provider in the chain that defines a key wins; by default that is the
process environment, then ``.env`` in the working directory.
"""

import logging
import threading
from typing import Optional

from .providers.base import ConfigProvider
from .providers.dotenv_provider import DotEnvProvider
from .providers.env_provider import EnvVarProvider

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "enabled"})


class ConfigManager:
    """Resolves configuration keys against an ordered provider chain."""

    def __init__(self, providers: Optional[list[ConfigProvider]] = None):
        if providers is None:
            providers = [EnvVarProvider(), DotEnvProvider()]
        self.providers: list[ConfigProvider] = list(providers)
        logger.debug(
            "Configuration sources: %s",
            [p.name for p in self.providers if p.available] or "none",
        )

    def _lookup(self, key: str) -> tuple[Optional[str], Optional[ConfigProvider]]:
        for provider in self.providers:
            if not provider.available:
                continue
            value = provider.get(key)
            if value is not None:
                return value, provider
        return None, None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value, _ = self._lookup(key)
        return default if value is None else value

    def source_of(self, key: str) -> Optional[str]:
        """Name of the provider that supplies key, or None when nothing does."""
        _, provider = self._lookup(key)
        return provider.name if provider is not None else None

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self.get_optional_float(key)
        return default if value is None else value

    def get_optional_float(self, key: str) -> Optional[float]:
        """Float value, or None when unset, blank or not a number."""
        value = self.get(key)
        if value is None or not value.strip():
            return None
        try:
            return float(value)
        except ValueError:
            logger.warning(
                "Ignoring non-numeric %s=%r from %s", key, value, self.source_of(key)
            )
            return None

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return value.strip().lower() in _TRUE_VALUES

    def refresh(self) -> None:
        for provider in self.providers:
            provider.refresh()


_config_instance: Optional[ConfigManager] = None
_config_lock = threading.Lock()


def get_config() -> ConfigManager:
    """Process-wide configuration, created on first use."""
    global _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = ConfigManager()
    return _config_instance


def set_config(config: Optional[ConfigManager]) -> None:
    """Install a configuration instance; None resets to lazy default creation."""
    global _config_instance
    with _config_lock:
        _config_instance = config
