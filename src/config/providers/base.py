"""
Configuration sources.

A provider answers string lookups by key; ConfigManager walks several of them
in priority order and type conversion happens there, not here.
"""

from abc import ABC, abstractmethod


class ConfigProvider(ABC):
    """One source of raw configuration strings."""

    name = "provider"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Raw value for key, or None when this source does not define it."""

    @property
    def available(self) -> bool:
        return True

    def refresh(self) -> None:
        """Re-read the backing source. Sources read live need not override this."""
