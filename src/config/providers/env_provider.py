"""
Process environment provider.
"""

import os

from .base import ConfigProvider


class EnvVarProvider(ConfigProvider):
    """
    Reads ``os.environ`` on every lookup.

    With a prefix, ``get("LOG_LEVEL")`` looks up ``<prefix>LOG_LEVEL`` so several
    cache deployments can share one environment.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.name = f"environment ({prefix}*)" if prefix else "environment"

    def get(self, key: str) -> str | None:
        return os.environ.get(self.prefix + key)
