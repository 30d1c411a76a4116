"""
.env file provider.

Accepted syntax is the common subset: ``KEY=value`` lines, an optional leading
``export``, single or double quotes around the value, ``#`` comments on their
own line or after an unquoted value.
"""

import logging
from pathlib import Path

from .base import ConfigProvider

logger = logging.getLogger(__name__)


def _unquote(value: str) -> str:
    if value[:1] in ("'", '"'):
        end = value.find(value[0], 1)
        if end != -1:
            return value[1:end]
    return value.split(" #", 1)[0].strip()


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file into a dict. Raises OSError if it cannot be read."""
    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            if line.startswith("export "):
                line = line[len("export ") :]
            key, value = line.split("=", 1)
            values[key.strip()] = _unquote(value.strip())
    return values


class DotEnvProvider(ConfigProvider):
    """Values from a .env file, loaded once and again on refresh()."""

    def __init__(self, env_file: str | Path = ".env"):
        self.env_file = Path(env_file)
        self.name = f".env ({self.env_file})"
        self._values: dict[str, str] = {}
        self.refresh()

    def refresh(self) -> None:
        if not self.env_file.is_file():
            self._values = {}
            return
        try:
            self._values = parse_env_file(self.env_file)
        except OSError as e:
            logger.warning("Failed to load %s: %s", self.env_file, e)
            self._values = {}

    @property
    def available(self) -> bool:
        return bool(self._values)

    def get(self, key: str) -> str | None:
        return self._values.get(key)
