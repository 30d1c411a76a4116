"""
Typed settings for the cache and result store, read from the config chain.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config_manager import ConfigManager, get_config
from .constants import (
    DEFAULT_COMPUTE_TIMEOUT_SEC,
    DEFAULT_FILTER_OPTIONS_TTL_SEC,
    DEFAULT_LOCK_TIMEOUT_SEC,
    DEFAULT_STALE_AFTER_HOURS,
)
from .paths import get_cache_dir, get_results_database_url


@dataclass(frozen=True)
class CacheSettings:
    cache_dir: Path
    results_database_url: str
    stale_after_seconds: Optional[float]
    lock_timeout_seconds: float
    compute_timeout_seconds: float
    eviction_max_bytes: Optional[int]
    eviction_max_age_seconds: Optional[float]
    filter_options_ttl_seconds: float

    @classmethod
    def from_config(cls, config: Optional[ConfigManager] = None) -> "CacheSettings":
        """Build settings from the given (or global) configuration.

        A non-positive ``BACKTEST_CACHE_STALE_HOURS`` disables staleness checks.
        """
        cfg = config or get_config()

        cache_dir = cfg.get("BACKTEST_CACHE_DIR")
        stale_hours = cfg.get_float("BACKTEST_CACHE_STALE_HOURS", DEFAULT_STALE_AFTER_HOURS)
        max_bytes = cfg.get_optional_float("BACKTEST_CACHE_MAX_BYTES")
        max_age_hours = cfg.get_optional_float("BACKTEST_CACHE_MAX_AGE_HOURS")

        return cls(
            cache_dir=Path(cache_dir) if cache_dir else get_cache_dir(),
            results_database_url=cfg.get("BACKTEST_RESULTS_DATABASE_URL")
            or get_results_database_url(),
            stale_after_seconds=stale_hours * 3600 if stale_hours > 0 else None,
            lock_timeout_seconds=cfg.get_float(
                "BACKTEST_CACHE_LOCK_TIMEOUT_SEC", DEFAULT_LOCK_TIMEOUT_SEC
            ),
            compute_timeout_seconds=cfg.get_float(
                "BACKTEST_COMPUTE_TIMEOUT_SEC", DEFAULT_COMPUTE_TIMEOUT_SEC
            ),
            eviction_max_bytes=int(max_bytes) if max_bytes is not None else None,
            eviction_max_age_seconds=max_age_hours * 3600 if max_age_hours is not None else None,
            filter_options_ttl_seconds=cfg.get_float(
                "FILTER_OPTIONS_TTL_SEC", DEFAULT_FILTER_OPTIONS_TTL_SEC
            ),
        )
