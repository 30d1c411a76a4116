"""
Configuration management for the backtest result cache.
Provides abstraction for accessing configuration from multiple sources.
"""

from .config_manager import ConfigManager, get_config, set_config
from .paths import (
    ensure_dir_exists,
    get_cache_dir,
    get_project_root,
    get_results_database_url,
)
from .settings import CacheSettings

__all__ = [
    "CacheSettings",
    "ConfigManager",
    "get_config",
    "set_config",
    "get_project_root",
    "get_cache_dir",
    "get_results_database_url",
    "ensure_dir_exists",
]
