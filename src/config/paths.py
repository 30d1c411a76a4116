"""
Path utilities for the backtest result cache.

Paths resolve relative to the project root regardless of whether code runs from
the repository or an installed package.
"""

import os
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_CACHE_DIRNAME, DEFAULT_RESULTS_DB_RELPATH


def find_project_root() -> Path:
    """Resolve the project root directory.

    Resolution order:
    1) Environment variable ``BACKTEST_PROJECT_ROOT`` if set and valid
    2) Walk up from current working directory for known markers
    3) Walk up from this module's path for known markers
    4) Fallback to current working directory
    """
    env_root = os.getenv("BACKTEST_PROJECT_ROOT")
    if env_root:
        candidate = Path(env_root).resolve()
        if candidate.exists():
            return candidate

    def _search_up(start: Path) -> Optional[Path]:
        for parent in [start, *start.parents]:
            try:
                if (parent / "pyproject.toml").exists():
                    return parent
            except OSError:
                continue
        return None

    cwd = Path.cwd().resolve()
    found = _search_up(cwd)
    if found is not None:
        return found

    found = _search_up(Path(__file__).resolve().parent)
    if found is not None:
        return found

    return cwd


_PROJECT_ROOT: Optional[Path] = None


def get_project_root() -> Path:
    """Get the cached project root, computing it if necessary."""
    global _PROJECT_ROOT
    if _PROJECT_ROOT is None:
        _PROJECT_ROOT = find_project_root()
    return _PROJECT_ROOT


def get_cache_dir() -> Path:
    """Default root of the two-tier backtest cache."""
    return get_project_root() / DEFAULT_CACHE_DIRNAME


def get_results_database_url() -> str:
    """Default SQLAlchemy URL of the result store (SQLite file)."""
    return f"sqlite:///{get_project_root() / DEFAULT_RESULTS_DB_RELPATH}"


def ensure_dir_exists(path: Path) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        Path: The directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
