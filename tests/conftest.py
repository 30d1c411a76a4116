"""
Pytest configuration and shared fixtures for the backtest cache test suite.

Every test gets its own cache root and result database under ``tmp_path`` and a
configuration chain that ignores the developer's environment and .env file.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from src.backtest_cache.fingerprint import fingerprint
from src.backtest_cache.models import (
    BacktestParameters,
    BacktestResult,
    ResultRow,
    Strategy,
    Tier,
)
from src.backtest_cache.store import CacheStore
from src.config.config_manager import ConfigManager, set_config
from src.config.providers.base import ConfigProvider
from src.database.result_store import ResultStore


class StaticProvider(ConfigProvider):
    """In-memory provider so tests control every configuration key."""

    name = "static"

    def __init__(self, values: dict[str, str] | None = None):
        self.values = dict(values or {})

    def get(self, key):
        return self.values.get(key)


@pytest.fixture
def config_values() -> dict[str, str]:
    return {}


@pytest.fixture(autouse=True)
def isolated_config(config_values):
    """Install a static configuration for the duration of a test."""
    config = ConfigManager(providers=[StaticProvider(config_values)])
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def cache_root(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def cache_store(cache_root) -> CacheStore:
    """CacheStore with the default 24h staleness and short wait bounds."""
    return CacheStore(
        cache_root,
        stale_after_seconds=24 * 3600,
        lock_timeout_seconds=5,
        compute_timeout_seconds=10,
    )


@pytest.fixture
def result_store(tmp_path):
    store = ResultStore(f"sqlite:///{tmp_path / 'results' / 'backtests.db'}")
    yield store
    store.close()


@pytest.fixture
def sample_params() -> BacktestParameters:
    return BacktestParameters(
        asset="SOL",
        strategy=Strategy.MOMENTUM,
        leverage=3,
        low_threshold=25,
        high_threshold=75,
        timeframe="4h",
    )


@pytest.fixture
def sample_result() -> BacktestResult:
    return BacktestResult(
        execution_time_ms=1250.0,
        sharpe_ratio=1.4,
        max_drawdown=-12.5,
        win_rate=58.0,
        time_in_market=64.0,
        num_trades=42,
        fees=-310.0,
        funding=-45.0,
        total_return=187.3,
    )


@pytest.fixture
def make_params() -> Callable[..., BacktestParameters]:
    """Factory for parameter sets that differ from a SOL/momentum baseline."""

    def _make(**overrides: Any) -> BacktestParameters:
        values: dict[str, Any] = {
            "asset": "SOL",
            "strategy": "momentum",
            "leverage": 3,
            "low_threshold": 25,
            "high_threshold": 75,
            "timeframe": "4h",
        }
        values.update(overrides)
        return BacktestParameters(**values)

    return _make


@pytest.fixture
def make_row() -> Callable[..., ResultRow]:
    """Factory for result rows with sensible metric defaults."""

    def _make(**overrides: Any) -> ResultRow:
        values: dict[str, Any] = {
            "asset": "SOL",
            "strategy": "momentum",
            "timeframe": "4h",
            "leverage": 3,
            "short_threshold": 25.0,
            "long_threshold": 75.0,
            "sharpe_ratio": 1.0,
            "max_drawdown": -10.0,
            "win_rate": 55.0,
            "time_in_market": 60.0,
            "num_trades": 30,
            "fees": -100.0,
            "funding": -20.0,
            "total_return": 50.0,
            "run_id": "run-1",
        }
        values.update(overrides)
        return ResultRow(**values)

    return _make


@pytest.fixture
def write_artifact(cache_store) -> Callable[..., Path]:
    """Write a raw artifact file straight into a tier directory.

    ``payload`` may be a dict (JSON encoded) or raw text for corrupt files.
    """

    def _write(name: str, payload: dict[str, Any] | str, tier: Tier = Tier.TEMPORARY) -> Path:
        path = cache_store.tier_dir(tier) / f"{name}.json"
        text = payload if isinstance(payload, str) else json.dumps(payload)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def digest_for(make_params) -> Callable[[int], str]:
    """Distinct real fingerprints, one per integer seed."""

    def _digest(seed: int) -> str:
        return fingerprint(make_params(leverage=seed + 1)).digest

    return _digest
