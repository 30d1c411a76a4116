"""
Filter option discovery for the strategy browser.

Reports which assets, strategies, leverages and threshold pairs exist in the
result store, and the min/max of every rankable metric.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from src.backtest_cache.exceptions import QueryError, StorageError
from src.config.constants import (
    DEFAULT_ASSETS,
    DEFAULT_FILTER_OPTIONS_TTL_SEC,
    DEFAULT_LEVERAGES,
    DEFAULT_METRIC_RANGES,
    DEFAULT_STRATEGIES,
)

from .result_store import MetricRange, ResultStore

logger = logging.getLogger(__name__)

# response range name -> result store column
_RANGE_FIELDS = {
    "sharpeRatio": "sharpe_ratio",
    "drawdown": "max_drawdown",
    "winRate": "win_rate",
    "timeInMarket": "time_in_market",
    "trades": "num_trades",
    "fees": "fees",
    "funding": "funding",
    "totalReturn": "total_return",
}


@dataclass(frozen=True)
class FilterOptions:
    assets: list[str] = field(default_factory=list)
    strategies: list[str] = field(default_factory=list)
    leverages: list[int] = field(default_factory=list)
    threshold_ranges: list[tuple[float, float]] = field(default_factory=list)
    ranges: dict[str, MetricRange] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "assets": list(self.assets),
            "strategies": list(self.strategies),
            "leverages": list(self.leverages),
            "thresholdRanges": [
                {"short": short, "long": long} for short, long in self.threshold_ranges
            ],
            "ranges": {name: r.to_dict() for name, r in self.ranges.items()},
        }


@dataclass(frozen=True)
class FilterOptionsResponse:
    success: bool
    options: FilterOptions
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "options": self.options.to_dict()}
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def fallback(cls, error: str) -> FilterOptionsResponse:
        """Unsuccessful response carrying the default option set."""
        return cls(success=False, options=default_filter_options(), error=error)


def default_filter_options() -> FilterOptions:
    """Fixed option set served when the result store is empty or unreachable."""
    return FilterOptions(
        assets=list(DEFAULT_ASSETS),
        strategies=list(DEFAULT_STRATEGIES),
        leverages=list(DEFAULT_LEVERAGES),
        threshold_ranges=[],
        ranges={name: MetricRange(lo, hi) for name, (lo, hi) in DEFAULT_METRIC_RANGES.items()},
    )


class FilterQueryEngine:
    """Builds FilterOptionsResponse values from a ResultStore, caching successes briefly."""

    def __init__(
        self, store: ResultStore, cache_ttl_seconds: float = DEFAULT_FILTER_OPTIONS_TTL_SEC
    ):
        self.store = store
        self.cache_ttl_seconds = cache_ttl_seconds
        self._lock = threading.Lock()
        self._cached: FilterOptionsResponse | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    def filter_options(self) -> FilterOptionsResponse:
        with self._lock:
            if (
                self._cached is not None
                and time.monotonic() - self._cached_at < self.cache_ttl_seconds
            ):
                return self._cached

            try:
                options = self._query()
            except (QueryError, StorageError) as exc:
                logger.error("Failed to fetch filter options: %s", exc)
                return FilterOptionsResponse.fallback("Failed to fetch filter options")

            if options is None:
                logger.warning("Result store is empty; serving default filter options")
                return FilterOptionsResponse.fallback("No backtest results available")

            response = FilterOptionsResponse(success=True, options=options)
            if self.cache_ttl_seconds > 0:
                self._cached = response
                self._cached_at = time.monotonic()
            return response

    def _query(self) -> FilterOptions | None:
        if self.store.count() == 0:
            return None

        raw = self.store.query_ranges(list(_RANGE_FIELDS.values()))
        ranges = {name: raw[column] for name, column in _RANGE_FIELDS.items()}
        drawdown = ranges["drawdown"]
        # stored drawdowns are signed (<= 0); the filter works on magnitudes
        ranges["drawdown"] = MetricRange(
            min=abs(drawdown.max) if drawdown.max is not None else None,
            max=abs(drawdown.min) if drawdown.min is not None else None,
        )

        return FilterOptions(
            assets=[str(a) for a in self.store.query_distinct("asset")],
            strategies=[str(s) for s in self.store.query_distinct("strategy")],
            leverages=sorted(int(lev) for lev in self.store.query_distinct("leverage")),
            threshold_ranges=[
                (float(short), float(long))
                for short, long in self.store.query_distinct_pairs(
                    "short_threshold", "long_threshold"
                )
            ],
            ranges=ranges,
        )
