"""Two-tier backtest result cache."""

from .exceptions import (
    BacktestCacheError,
    ComputeTimeoutError,
    ConflictError,
    NotFoundError,
    ParseError,
    QueryError,
    StorageError,
    ValidationError,
)
from .fingerprint import Fingerprint, fingerprint, normalize_fingerprint
from .models import (
    BacktestParameters,
    BacktestResult,
    CacheEntry,
    CacheStatsSnapshot,
    DateRange,
    EvictionPolicy,
    ResultRow,
    Strategy,
    Tier,
)
from .stats import CacheStatsAggregator, CoverageReport, estimate_hit_rate
from .store import CacheStore, CacheTelemetry
from .sweep import SweepOutcome, SweepReport, SweepRunner, build_grid

__all__ = [
    "BacktestCacheError",
    "BacktestParameters",
    "BacktestResult",
    "CacheEntry",
    "CacheStatsAggregator",
    "CacheStatsSnapshot",
    "CacheStore",
    "CacheTelemetry",
    "ComputeTimeoutError",
    "ConflictError",
    "CoverageReport",
    "DateRange",
    "EvictionPolicy",
    "Fingerprint",
    "NotFoundError",
    "ParseError",
    "QueryError",
    "ResultRow",
    "StorageError",
    "Strategy",
    "SweepOutcome",
    "SweepReport",
    "SweepRunner",
    "Tier",
    "ValidationError",
    "build_grid",
    "estimate_hit_rate",
    "fingerprint",
    "normalize_fingerprint",
]
