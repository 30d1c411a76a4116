"""
Centralized constant values for the backtest result cache.
"""

# Cache layout
DEFAULT_CACHE_DIRNAME = ".cache/backtests"
TEMPORARY_DIRNAME = "temporary"
PERMANENT_DIRNAME = "permanent"
ARTIFACT_SUFFIX = ".json"
ARTIFACT_VERSION = "1.0"

# Cache timing
DEFAULT_STALE_AFTER_HOURS = 24.0  # temporary entries older than this are misses
DEFAULT_LOCK_TIMEOUT_SEC = 30.0
DEFAULT_COMPUTE_TIMEOUT_SEC = 600.0
LATENCY_SAMPLE_WINDOW = 500  # measured cache-hit latencies kept in memory

# Stats heuristics
HIT_RATE_CEILING_PCT = 95.0
HIT_RATE_SATURATION_ENTRIES = 10
DEFAULT_CACHE_RESPONSE_TIME_MS = 15.0

# Result store
DEFAULT_RESULTS_DB_RELPATH = "backtest-results/all-backtests.db"
RESULTS_TABLE_NAME = "backtests"

# Filter options
DEFAULT_FILTER_OPTIONS_TTL_SEC = 30.0
DEFAULT_ASSETS = ("ETH", "BTC", "SOL")
DEFAULT_STRATEGIES = ("momentum", "contrarian")
DEFAULT_LEVERAGES = tuple(range(1, 11))
DEFAULT_METRIC_RANGES = {
    "sharpeRatio": (-2.0, 5.0),
    "drawdown": (0.0, 100.0),
    "winRate": (0.0, 100.0),
    "timeInMarket": (0.0, 100.0),
    "trades": (0.0, 1000.0),
    "fees": (-10000.0, 0.0),
    "funding": (-10000.0, 10000.0),
    "totalReturn": (-100.0, 5000.0),
}

# Fingerprint normalization
THRESHOLD_DECIMALS = 2
POSITION_RATIO_DECIMALS = 4
FINGERPRINT_FORMAT_VERSION = "v1"
