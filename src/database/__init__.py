"""Database package: result store and filter option queries."""

from .filter_options import (
    FilterOptions,
    FilterOptionsResponse,
    FilterQueryEngine,
    default_filter_options,
)
from .models import BacktestRun, Base
from .result_store import MetricRange, ResultStore, risk_level

__all__ = [
    "BacktestRun",
    "Base",
    "FilterOptions",
    "FilterOptionsResponse",
    "FilterQueryEngine",
    "MetricRange",
    "ResultStore",
    "default_filter_options",
    "risk_level",
]
