"""
Exception classes for the backtest result cache and query layer.

Each error also derives from the closest builtin so callers that only know the
standard library (``except OSError``, ``except TimeoutError``) still catch it.
"""


class BacktestCacheError(Exception):
    """Base exception for cache and result store errors"""


class ValidationError(BacktestCacheError, ValueError):
    """Raised when backtest parameters are missing or out of their declared domain"""


class NotFoundError(BacktestCacheError, KeyError):
    """Raised when a cache entry or tier is absent"""

    def __str__(self) -> str:
        # KeyError repr()s its argument; keep plain messages readable
        return str(self.args[0]) if self.args else ""


class ConflictError(BacktestCacheError):
    """Raised on a duplicate put without the overwrite flag"""


class StorageError(BacktestCacheError, OSError):
    """Raised when cache storage is unreachable, missing or not writable"""


class ParseError(BacktestCacheError, ValueError):
    """Raised when a cache artifact cannot be decoded"""


class ComputeTimeoutError(BacktestCacheError, TimeoutError):
    """Raised when waiting on an in-flight computation exceeds its bound"""


class QueryError(BacktestCacheError):
    """Raised when the result store is unreachable or a query is malformed"""
