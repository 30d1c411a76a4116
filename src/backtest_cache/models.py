"""
Data models for the backtest result cache.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Any

from .exceptions import ValidationError


class Strategy(str, enum.Enum):
    """Fear & Greed threshold strategy"""

    MOMENTUM = "momentum"
    CONTRARIAN = "contrarian"


class Tier(str, enum.Enum):
    """Cache tier; permanent entries are authoritative and never auto-evicted"""

    TEMPORARY = "temporary"
    PERMANENT = "permanent"


def utc_now() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(UTC)


def to_epoch_ms(value: datetime) -> int:
    return round(value.timestamp() * 1000)


def from_epoch_ms(value: float) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @classmethod
    def parse(cls, raw: Any) -> DateRange:
        """Build from a DateRange, a mapping with start/end, or a (start, end) pair."""
        if isinstance(raw, DateRange):
            return raw
        if isinstance(raw, Mapping):
            start, end = raw.get("start"), raw.get("end")
        elif isinstance(raw, (list, tuple)) and len(raw) == 2:
            start, end = raw
        else:
            raise ValidationError(f"Unrecognised date range: {raw!r}")
        return cls(start=_parse_date(start, "start"), end=_parse_date(end, "end"))

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def _parse_date(value: Any, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"Invalid date range {label}: {value!r}")


# camelCase keys accepted by BacktestParameters.from_mapping
_PARAM_ALIASES = {
    "asset": "asset",
    "symbol": "asset",
    "strategy": "strategy",
    "leverage": "leverage",
    "lowThreshold": "low_threshold",
    "low_threshold": "low_threshold",
    "shortThreshold": "low_threshold",
    "short_threshold": "low_threshold",
    "highThreshold": "high_threshold",
    "high_threshold": "high_threshold",
    "longThreshold": "high_threshold",
    "long_threshold": "high_threshold",
    "timeframe": "timeframe",
    "maxPositionRatio": "max_position_ratio",
    "max_position_ratio": "max_position_ratio",
    "dateRange": "date_range",
    "date_range": "date_range",
    "extremeLowThreshold": "extreme_low_threshold",
    "extreme_low_threshold": "extreme_low_threshold",
    "extremeHighThreshold": "extreme_high_threshold",
    "extreme_high_threshold": "extreme_high_threshold",
}
_REQUIRED_PARAMS = ("asset", "strategy", "leverage", "low_threshold", "high_threshold", "timeframe")


@dataclass(frozen=True)
class BacktestParameters:
    """One point of a parameter sweep.

    Values are stored as given; ``fingerprint()`` normalizes and validates them.
    """

    asset: str
    strategy: Strategy | str
    leverage: int
    low_threshold: float
    high_threshold: float
    timeframe: str
    max_position_ratio: float = 1.0
    date_range: DateRange | None = None
    extreme_low_threshold: float = 0.0
    extreme_high_threshold: float = 100.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> BacktestParameters:
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _PARAM_ALIASES.get(str(key))
            if name is not None and value is not None:
                kwargs[name] = value
        missing = [name for name in _REQUIRED_PARAMS if name not in kwargs]
        if missing:
            raise ValidationError(f"Missing backtest parameters: {', '.join(missing)}")
        if "date_range" in kwargs:
            kwargs["date_range"] = DateRange.parse(kwargs["date_range"])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        strategy = self.strategy.value if isinstance(self.strategy, Strategy) else self.strategy
        out: dict[str, Any] = {
            "asset": self.asset,
            "strategy": strategy,
            "leverage": self.leverage,
            "lowThreshold": self.low_threshold,
            "highThreshold": self.high_threshold,
            "timeframe": self.timeframe,
            "maxPositionRatio": self.max_position_ratio,
            "extremeLowThreshold": self.extreme_low_threshold,
            "extremeHighThreshold": self.extreme_high_threshold,
        }
        if self.date_range is not None:
            out["dateRange"] = self.date_range.to_dict()
        return out

    @property
    def is_historical(self) -> bool:
        """Runs pinned to a fixed date range never change and belong in the permanent tier."""
        return self.date_range is not None


# artifact key -> BacktestResult attribute; first listed key wins on output
_RESULT_FIELDS = {
    "executionTime": "execution_time_ms",
    "executionTimeMs": "execution_time_ms",
    "sharpeRatio": "sharpe_ratio",
    "maxDrawdown": "max_drawdown",
    "winRate": "win_rate",
    "timeInMarket": "time_in_market",
    "numTrades": "num_trades",
    "trades": "num_trades",
    "fees": "fees",
    "funding": "funding",
    "totalReturn": "total_return",
    "returns": "total_return",
    "liquidations": "liquidations",
}


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class BacktestResult:
    execution_time_ms: float | None = None
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    time_in_market: float = 0.0
    num_trades: int = 0
    fees: float = 0.0
    funding: float = 0.0
    total_return: float = 0.0
    liquidations: int = 0
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def drawdown_magnitude(self) -> float:
        return abs(self.max_drawdown)

    def with_execution_time(self, execution_time_ms: float) -> BacktestResult:
        return replace(self, execution_time_ms=float(execution_time_ms))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BacktestResult:
        """Tolerant decode: unknown keys are kept in ``extras``, bad numbers fall back."""
        values: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, raw in data.items():
            attr = _RESULT_FIELDS.get(str(key))
            if attr is None:
                extras[str(key)] = raw
                continue
            if attr in values:
                continue
            number = _as_number(raw)
            if number is None:
                continue
            if attr in ("num_trades", "liquidations"):
                values[attr] = int(number)
            else:
                values[attr] = number
        return cls(extras=extras, **values)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extras)
        out.update(
            {
                "sharpeRatio": self.sharpe_ratio,
                "maxDrawdown": self.max_drawdown,
                "winRate": self.win_rate,
                "timeInMarket": self.time_in_market,
                "numTrades": self.num_trades,
                "fees": self.fees,
                "funding": self.funding,
                "totalReturn": self.total_return,
                "liquidations": self.liquidations,
            }
        )
        if self.execution_time_ms is not None:
            out["executionTime"] = self.execution_time_ms
        return out


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    tier: Tier
    result: BacktestResult
    created_at: datetime
    last_accessed_at: datetime
    access_count: int = 0
    size_bytes: int = 0
    params: dict[str, Any] | None = None

    @property
    def execution_time_ms(self) -> float | None:
        return self.result.execution_time_ms

    def age_seconds(self, now: datetime | None = None) -> float:
        return ((now or utc_now()) - self.created_at).total_seconds()


@dataclass(frozen=True)
class EvictionPolicy:
    """Budget for the temporary tier; either limit may be omitted."""

    max_age_seconds: float | None = None
    max_total_bytes: int | None = None

    def __post_init__(self) -> None:
        if self.max_age_seconds is not None and self.max_age_seconds < 0:
            raise ValidationError("max_age_seconds must be >= 0")
        if self.max_total_bytes is not None and self.max_total_bytes < 0:
            raise ValidationError("max_total_bytes must be >= 0")


@dataclass(frozen=True)
class CacheStatsSnapshot:
    total_entries: int = 0
    permanent_entries: int = 0
    cache_size_bytes: int = 0
    estimated_hit_rate: float = 0.0
    avg_execution_time_ms: float = 0.0
    avg_cache_response_time_ms: float = 0.0
    soft_failures: int = 0
    total_accesses: int = 0
    observed_hit_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Response shape of the cache stats interface."""
        return {
            "totalEntries": self.total_entries,
            "permanentEntries": self.permanent_entries,
            "cacheSize": self.cache_size_bytes,
            "hitRate": self.estimated_hit_rate,
            "avgExecutionTime": self.avg_execution_time_ms,
            "avgCacheResponseTime": self.avg_cache_response_time_ms,
        }


@dataclass(frozen=True)
class ResultRow:
    """One completed backtest run, flattened for the result store."""

    asset: str
    strategy: str
    timeframe: str
    leverage: int
    short_threshold: float
    long_threshold: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    time_in_market: float
    num_trades: int
    fees: float
    funding: float
    total_return: float
    run_id: str
    timestamp: datetime = field(default_factory=utc_now)
    extreme_low_threshold: float | None = None
    extreme_high_threshold: float | None = None
    max_position_ratio: float | None = None
    liquidations: int = 0
    execution_time_ms: float | None = None
    fingerprint: str | None = None
    extras: dict[str, Any] | None = None

    @classmethod
    def from_run(
        cls,
        params: BacktestParameters,
        result: BacktestResult,
        *,
        run_id: str,
        fingerprint: str | None = None,
        timestamp: datetime | None = None,
    ) -> ResultRow:
        strategy = params.strategy
        if isinstance(strategy, Strategy):
            strategy = strategy.value
        return cls(
            asset=str(params.asset).strip().upper(),
            strategy=str(strategy).strip().lower(),
            timeframe=str(params.timeframe).strip().lower(),
            leverage=int(params.leverage),
            short_threshold=float(params.low_threshold),
            long_threshold=float(params.high_threshold),
            sharpe_ratio=result.sharpe_ratio,
            max_drawdown=result.max_drawdown,
            win_rate=result.win_rate,
            time_in_market=result.time_in_market,
            num_trades=result.num_trades,
            fees=result.fees,
            funding=result.funding,
            total_return=result.total_return,
            run_id=run_id,
            timestamp=timestamp or utc_now(),
            extreme_low_threshold=float(params.extreme_low_threshold),
            extreme_high_threshold=float(params.extreme_high_threshold),
            max_position_ratio=float(params.max_position_ratio),
            liquidations=result.liquidations,
            execution_time_ms=result.execution_time_ms,
            fingerprint=fingerprint,
            extras=dict(result.extras) or None,
        )
