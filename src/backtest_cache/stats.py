"""
Read-only performance snapshot over both cache tiers.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from src.config.constants import (
    DEFAULT_CACHE_RESPONSE_TIME_MS,
    HIT_RATE_CEILING_PCT,
    HIT_RATE_SATURATION_ENTRIES,
)

from .exceptions import BacktestCacheError
from .models import CacheEntry, CacheStatsSnapshot, Tier, to_epoch_ms, utc_now
from .store import CacheStore

logger = logging.getLogger(__name__)


def estimate_hit_rate(total_entries: int) -> float:
    """Saturating estimate of the hit rate from corpus size alone.

    Approaches but never reaches the ceiling; it is a heuristic, not a measured
    ratio (see ``CacheStatsSnapshot.observed_hit_rate`` for that).
    """
    if total_entries <= 0:
        return 0.0
    return min(
        HIT_RATE_CEILING_PCT,
        total_entries / (total_entries + HIT_RATE_SATURATION_ENTRIES) * 100,
    )


@dataclass
class _TierScan:
    entries: int = 0
    size_bytes: int = 0
    soft_failures: int = 0
    accesses: int = 0
    execution_times: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class CoverageReport:
    total_cached: int
    last_updated_ms: int
    by_leverage: dict[int, int]
    by_strategy: dict[str, int]
    by_thresholds: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCached": self.total_cached,
            "lastUpdated": self.last_updated_ms,
            "coverageByLeverage": dict(self.by_leverage),
            "coverageByStrategy": dict(self.by_strategy),
            "coverageByThresholds": dict(self.by_thresholds),
        }


class CacheStatsAggregator:
    """Derives CacheStatsSnapshot values by scanning a CacheStore. Never raises."""

    def __init__(self, store: CacheStore):
        self.store = store

    def _scan_tier(self, tier: Tier) -> _TierScan:
        scan = _TierScan()
        try:
            paths = self.store.list_artifacts(tier)
        except Exception as exc:
            logger.warning("Cannot list %s cache tier: %s", tier.value, exc)
            return scan

        for path in paths:
            try:
                entry = self.store.read_artifact(path, tier)
            except Exception as exc:
                scan.soft_failures += 1
                logger.warning("Skipping unreadable cache artifact %s: %s", path.name, exc)
                continue
            scan.entries += 1
            scan.size_bytes += entry.size_bytes
            scan.accesses += entry.access_count
            if entry.execution_time_ms is not None:
                scan.execution_times.append(entry.execution_time_ms)
        return scan

    def snapshot(self) -> CacheStatsSnapshot:
        temporary = self._scan_tier(Tier.TEMPORARY)
        permanent = self._scan_tier(Tier.PERMANENT)

        total_entries = temporary.entries + permanent.entries
        samples = temporary.execution_times + permanent.execution_times
        avg_execution = sum(samples) / len(samples) if samples else 0.0

        measured = self.store.telemetry.avg_hit_latency_ms()
        response_time = measured if measured is not None else DEFAULT_CACHE_RESPONSE_TIME_MS

        snapshot = CacheStatsSnapshot(
            total_entries=total_entries,
            permanent_entries=permanent.entries,
            cache_size_bytes=temporary.size_bytes + permanent.size_bytes,
            estimated_hit_rate=estimate_hit_rate(total_entries),
            avg_execution_time_ms=avg_execution,
            avg_cache_response_time_ms=response_time,
            soft_failures=temporary.soft_failures + permanent.soft_failures,
            total_accesses=temporary.accesses + permanent.accesses,
            observed_hit_rate=self.store.telemetry.observed_hit_rate(),
        )
        if snapshot.soft_failures:
            logger.info("Cache stats skipped %d unreadable artifacts", snapshot.soft_failures)
        return snapshot

    def coverage(self, asset: str, timeframe: str) -> CoverageReport:
        """Counts fresh temporary entries for one asset/timeframe by sweep dimension."""
        asset_key = asset.strip().upper()
        timeframe_key = timeframe.strip().lower()
        now = utc_now()

        matching: list[CacheEntry] = []
        try:
            for entry in self.store.iter_entries(Tier.TEMPORARY):
                params = entry.params or {}
                if str(params.get("asset", "")).upper() != asset_key:
                    continue
                if str(params.get("timeframe", "")).lower() != timeframe_key:
                    continue
                if self.store.is_stale(entry, now):
                    continue
                matching.append(entry)
        except BacktestCacheError as exc:
            logger.warning("Coverage scan aborted: %s", exc)

        by_leverage: Counter[int] = Counter()
        by_strategy: Counter[str] = Counter({"contrarian": 0, "momentum": 0})
        by_thresholds: Counter[str] = Counter()
        for entry in matching:
            params = entry.params or {}
            try:
                by_leverage[int(params.get("leverage", 0))] += 1
            except (TypeError, ValueError):
                pass
            by_strategy[str(params.get("strategy", "unknown"))] += 1
            by_thresholds[f"{params.get('lowThreshold')}-{params.get('highThreshold')}"] += 1

        last_updated = max((to_epoch_ms(e.created_at) for e in matching), default=0)
        return CoverageReport(
            total_cached=len(matching),
            last_updated_ms=last_updated,
            by_leverage=dict(by_leverage),
            by_strategy=dict(by_strategy),
            by_thresholds=dict(by_thresholds),
        )
