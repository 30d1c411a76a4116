from __future__ import annotations

import argparse
import json
from dataclasses import replace
from typing import Any

from src.backtest_cache.exceptions import BacktestCacheError
from src.backtest_cache.models import EvictionPolicy, Tier
from src.backtest_cache.stats import CacheStatsAggregator
from src.backtest_cache.store import CacheStore
from src.config.settings import CacheSettings


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=False, default=str))


def _settings(ns: argparse.Namespace) -> CacheSettings:
    settings = CacheSettings.from_config()
    if getattr(ns, "cache_dir", None):
        settings = replace(settings, cache_dir=ns.cache_dir)
    return settings


def _open_store(ns: argparse.Namespace) -> CacheStore:
    return CacheStore.from_settings(_settings(ns))


def _stats(ns: argparse.Namespace) -> int:
    try:
        snapshot = CacheStatsAggregator(_open_store(ns)).snapshot()
    except BacktestCacheError as e:
        print(f"Error: {e}")
        return 1
    payload = snapshot.to_dict()
    if ns.verbose:
        payload.update(
            {
                "softFailures": snapshot.soft_failures,
                "totalAccesses": snapshot.total_accesses,
            }
        )
    _print_json(payload)
    return 0


def _coverage(ns: argparse.Namespace) -> int:
    try:
        report = CacheStatsAggregator(_open_store(ns)).coverage(ns.asset, ns.timeframe)
    except BacktestCacheError as e:
        print(f"Error: {e}")
        return 1
    _print_json(report.to_dict())
    return 0


def _promote(ns: argparse.Namespace) -> int:
    try:
        entry = _open_store(ns).promote(ns.fingerprint)
    except BacktestCacheError as e:
        print(f"Error: {e}")
        return 1
    print(f"Promoted {entry.fingerprint} to {entry.tier.value}")
    return 0


def _evict(ns: argparse.Namespace) -> int:
    settings = _settings(ns)
    max_bytes = ns.max_bytes if ns.max_bytes is not None else settings.eviction_max_bytes
    max_age = (
        ns.max_age_hours * 3600
        if ns.max_age_hours is not None
        else settings.eviction_max_age_seconds
    )
    if max_bytes is None and max_age is None:
        print(
            "Nothing to do: set --max-bytes/--max-age-hours"
            " or BACKTEST_CACHE_MAX_BYTES/_AGE_HOURS"
        )
        return 1
    try:
        policy = EvictionPolicy(max_age_seconds=max_age, max_total_bytes=max_bytes)
        removed = CacheStore.from_settings(settings).evict_temporary(policy)
    except BacktestCacheError as e:
        print(f"Error: {e}")
        return 1
    print(f"Evicted {removed} temporary entries")
    return 0


def _delete(ns: argparse.Namespace) -> int:
    tier = Tier(ns.tier)
    if tier is Tier.PERMANENT and not ns.yes:
        print("Refusing to delete a permanent entry without --yes")
        return 1
    try:
        removed = _open_store(ns).delete(ns.fingerprint, tier)
    except BacktestCacheError as e:
        print(f"Error: {e}")
        return 1
    if not removed:
        print(f"No {tier.value} entry for {ns.fingerprint}")
        return 1
    print(f"Deleted {tier.value} entry {ns.fingerprint}")
    return 0


def register(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("cache", help="Backtest cache maintenance")
    p.add_argument("--cache-dir", dest="cache_dir", help="Cache root override")
    sub = p.add_subparsers(dest="cache_cmd", required=True)

    p_stats = sub.add_parser("stats", help="Show cache statistics")
    p_stats.add_argument("-v", "--verbose", action="store_true", help="Include scan diagnostics")
    p_stats.set_defaults(func=_stats)

    p_cov = sub.add_parser("coverage", help="Fresh temporary entries for one asset/timeframe")
    p_cov.add_argument("--asset", default="SOL")
    p_cov.add_argument("--timeframe", default="4h")
    p_cov.set_defaults(func=_coverage)

    p_promote = sub.add_parser("promote", help="Copy a temporary entry to the permanent tier")
    p_promote.add_argument("fingerprint")
    p_promote.set_defaults(func=_promote)

    p_evict = sub.add_parser("evict", help="Trim the temporary tier by age and/or size")
    p_evict.add_argument("--max-bytes", dest="max_bytes", type=int)
    p_evict.add_argument("--max-age-hours", dest="max_age_hours", type=float)
    p_evict.set_defaults(func=_evict)

    p_delete = sub.add_parser("delete", help="Remove one cache entry")
    p_delete.add_argument("fingerprint")
    p_delete.add_argument(
        "--tier", choices=[t.value for t in Tier], default=Tier.TEMPORARY.value
    )
    p_delete.add_argument("--yes", action="store_true", help="Confirm permanent deletion")
    p_delete.set_defaults(func=_delete)
