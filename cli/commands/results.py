from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from src.backtest_cache.exceptions import QueryError
from src.config.settings import CacheSettings
from src.database.filter_options import FilterOptionsResponse, FilterQueryEngine
from src.database.result_store import ResultStore

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _open_results(ns: argparse.Namespace) -> ResultStore:
    url = getattr(ns, "database_url", None) or CacheSettings.from_config().results_database_url
    return ResultStore(url)


def _filter_options(ns: argparse.Namespace) -> int:
    try:
        store = _open_results(ns)
    except QueryError as e:
        logger.error("Cannot open result store: %s", e)
        response = FilterOptionsResponse.fallback("Failed to fetch filter options")
    else:
        try:
            response = FilterQueryEngine(store, cache_ttl_seconds=0).filter_options()
        finally:
            store.close()
    _print_json(response.to_dict())
    return 0 if response.success else 1


def _top(ns: argparse.Namespace) -> int:
    try:
        store = _open_results(ns)
        try:
            payload = store.top_runs(limit=ns.limit, sort_by=ns.sort_by, asset=ns.asset)
        finally:
            store.close()
    except QueryError as e:
        print(f"Error: {e}")
        return 1
    _print_json(payload)
    return 0


def _summary(ns: argparse.Namespace) -> int:
    try:
        store = _open_results(ns)
        try:
            payload = store.summary()
        finally:
            store.close()
    except QueryError as e:
        print(f"Error: {e}")
        return 1
    _print_json(payload)
    return 0


def _export(ns: argparse.Namespace) -> int:
    try:
        store = _open_results(ns)
        try:
            df = store.to_dataframe(asset=ns.asset)
        finally:
            store.close()
    except QueryError as e:
        print(f"Error: {e}")
        return 1
    df.to_csv(ns.output, index=False)
    print(f"Wrote {len(df)} rows to {ns.output}")
    return 0


def register(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser("results", help="Query the backtest result store")
    p.add_argument("--database-url", dest="database_url", help="Result store URL override")
    sub = p.add_subparsers(dest="results_cmd", required=True)

    p_opts = sub.add_parser("filter-options", help="Distinct values and metric ranges")
    p_opts.set_defaults(func=_filter_options)

    p_top = sub.add_parser("top", help="Best runs with risk levels")
    p_top.add_argument("--limit", type=int, default=10)
    p_top.add_argument(
        "--sort-by",
        dest="sort_by",
        choices=["totalReturn", "sharpeRatio", "monthlyReturn"],
        default="totalReturn",
    )
    p_top.add_argument("--asset", default=None, help="Asset filter ('all' for every asset)")
    p_top.set_defaults(func=_top)

    p_summary = sub.add_parser("summary", help="Aggregate statistics over all runs")
    p_summary.set_defaults(func=_summary)

    p_export = sub.add_parser("export", help="Write runs to CSV")
    p_export.add_argument("output")
    p_export.add_argument("--asset", default=None)
    p_export.set_defaults(func=_export)
