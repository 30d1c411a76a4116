"""
Parameter sweeps over the cache and result store.

Each grid point is fingerprinted, served from the cache when possible and
otherwise computed once by the caller-supplied backtest; fresh computations are
also appended to the result store.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from src.infrastructure.logging.context import new_sweep_id, use_context

from .exceptions import BacktestCacheError
from .fingerprint import fingerprint
from .models import (
    BacktestParameters,
    BacktestResult,
    CacheEntry,
    DateRange,
    ResultRow,
    Strategy,
    Tier,
)

if TYPE_CHECKING:  # pragma: no cover
    from src.database.result_store import ResultStore

    from .store import CacheStore

logger = logging.getLogger(__name__)

BacktestFn = Callable[[BacktestParameters], BacktestResult | Mapping[str, Any]]


def build_grid(
    assets: Iterable[str],
    leverages: Iterable[int],
    thresholds: Iterable[tuple[float, float]],
    strategies: Iterable[Strategy | str] = (Strategy.MOMENTUM, Strategy.CONTRARIAN),
    *,
    timeframe: str = "4h",
    max_position_ratio: float = 1.0,
    date_range: DateRange | tuple[date | str, date | str] | None = None,
) -> list[BacktestParameters]:
    """Cross product assets x leverages x threshold pairs x strategies, in that order."""
    dates = DateRange.parse(date_range) if date_range is not None else None
    return [
        BacktestParameters(
            asset=asset,
            strategy=strategy,
            leverage=leverage,
            low_threshold=low,
            high_threshold=high,
            timeframe=timeframe,
            max_position_ratio=max_position_ratio,
            date_range=dates,
        )
        for asset, leverage, (low, high), strategy in itertools.product(
            list(assets), list(leverages), list(thresholds), list(strategies)
        )
    ]


@dataclass(frozen=True)
class SweepOutcome:
    params: BacktestParameters
    fingerprint: str | None = None
    entry: CacheEntry | None = None
    computed: bool = False
    row_id: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SweepReport:
    sweep_id: str
    outcomes: list[SweepOutcome] = field(default_factory=list)

    @property
    def computed(self) -> int:
        return sum(1 for o in self.outcomes if o.computed)

    @property
    def cached(self) -> int:
        return sum(1 for o in self.outcomes if o.ok and not o.computed)

    @property
    def failed(self) -> list[SweepOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweepId": self.sweep_id,
            "total": len(self.outcomes),
            "computed": self.computed,
            "cached": self.cached,
            "failed": len(self.failed),
            "errors": [
                {"params": o.params.to_dict(), "error": o.error} for o in self.failed
            ],
        }


class SweepRunner:
    def __init__(
        self,
        store: CacheStore,
        results: ResultStore | None,
        backtest: BacktestFn,
    ):
        self.store = store
        self.results = results
        self.backtest = backtest

    def run(self, params: BacktestParameters, *, run_id: str | None = None) -> SweepOutcome:
        """Serve one parameter set from cache or compute it.

        Dated (historical) runs are promoted to the permanent tier. A result row
        is appended only when this call performed the computation.
        """
        fp = fingerprint(params)
        computed = False

        def compute() -> BacktestResult | Mapping[str, Any]:
            nonlocal computed
            computed = True
            return self.backtest(params)

        entry = self.store.compute_or_get(fp, compute, params=params.to_dict())
        if params.is_historical and entry.tier is not Tier.PERMANENT:
            entry = self.store.promote(fp)

        row_id = None
        if computed and self.results is not None:
            row_id = self.results.append(
                ResultRow.from_run(
                    params, entry.result, run_id=run_id or new_sweep_id(), fingerprint=fp.digest
                )
            )
        return SweepOutcome(
            params=params, fingerprint=fp.digest, entry=entry, computed=computed, row_id=row_id
        )

    def _run_item(self, params: BacktestParameters, sweep_id: str) -> SweepOutcome:
        with use_context(sweep_id=sweep_id):
            try:
                return self.run(params, run_id=sweep_id)
            except BacktestCacheError as exc:
                logger.warning("Sweep item %s failed: %s", params.to_dict(), exc)
                return SweepOutcome(params=params, error=str(exc))
            except Exception as exc:
                logger.exception("Backtest raised for %s", params.to_dict())
                return SweepOutcome(params=params, error=f"{type(exc).__name__}: {exc}")

    def run_sweep(
        self,
        grid: Sequence[BacktestParameters],
        jobs: int = 1,
        *,
        sweep_id: str | None = None,
    ) -> SweepReport:
        """Run every grid point; per-item failures are collected in the report."""
        report = SweepReport(sweep_id=sweep_id or new_sweep_id())
        logger.info(
            "Starting sweep %s: %d parameter sets, %d jobs", report.sweep_id, len(grid), jobs
        )

        if jobs <= 1:
            report.outcomes = [self._run_item(p, report.sweep_id) for p in grid]
        else:
            with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="backtest_sweep") as pool:
                futures = {
                    pool.submit(self._run_item, p, report.sweep_id): index
                    for index, p in enumerate(grid)
                }
                ordered: list[SweepOutcome | None] = [None] * len(grid)
                for future in as_completed(futures):
                    ordered[futures[future]] = future.result()
            report.outcomes = [o for o in ordered if o is not None]

        logger.info(
            "Sweep %s finished: %d computed, %d cached, %d failed",
            report.sweep_id,
            report.computed,
            report.cached,
            len(report.failed),
        )
        return report
