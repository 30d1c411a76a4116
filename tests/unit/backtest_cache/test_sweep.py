"""Tests for parameter sweeps through the cache and result store."""

from datetime import date

import pytest

from src.backtest_cache.fingerprint import fingerprint
from src.backtest_cache.models import BacktestResult, DateRange, Tier
from src.backtest_cache.sweep import SweepRunner, build_grid

pytestmark = pytest.mark.unit


class CountingBacktest:
    def __init__(self, fail_assets=()):
        self.calls = []
        self.fail_assets = set(fail_assets)

    def __call__(self, params):
        self.calls.append(params)
        if params.asset in self.fail_assets:
            raise RuntimeError(f"no data for {params.asset}")
        return BacktestResult(
            total_return=float(params.leverage * 10),
            max_drawdown=-float(params.leverage),
            sharpe_ratio=1.1,
            win_rate=52.0,
            num_trades=20,
        )


class TestBuildGrid:
    def test_cross_product(self):
        grid = build_grid(["SOL", "BTC"], [1, 2, 3], [(25, 75), (30, 70)])
        assert len(grid) == 2 * 3 * 2 * 2
        assert len({fingerprint(p).digest for p in grid}) == len(grid)
        assert grid[0].asset == "SOL" and grid[0].leverage == 1

    def test_date_range_applied_to_every_point(self):
        grid = build_grid(["ETH"], [1], [(20, 80)], date_range=("2024-01-01", "2024-03-31"))
        assert all(p.date_range == DateRange(date(2024, 1, 1), date(2024, 3, 31)) for p in grid)
        assert all(p.is_historical for p in grid)


class TestSweepRunner:
    def test_computes_then_serves_from_cache(self, cache_store, result_store, sample_params):
        backtest = CountingBacktest()
        runner = SweepRunner(cache_store, result_store, backtest)

        first = runner.run(sample_params)
        second = runner.run(sample_params)

        assert first.computed is True and first.row_id is not None
        assert second.computed is False and second.row_id is None
        assert len(backtest.calls) == 1
        assert result_store.count() == 1
        assert second.entry.access_count == 1

    def test_dated_runs_are_promoted(self, cache_store, result_store, make_params):
        params = make_params(date_range=DateRange(date(2024, 1, 1), date(2024, 2, 1)))
        runner = SweepRunner(cache_store, result_store, CountingBacktest())

        outcome = runner.run(params)

        assert outcome.entry.tier is Tier.PERMANENT
        assert cache_store.get(outcome.fingerprint, Tier.PERMANENT) is not None

    def test_undated_runs_stay_temporary(self, cache_store, sample_params):
        outcome = SweepRunner(cache_store, None, CountingBacktest()).run(sample_params)
        assert outcome.entry.tier is Tier.TEMPORARY
        assert cache_store.get(outcome.fingerprint, Tier.PERMANENT) is None

    def test_run_sweep_collects_failures(self, cache_store, result_store):
        grid = build_grid(["SOL", "XYZ"], [1, 2], [(25, 75)], ["momentum"])
        runner = SweepRunner(cache_store, result_store, CountingBacktest(fail_assets={"XYZ"}))

        report = runner.run_sweep(grid, jobs=4)

        assert len(report.outcomes) == 4
        assert report.computed == 2
        assert len(report.failed) == 2
        assert all("no data for XYZ" in o.error for o in report.failed)
        assert [o.params for o in report.outcomes] == grid
        assert result_store.count() == 2
        assert report.to_dict()["failed"] == 2

    def test_invalid_grid_point_is_reported(self, cache_store, make_params):
        grid = [make_params(), make_params(low_threshold=80, high_threshold=20)]
        report = SweepRunner(cache_store, None, CountingBacktest()).run_sweep(grid)

        assert report.computed == 1
        assert len(report.failed) == 1
        assert "low_threshold" in report.failed[0].error

    def test_repeated_sweep_hits_cache(self, cache_store, result_store):
        grid = build_grid(["SOL"], [1, 2, 3], [(25, 75)], ["contrarian"])
        backtest = CountingBacktest()
        runner = SweepRunner(cache_store, result_store, backtest)

        runner.run_sweep(grid, jobs=2, sweep_id="first")
        report = runner.run_sweep(grid, jobs=2, sweep_id="second")

        assert report.sweep_id == "second"
        assert report.cached == 3
        assert report.computed == 0
        assert len(backtest.calls) == 3
        assert result_store.query_distinct("run_id") == ["first"]
