"""Tests for CacheStatsAggregator snapshots and coverage reports."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from src.backtest_cache.fingerprint import fingerprint
from src.backtest_cache.models import BacktestResult, Tier, to_epoch_ms, utc_now
from src.backtest_cache.stats import CacheStatsAggregator, estimate_hit_rate

pytestmark = pytest.mark.unit


def _payload(name, execution_time=None, *, nested=True, **extra):
    result = {"totalReturn": 1.0}
    payload = {"fingerprint": name, "createdAt": to_epoch_ms(utc_now()), "result": result}
    if execution_time is not None:
        if nested:
            result["executionTime"] = execution_time
        else:
            payload["executionTime"] = execution_time
    payload.update(extra)
    return payload


class TestEstimateHitRate:
    @pytest.mark.parametrize(
        "entries,expected",
        [(0, 0.0), (5, 100 / 3), (10, 50.0), (190, 95.0), (10_000, 95.0)],
    )
    def test_saturating_formula(self, entries, expected):
        assert estimate_hit_rate(entries) == pytest.approx(expected)


class TestSnapshot:
    def test_mixed_tiers(self, cache_store, write_artifact):
        for name, ms in (("t1", 100), ("t2", 200), ("t3", 300)):
            write_artifact(name, _payload(name, ms))
        for name, ms in (("p1", 150), ("p2", 250)):
            write_artifact(name, _payload(name, ms), Tier.PERMANENT)

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.total_entries == 5
        assert snapshot.permanent_entries == 2
        assert snapshot.avg_execution_time_ms == pytest.approx(200.0)
        assert snapshot.estimated_hit_rate == pytest.approx(33.333, abs=0.01)
        assert snapshot.soft_failures == 0

    def test_corrupt_artifact_is_skipped(self, cache_store, write_artifact):
        for i, ms in enumerate((100, 200, 300, 400)):
            write_artifact(f"ok{i}", _payload(f"ok{i}", ms))
        write_artifact("broken", "{\"result\": [1, 2")

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.total_entries == 4
        assert snapshot.soft_failures == 1
        assert snapshot.avg_execution_time_ms == pytest.approx(250.0)
        assert snapshot.estimated_hit_rate == pytest.approx(4 / 14 * 100)

    def test_top_level_and_nested_execution_time(self, cache_store, write_artifact):
        write_artifact("nested", _payload("nested", 100))
        write_artifact("legacy", _payload("legacy", 300, nested=False))
        both = _payload("both", 500)
        both["executionTime"] = 9999
        write_artifact("both", both)
        write_artifact("untimed", _payload("untimed"))

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.total_entries == 4
        assert snapshot.avg_execution_time_ms == pytest.approx(300.0)

    def test_empty_and_missing_directories(self, cache_store, cache_root):
        (cache_root / "temporary").rmdir()
        (cache_root / "permanent").rmdir()

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.total_entries == 0
        assert snapshot.estimated_hit_rate == 0.0
        assert snapshot.avg_execution_time_ms == 0.0
        assert snapshot.cache_size_bytes == 0

    def test_listing_failure_yields_empty_snapshot(self, cache_store):
        with patch.object(cache_store, "list_artifacts", side_effect=OSError("gone")):
            snapshot = CacheStatsAggregator(cache_store).snapshot()
        assert snapshot.total_entries == 0

    def test_cache_size_sums_readable_artifacts(self, cache_store, write_artifact):
        a = write_artifact("a", _payload("a", 10))
        b = write_artifact("b", _payload("b", 20), Tier.PERMANENT)
        write_artifact("junk", "not json at all")

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.cache_size_bytes == a.stat().st_size + b.stat().st_size

    def test_legacy_permanent_flag_does_not_override_directory(self, cache_store, write_artifact):
        write_artifact("old", _payload("old", 10, isPermanent=True))

        snapshot = CacheStatsAggregator(cache_store).snapshot()

        assert snapshot.permanent_entries == 0
        assert snapshot.total_entries == 1

    def test_response_time_defaults_then_uses_measurements(self, cache_store, sample_params):
        aggregator = CacheStatsAggregator(cache_store)
        assert aggregator.snapshot().avg_cache_response_time_ms == 15.0

        fp = fingerprint(sample_params)
        cache_store.compute_or_get(fp, lambda: BacktestResult(total_return=1.0))
        cache_store.compute_or_get(fp, lambda: BacktestResult(total_return=1.0))

        snapshot = aggregator.snapshot()
        assert snapshot.avg_cache_response_time_ms == pytest.approx(
            cache_store.telemetry.avg_hit_latency_ms()
        )
        assert snapshot.observed_hit_rate == pytest.approx(50.0)
        assert snapshot.total_accesses == 1

    def test_to_dict_shape(self, cache_store):
        payload = CacheStatsAggregator(cache_store).snapshot().to_dict()
        assert set(payload) == {
            "totalEntries",
            "permanentEntries",
            "cacheSize",
            "hitRate",
            "avgExecutionTime",
            "avgCacheResponseTime",
        }


class TestCoverage:
    def test_counts_fresh_entries_by_dimension(self, cache_store, make_params):
        for params in (
            make_params(leverage=2),
            make_params(leverage=2, strategy="contrarian"),
            make_params(leverage=5, low_threshold=30, high_threshold=70),
            make_params(asset="BTC"),
            make_params(timeframe="1h"),
        ):
            cache_store.put(
                fingerprint(params), BacktestResult(total_return=1.0), params=params.to_dict()
            )

        report = CacheStatsAggregator(cache_store).coverage("sol", "4H")

        assert report.total_cached == 3
        assert report.by_leverage == {2: 2, 5: 1}
        assert report.by_strategy == {"contrarian": 1, "momentum": 2}
        assert report.by_thresholds == {"25-75": 2, "30-70": 1}
        assert report.last_updated_ms > 0
        assert report.to_dict()["coverageByStrategy"] == {"contrarian": 1, "momentum": 2}

    def test_stale_entries_excluded(self, cache_store, write_artifact, make_params):
        params = make_params()
        digest = fingerprint(params).digest
        write_artifact(
            digest,
            {
                "fingerprint": digest,
                "createdAt": to_epoch_ms(utc_now() - timedelta(hours=30)),
                "params": params.to_dict(),
                "result": {},
            },
        )

        report = CacheStatsAggregator(cache_store).coverage("SOL", "4h")

        assert report.total_cached == 0
        assert report.by_strategy == {"contrarian": 0, "momentum": 0}
        assert report.last_updated_ms == 0
