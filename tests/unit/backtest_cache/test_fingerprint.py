"""Tests for backtest parameter fingerprinting."""

import itertools
from datetime import date

import pytest

from src.backtest_cache.exceptions import ValidationError
from src.backtest_cache.fingerprint import (
    Fingerprint,
    canonical_fields,
    fingerprint,
    normalize_fingerprint,
)
from src.backtest_cache.models import BacktestParameters, DateRange, Strategy

pytestmark = pytest.mark.unit


class TestDeterminism:
    def test_same_parameters_same_digest(self, sample_params):
        assert fingerprint(sample_params) == fingerprint(sample_params)

    def test_mapping_key_order_and_case_do_not_matter(self, sample_params):
        mapping = {
            "timeframe": " 4H ",
            "highThreshold": "75.00",
            "leverage": 3.0,
            "lowThreshold": 25,
            "strategy": "Momentum",
            "asset": " sol",
        }
        assert fingerprint(mapping).digest == fingerprint(sample_params).digest

    def test_snake_case_and_legacy_threshold_aliases(self, sample_params):
        mapping = {
            "asset": "SOL",
            "strategy": "momentum",
            "leverage": 3,
            "short_threshold": 25,
            "long_threshold": 75,
            "timeframe": "4h",
        }
        assert fingerprint(mapping) == fingerprint(sample_params)

    def test_float_noise_below_precision_is_ignored(self, make_params):
        assert fingerprint(make_params(low_threshold=25.000000001)) == fingerprint(
            make_params(low_threshold=25)
        )

    def test_digest_is_sha256_hex(self, sample_params):
        fp = fingerprint(sample_params)
        assert isinstance(fp, Fingerprint)
        assert len(fp.digest) == 64
        assert str(fp) == fp.digest
        assert fp.canonical.startswith("v1|asset=SOL|strategy=momentum|timeframe=4h|leverage=3")

    def test_date_range_formats_agree(self, make_params):
        a = make_params(date_range=DateRange(date(2024, 1, 1), date(2024, 3, 31)))
        b = BacktestParameters.from_mapping(
            {
                **a.to_dict(),
                "dateRange": {"start": "2024-01-01T00:00:00Z", "end": "2024-03-31"},
            }
        )
        assert fingerprint(a) == fingerprint(b)


class TestCollisions:
    def test_generated_corpus_has_no_collisions(self):
        corpus = [
            BacktestParameters(
                asset=asset,
                strategy=strategy,
                leverage=leverage,
                low_threshold=low,
                high_threshold=high,
                timeframe=timeframe,
            )
            for asset, strategy, leverage, (low, high), timeframe in itertools.product(
                ["BTC", "ETH", "SOL"],
                list(Strategy),
                [1, 2, 5, 10],
                [(20, 80), (25, 75), (25.5, 75), (30, 70), (30, 70.01)],
                ["1h", "4h", "1d"],
            )
        ]
        digests = {fingerprint(p).digest for p in corpus}
        assert len(digests) == len(corpus)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("asset", "BTC"),
            ("strategy", "contrarian"),
            ("leverage", 4),
            ("low_threshold", 26),
            ("high_threshold", 74),
            ("timeframe", "1h"),
            ("max_position_ratio", 0.5),
            ("extreme_low_threshold", 5),
            ("extreme_high_threshold", 95),
            ("date_range", DateRange(date(2024, 1, 1), date(2024, 2, 1))),
        ],
    )
    def test_single_field_change_changes_digest(self, make_params, field, value):
        assert fingerprint(make_params(**{field: value})) != fingerprint(make_params())


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"low_threshold": 75, "high_threshold": 25},
            {"low_threshold": 50, "high_threshold": 50},
            {"low_threshold": -1},
            {"high_threshold": 100.5},
            {"leverage": 0},
            {"leverage": -2},
            {"leverage": 2.5},
            {"leverage": "lots"},
            {"strategy": "martingale"},
            {"timeframe": "4 hours"},
            {"timeframe": "0h"},
            {"max_position_ratio": 1.5},
            {"low_threshold": float("nan")},
            {"asset": "  "},
            {"extreme_low_threshold": 90, "extreme_high_threshold": 10},
            {"date_range": DateRange(date(2024, 5, 1), date(2024, 1, 1))},
        ],
    )
    def test_out_of_domain_values_rejected(self, make_params, overrides):
        with pytest.raises(ValidationError):
            fingerprint(make_params(**overrides))

    def test_missing_required_field_rejected(self):
        with pytest.raises(ValidationError, match="timeframe"):
            fingerprint(
                {
                    "asset": "SOL",
                    "strategy": "momentum",
                    "leverage": 1,
                    "lowThreshold": 20,
                    "highThreshold": 80,
                }
            )

    def test_validation_error_is_value_error(self, make_params):
        with pytest.raises(ValueError):
            fingerprint(make_params(leverage=0))

    def test_canonical_fields_are_ordered(self, sample_params):
        names = [name for name, _ in canonical_fields(sample_params)]
        assert names[:4] == ["asset", "strategy", "timeframe", "leverage"]
        assert names[-2:] == ["start", "end"]


class TestNormalizeFingerprint:
    def test_accepts_fingerprint_or_digest(self, sample_params):
        fp = fingerprint(sample_params)
        assert normalize_fingerprint(fp) == fp.digest
        assert normalize_fingerprint(f"  {fp.digest} ") == fp.digest

    @pytest.mark.parametrize("value", ["", "../../etc/passwd", "A" * 64, "abc"])
    def test_rejects_non_digests(self, value):
        with pytest.raises(ValidationError):
            normalize_fingerprint(value)
