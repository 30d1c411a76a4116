"""Canonical identity for a backtest parameter set.

Semantically equal parameter sets (same values regardless of key order, case
or float formatting) produce the same digest. The canonical text lays fields
out in a fixed order with fixed numeric formatting, so the digest is stable
across processes and Python versions.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from src.config.constants import (
    FINGERPRINT_FORMAT_VERSION,
    POSITION_RATIO_DECIMALS,
    THRESHOLD_DECIMALS,
)

from .exceptions import ValidationError
from .models import BacktestParameters, DateRange, Strategy

_TIMEFRAME_PATTERN = re.compile(r"^(\d+)([mhdw])$")


@dataclass(frozen=True)
class Fingerprint:
    digest: str
    canonical: str

    def __str__(self) -> str:
        return self.digest


def _fixed(value: Any, decimals: int, label: str) -> Decimal:
    """Round through Decimal so 60, 60.0, "60.00" and 60.000000001 agree."""
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be numeric, got {value!r}")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{label} must be numeric, got {value!r}") from None
    if not number.is_finite():
        raise ValidationError(f"{label} must be finite, got {value!r}")
    quantum = Decimal(1).scaleb(-decimals)
    try:
        rounded = number.quantize(quantum, rounding=ROUND_HALF_EVEN)
    except InvalidOperation:
        raise ValidationError(f"{label} is out of range: {value!r}") from None
    # normalize -0.00 to 0.00
    return rounded + 0


def _threshold(value: Any, label: str) -> Decimal:
    number = _fixed(value, THRESHOLD_DECIMALS, label)
    if number < 0 or number > 100:
        raise ValidationError(f"{label} must be within [0, 100], got {value!r}")
    return number


def _leverage(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"leverage must be a positive integer, got {value!r}")
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"leverage must be a positive integer, got {value!r}") from None
    if not math.isfinite(number) or number != int(number):
        raise ValidationError(f"leverage must be a positive integer, got {value!r}")
    if number <= 0:
        raise ValidationError(f"leverage must be > 0, got {value!r}")
    return int(number)


def _strategy(value: Any) -> Strategy:
    raw = value.value if isinstance(value, Strategy) else str(value or "").strip().lower()
    try:
        return Strategy(raw)
    except ValueError:
        allowed = ", ".join(s.value for s in Strategy)
        raise ValidationError(f"Unknown strategy {value!r} (expected one of: {allowed})") from None


def _timeframe(value: Any) -> str:
    raw = str(value or "").strip().lower()
    match = _TIMEFRAME_PATTERN.match(raw)
    if not match or int(match.group(1)) <= 0:
        raise ValidationError(f"Invalid timeframe {value!r} (expected e.g. 15m, 1h, 4h, 1d)")
    return f"{int(match.group(1))}{match.group(2)}"


def canonical_fields(params: BacktestParameters | Mapping[str, Any]) -> list[tuple[str, str]]:
    """Validate and normalize parameters into ordered (name, text) pairs."""
    if isinstance(params, Mapping):
        params = BacktestParameters.from_mapping(params)

    asset = str(params.asset or "").strip().upper()
    if not asset:
        raise ValidationError("asset is required")

    low = _threshold(params.low_threshold, "low_threshold")
    high = _threshold(params.high_threshold, "high_threshold")
    if low >= high:
        raise ValidationError(f"low_threshold ({low}) must be below high_threshold ({high})")

    extreme_low = _threshold(params.extreme_low_threshold, "extreme_low_threshold")
    extreme_high = _threshold(params.extreme_high_threshold, "extreme_high_threshold")
    if extreme_low > extreme_high:
        raise ValidationError("extreme_low_threshold must not exceed extreme_high_threshold")

    ratio = _fixed(params.max_position_ratio, POSITION_RATIO_DECIMALS, "max_position_ratio")
    if ratio < 0 or ratio > 1:
        raise ValidationError(
            f"max_position_ratio must be within [0, 1], got {params.max_position_ratio!r}"
        )

    date_range = params.date_range
    if date_range is not None and not isinstance(date_range, DateRange):
        date_range = DateRange.parse(date_range)
    if date_range is not None and date_range.start > date_range.end:
        raise ValidationError("date_range start must not be after end")

    return [
        ("asset", asset),
        ("strategy", _strategy(params.strategy).value),
        ("timeframe", _timeframe(params.timeframe)),
        ("leverage", str(_leverage(params.leverage))),
        ("low", str(low)),
        ("high", str(high)),
        ("extreme_low", str(extreme_low)),
        ("extreme_high", str(extreme_high)),
        ("max_position_ratio", str(ratio)),
        ("start", date_range.start.isoformat() if date_range else "-"),
        ("end", date_range.end.isoformat() if date_range else "-"),
    ]


def fingerprint(params: BacktestParameters | Mapping[str, Any]) -> Fingerprint:
    """Build the cache key for a parameter set; raises ValidationError on bad input."""
    fields = canonical_fields(params)
    canonical = "|".join([FINGERPRINT_FORMAT_VERSION, *(f"{k}={v}" for k, v in fields)])
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return Fingerprint(digest=digest, canonical=canonical)


def normalize_fingerprint(value: Fingerprint | str) -> str:
    """Accept either a Fingerprint or its digest; reject anything unsafe as a filename."""
    digest = value.digest if isinstance(value, Fingerprint) else str(value or "").strip()
    if not re.fullmatch(r"[0-9a-f]{64}", digest):
        raise ValidationError(f"Not a fingerprint digest: {value!r}")
    return digest
