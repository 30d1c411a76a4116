"""Schema-tolerant artifact codec.

Artifacts written over the life of the dashboard come in more than one shape:
execution time at the top level or under ``result``, ``computedAt`` instead of
``createdAt``, ``isPermanent`` instead of ``tier``. Everything is normalized
into a single ``CacheEntry`` here so the rest of the package sees one shape.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from src.config.constants import ARTIFACT_VERSION

from .exceptions import ParseError
from .models import BacktestResult, CacheEntry, Tier, from_epoch_ms, to_epoch_ms, utc_now

_EXECUTION_TIME_KEYS = ("executionTime", "executionTimeMs")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _timestamp(value: Any) -> datetime | None:
    number = _number(value)
    if number is not None:
        try:
            return from_epoch_ms(number)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return None
        return parsed
    return None


def _execution_time(data: dict[str, Any], result: dict[str, Any]) -> float | None:
    # nested value wins; top-level is the older layout
    for source in (result, data):
        for key in _EXECUTION_TIME_KEYS:
            number = _number(source.get(key))
            if number is not None and number >= 0:
                return number
    return None


def _tier(data: dict[str, Any], default: Tier | None) -> Tier:
    if default is not None:
        return default
    raw = data.get("tier")
    if isinstance(raw, str):
        try:
            return Tier(raw.strip().lower())
        except ValueError:
            raise ParseError(f"Unknown tier {raw!r}") from None
    if data.get("isPermanent") is True:
        return Tier.PERMANENT
    return Tier.TEMPORARY


def decode_artifact(
    raw: bytes | str,
    *,
    size_bytes: int | None = None,
    default_fingerprint: str | None = None,
    default_tier: Tier | None = None,
    modified_at: datetime | None = None,
) -> CacheEntry:
    """Decode one artifact; raises ParseError when the content is unusable.

    ``default_tier`` comes from the directory the artifact lives in and takes
    precedence over whatever tier the payload claims.
    """
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ParseError(f"Malformed artifact JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"Artifact must be a JSON object, got {type(data).__name__}")

    result_raw = data.get("result", {})
    if result_raw is None:
        result_raw = {}
    if not isinstance(result_raw, dict):
        raise ParseError("Artifact 'result' must be an object")

    fingerprint = data.get("fingerprint") or data.get("key") or default_fingerprint
    if not isinstance(fingerprint, str) or not fingerprint:
        raise ParseError("Artifact has no fingerprint")

    result = BacktestResult.from_dict(
        {k: v for k, v in result_raw.items() if k not in _EXECUTION_TIME_KEYS}
    )
    execution_time = _execution_time(data, result_raw)
    if execution_time is not None:
        result = result.with_execution_time(execution_time)

    created_at = (
        _timestamp(data.get("createdAt"))
        or _timestamp(data.get("computedAt"))
        or modified_at
        or utc_now()
    )
    last_accessed = (
        _timestamp(data.get("lastAccessedAt")) or _timestamp(data.get("lastAccessed")) or created_at
    )

    access_count = _number(data.get("accessCount"))
    params = data.get("params")
    if not isinstance(params, dict):
        params = result_raw.get("params") if isinstance(result_raw.get("params"), dict) else None

    if size_bytes is None:
        size_bytes = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)

    return CacheEntry(
        fingerprint=fingerprint,
        tier=_tier(data, default_tier),
        result=result,
        created_at=created_at,
        last_accessed_at=last_accessed,
        access_count=max(0, int(access_count)) if access_count is not None else 0,
        size_bytes=int(size_bytes),
        params=params,
    )


def encode_entry(entry: CacheEntry) -> bytes:
    """Serialize an entry in the current artifact layout."""
    payload: dict[str, Any] = {
        "version": ARTIFACT_VERSION,
        "fingerprint": entry.fingerprint,
        "tier": entry.tier.value,
        "createdAt": to_epoch_ms(entry.created_at),
        "lastAccessedAt": to_epoch_ms(entry.last_accessed_at),
        "accessCount": entry.access_count,
        "result": entry.result.to_dict(),
    }
    if entry.execution_time_ms is not None:
        payload["executionTime"] = entry.execution_time_ms
    if entry.params is not None:
        payload["params"] = entry.params
    return json.dumps(payload, indent=2, sort_keys=True, default=str).encode("utf-8")
