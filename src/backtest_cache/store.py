"""
Two-tier file-backed cache for computed backtest artifacts.

Layout under the cache root::

    temporary/<fingerprint>.json   evictable, considered stale after a TTL
    permanent/<fingerprint>.json   authoritative, removed only by delete()

Writes go through a temp file, fsync and atomic rename, so an artifact is
durable before put()/promote() return and readers never see a partial file.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import suppress
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.config.constants import (
    ARTIFACT_SUFFIX,
    DEFAULT_COMPUTE_TIMEOUT_SEC,
    DEFAULT_LOCK_TIMEOUT_SEC,
    LATENCY_SAMPLE_WINDOW,
    PERMANENT_DIRNAME,
    TEMPORARY_DIRNAME,
)
from src.config.settings import CacheSettings
from src.infrastructure.logging.context import use_context

from .codec import decode_artifact, encode_entry
from .exceptions import (
    ComputeTimeoutError,
    ConflictError,
    NotFoundError,
    ParseError,
    StorageError,
)
from .fingerprint import Fingerprint, normalize_fingerprint
from .locks import InFlightTable, KeyedLocks
from .models import BacktestResult, CacheEntry, EvictionPolicy, Tier, utc_now

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], BacktestResult | Mapping[str, Any]]


class CacheTelemetry:
    """In-process hit/miss counters and measured cache-hit latencies."""

    def __init__(self, window: int = LATENCY_SAMPLE_WINDOW):
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._latencies_ms: deque[float] = deque(maxlen=window)

    def record_hit(self, latency_ms: float) -> None:
        with self._lock:
            self.hits += 1
            self._latencies_ms.append(latency_ms)

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def observed_hit_rate(self) -> float | None:
        with self._lock:
            lookups = self.hits + self.misses
            return (self.hits / lookups) * 100 if lookups else None

    def avg_hit_latency_ms(self) -> float | None:
        with self._lock:
            if not self._latencies_ms:
                return None
            return sum(self._latencies_ms) / len(self._latencies_ms)


class CacheStore:
    """
    Temporary/permanent backtest cache rooted at an explicit directory.

    Features:
    - Permanent-first lookups with TTL staleness for the temporary tier
    - Conflict-checked, durable writes serialized per fingerprint
    - Idempotent promotion from temporary to permanent
    - Size/age eviction of the temporary tier, least recently accessed first
    - compute_or_get(): at most one concurrent computation per fingerprint
    """

    def __init__(
        self,
        root: str | Path,
        *,
        stale_after_seconds: float | None = None,
        lock_timeout_seconds: float | None = DEFAULT_LOCK_TIMEOUT_SEC,
        compute_timeout_seconds: float | None = DEFAULT_COMPUTE_TIMEOUT_SEC,
    ):
        """
        Args:
            root: Cache root directory; tier directories are created beneath it.
            stale_after_seconds: Age after which temporary entries count as misses.
                None disables staleness.
            lock_timeout_seconds: Bound on waiting for a per-fingerprint write lock.
            compute_timeout_seconds: Default bound on waiting for another caller's
                in-flight computation in compute_or_get().
        """
        self.root = Path(root)
        self.stale_after_seconds = stale_after_seconds
        self.compute_timeout_seconds = compute_timeout_seconds
        self.telemetry = CacheTelemetry()
        self._locks = KeyedLocks(default_timeout=lock_timeout_seconds)
        self._inflight = InFlightTable()
        self._dirs = {
            Tier.TEMPORARY: self.root / TEMPORARY_DIRNAME,
            Tier.PERMANENT: self.root / PERMANENT_DIRNAME,
        }
        self._ensure_dirs()

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> CacheStore:
        return cls(
            settings.cache_dir,
            stale_after_seconds=settings.stale_after_seconds,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            compute_timeout_seconds=settings.compute_timeout_seconds,
        )

    def _ensure_dirs(self) -> None:
        for directory in self._dirs.values():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"Cannot create cache directory {directory}: {exc}") from exc

    # ------------------------------------------------------------------ paths

    def tier_dir(self, tier: Tier) -> Path:
        return self._dirs[Tier(tier)]

    def artifact_path(self, fp: Fingerprint | str, tier: Tier) -> Path:
        return self.tier_dir(tier) / f"{normalize_fingerprint(fp)}{ARTIFACT_SUFFIX}"

    def list_artifacts(self, tier: Tier) -> list[Path]:
        """Artifact files of a tier; an absent directory lists as empty."""
        directory = self.tier_dir(tier)
        if not directory.is_dir():
            return []
        try:
            return sorted(
                p
                for p in directory.iterdir()
                if p.suffix == ARTIFACT_SUFFIX and not p.name.startswith(".") and p.is_file()
            )
        except OSError as exc:
            raise StorageError(f"Cannot list {directory}: {exc}") from exc

    # -------------------------------------------------------------- raw I/O

    def read_artifact(self, path: Path, tier: Tier | None = None) -> CacheEntry:
        """Decode one artifact file; raises NotFoundError, StorageError or ParseError."""
        path = Path(path)
        if tier is None:
            tier = Tier.PERMANENT if path.parent == self._dirs[Tier.PERMANENT] else Tier.TEMPORARY
        try:
            with open(path, "rb") as f:
                raw = f.read()
                mtime = os.fstat(f.fileno()).st_mtime
        except FileNotFoundError:
            raise NotFoundError(f"No artifact at {path}") from None
        except OSError as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc
        return decode_artifact(
            raw,
            size_bytes=len(raw),
            default_fingerprint=path.stem,
            default_tier=tier,
            modified_at=datetime.fromtimestamp(mtime, tz=UTC),
        )

    def _read(self, digest: str, tier: Tier) -> CacheEntry | None:
        try:
            return self.read_artifact(self.artifact_path(digest, tier), tier)
        except NotFoundError:
            return None

    def _write(self, entry: CacheEntry) -> CacheEntry:
        path = self.artifact_path(entry.fingerprint, entry.tier)
        data = encode_entry(entry)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
            self._fsync_dir(path.parent)
        except OSError as exc:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise StorageError(f"Cannot write {path}: {exc}") from exc
        return replace(entry, size_bytes=len(data))

    @staticmethod
    def _fsync_dir(directory: Path) -> None:
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def is_stale(self, entry: CacheEntry, now: datetime | None = None) -> bool:
        if entry.tier is not Tier.TEMPORARY or self.stale_after_seconds is None:
            return False
        return entry.age_seconds(now) > self.stale_after_seconds

    # ---------------------------------------------------------- public API

    def get(self, fp: Fingerprint | str, tier: Tier | None = None) -> CacheEntry | None:
        """
        Look up an entry; with no tier, permanent is checked before temporary.

        Returns:
            The entry, or None on a miss (absent, or a stale temporary entry)
        """
        digest = normalize_fingerprint(fp)
        tiers = [Tier(tier)] if tier is not None else [Tier.PERMANENT, Tier.TEMPORARY]
        for current in tiers:
            entry = self._read(digest, current)
            if entry is None:
                continue
            if self.is_stale(entry):
                logger.debug(
                    "Stale temporary entry %s (age %.1fh)", digest, entry.age_seconds() / 3600
                )
                continue
            return entry
        return None

    def put(
        self,
        fp: Fingerprint | str,
        result: BacktestResult,
        tier: Tier = Tier.TEMPORARY,
        *,
        overwrite: bool = False,
        params: dict[str, Any] | None = None,
    ) -> CacheEntry:
        """
        Store a result in a tier.

        Raises:
            ConflictError: If a live entry already exists there and overwrite is False
            StorageError: If the artifact could not be written durably
        """
        digest = normalize_fingerprint(fp)
        with self._locks.hold(digest):
            return self._put_locked(digest, result, Tier(tier), overwrite=overwrite, params=params)

    def _put_locked(
        self,
        digest: str,
        result: BacktestResult,
        tier: Tier,
        *,
        overwrite: bool,
        params: dict[str, Any] | None,
    ) -> CacheEntry:
        if not overwrite:
            try:
                existing = self._read(digest, tier)
            except ParseError as exc:
                logger.warning("Replacing unreadable %s artifact %s: %s", tier.value, digest, exc)
                existing = None
            if existing is not None and not self.is_stale(existing):
                raise ConflictError(f"{tier.value} entry already exists for {digest}")

        now = utc_now()
        entry = self._write(
            CacheEntry(
                fingerprint=digest,
                tier=tier,
                result=result,
                created_at=now,
                last_accessed_at=now,
                access_count=0,
                params=params,
            )
        )
        logger.debug("Cached %s in %s tier (%d bytes)", digest, tier.value, entry.size_bytes)
        return entry

    def record_access(self, fp: Fingerprint | str) -> None:
        """Best-effort hit bookkeeping; a missing entry or storage hiccup is not an error."""
        self._touch(normalize_fingerprint(fp))

    def _touch(self, digest: str) -> CacheEntry | None:
        try:
            with self._locks.hold(digest):
                for tier in (Tier.PERMANENT, Tier.TEMPORARY):
                    entry = self._read(digest, tier)
                    if entry is None:
                        continue
                    return self._write(
                        replace(
                            entry,
                            access_count=entry.access_count + 1,
                            last_accessed_at=utc_now(),
                        )
                    )
        except (StorageError, ParseError, ComputeTimeoutError) as exc:
            logger.warning("Could not record access for %s: %s", digest, exc)
        return None

    def promote(self, fp: Fingerprint | str) -> CacheEntry:
        """
        Copy the temporary entry into the permanent tier.

        Idempotent: an already-permanent entry is returned unchanged. The
        temporary copy is left in place.

        Raises:
            NotFoundError: If the fingerprint is in neither tier
        """
        digest = normalize_fingerprint(fp)
        with self._locks.hold(digest):
            permanent = self._read(digest, Tier.PERMANENT)
            if permanent is not None:
                return permanent

            temporary = self._read(digest, Tier.TEMPORARY)
            if temporary is None:
                raise NotFoundError(f"No cache entry to promote for {digest}")

            entry = self._write(replace(temporary, tier=Tier.PERMANENT))
        logger.info("Promoted %s to permanent tier", digest)
        return entry

    def delete(self, fp: Fingerprint | str, tier: Tier) -> bool:
        """Administrative removal of one entry; returns False if nothing was there."""
        digest = normalize_fingerprint(fp)
        removed = self._remove(digest, Tier(tier))
        if removed and Tier(tier) is Tier.PERMANENT:
            logger.warning("Deleted permanent cache entry %s", digest)
        return removed

    def _remove(self, digest: str, tier: Tier) -> bool:
        return self._unlink(self.artifact_path(digest, tier))

    def _unlink(self, path: Path) -> bool:
        # keyed by file stem, which is the digest for every non-legacy artifact
        with self._locks.hold(path.stem):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise StorageError(f"Cannot delete {path}: {exc}") from exc
        return True

    def iter_artifacts(self, tier: Tier) -> Iterator[tuple[Path, CacheEntry]]:
        """(path, entry) pairs of a tier; unreadable artifacts are logged and skipped."""
        for path in self.list_artifacts(tier):
            try:
                yield path, self.read_artifact(path, tier)
            except NotFoundError:
                continue
            except ParseError as exc:
                logger.warning("Skipping unreadable artifact %s: %s", path.name, exc)

    def iter_entries(self, tier: Tier) -> Iterator[CacheEntry]:
        for _, entry in self.iter_artifacts(tier):
            yield entry

    def evict_temporary(self, policy: EvictionPolicy) -> int:
        """
        Trim the temporary tier to the policy's budgets.

        Entries past max_age_seconds go first; then least recently accessed
        entries are removed until the tier fits max_total_bytes. The permanent
        tier is never touched. Files are removed by their own path, whatever
        fingerprint the payload records.

        Returns:
            Number of entries removed
        """
        now = utc_now()
        artifacts = list(self.iter_artifacts(Tier.TEMPORARY))
        removed = 0

        survivors: list[tuple[Path, CacheEntry]] = []
        for path, entry in artifacts:
            expired = (
                policy.max_age_seconds is not None
                and entry.age_seconds(now) > policy.max_age_seconds
            )
            if expired:
                if self._unlink(path):
                    removed += 1
            else:
                survivors.append((path, entry))

        if policy.max_total_bytes is not None:
            total = sum(e.size_bytes for _, e in survivors)
            survivors.sort(key=lambda item: (item[1].last_accessed_at, item[1].created_at))
            for path, entry in survivors:
                if total <= policy.max_total_bytes:
                    break
                if self._unlink(path):
                    removed += 1
                total -= entry.size_bytes

        if removed:
            logger.info("Evicted %d temporary cache entries", removed)
        return removed

    def compute_or_get(
        self,
        fp: Fingerprint | str,
        compute: ComputeFn,
        *,
        tier: Tier = Tier.TEMPORARY,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> CacheEntry:
        """
        Return the cached entry or compute it, at most once across concurrent callers.

        Exactly one caller per fingerprint runs ``compute``; the others block on
        its outcome (result or exception). A waiter that gives up after
        ``timeout`` seconds gets ComputeTimeoutError while the computation keeps
        running and is still cached for later callers.
        """
        digest = normalize_fingerprint(fp)
        started = time.perf_counter()

        entry = self._get_usable(digest)
        if entry is not None:
            touched = self._touch(digest)
            self.telemetry.record_hit((time.perf_counter() - started) * 1000)
            return touched or entry

        self.telemetry.record_miss()
        future, owner = self._inflight.claim(digest)
        if not owner:
            wait = self.compute_timeout_seconds if timeout is None else timeout
            logger.debug("Waiting on in-flight computation for %s", digest)
            try:
                return future.result(timeout=wait)
            except FutureTimeoutError:
                raise ComputeTimeoutError(
                    f"Timed out after {wait}s waiting for computation of {digest}"
                ) from None

        try:
            with use_context(fingerprint=digest):
                entry = self._get_usable(digest)
                if entry is None:
                    entry = self._compute_and_store(digest, compute, tier, params)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(entry)
            return entry
        finally:
            self._inflight.release(digest, future)

    def _get_usable(self, digest: str) -> CacheEntry | None:
        """Like get(), but an unreadable artifact is a miss so it can be recomputed."""
        for tier in (Tier.PERMANENT, Tier.TEMPORARY):
            try:
                entry = self.get(digest, tier)
            except ParseError as exc:
                logger.warning("Ignoring unreadable %s artifact %s: %s", tier.value, digest, exc)
                continue
            if entry is not None:
                return entry
        return None

    def _compute_and_store(
        self,
        digest: str,
        compute: ComputeFn,
        tier: Tier,
        params: dict[str, Any] | None,
    ) -> CacheEntry:
        logger.info("Cache miss, computing %s", digest)
        started = time.perf_counter()
        try:
            raw = compute()
        except Exception as exc:
            logger.error("Computation failed for %s: %s", digest, exc)
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000

        result = raw if isinstance(raw, BacktestResult) else BacktestResult.from_dict(raw)
        if result.execution_time_ms is None:
            result = result.with_execution_time(elapsed_ms)

        try:
            return self.put(digest, result, tier, params=params)
        except ConflictError:
            # written directly by put() while we computed; keep the stored entry
            existing = self.get(digest, tier)
            if existing is None:
                raise
            return existing
