"""In-process TelemetryStore with async-safe access and passive TTL expiry.

Design notes:
    - An asyncio.Lock guards all mutations, so merges for the same drone
      from overlapping cycles serialize and the dedup claim is atomic.
    - A merge works on a clone and swaps it in only when complete.  Readers
      see a record before or after a merge, never half-way.
    - Expiry is passive: a record whose deadline has passed is invisible to
      every read and is replaced by a fresh record on the next merge.
      Nothing needs to sweep records.
    - The dedup index is swept separately (see ``sweep_timestamps``).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from nestwatch.domain.record import AggregatedRecord, PilotRecord
from nestwatch.domain.snapshot import Observation
from nestwatch.foundation.clock import epoch_millis, utc_now
from nestwatch.store.base import DEFAULT_RECORD_TTL_SECONDS

logger = logging.getLogger(__name__)


class _Entry:
    """A record plus the deadline shared by all of its parts."""

    __slots__ = ("record", "expires_at")

    def __init__(self, record: AggregatedRecord, expires_at: datetime) -> None:
        self.record = record
        self.expires_at = expires_at


class InMemoryTelemetryStore:
    """Async-safe, in-memory store of aggregated drone records.

    Args:
        clock: Source of "now".  Injected so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: dict[str, _Entry] = {}
        self._timestamps: dict[str, int] = {}
        self._claims: set[str] = set()

    # ── Dedup gate ───────────────────────────────────────────────────────

    async def should_ingest(self, timestamp: str) -> bool:
        async with self._lock:
            if timestamp in self._timestamps or timestamp in self._claims:
                return False
            self._claims.add(timestamp)
            return True

    async def record_ingested(self, timestamp: str, epoch_millis: int) -> None:
        async with self._lock:
            self._timestamps[timestamp] = epoch_millis
            self._claims.discard(timestamp)

    async def release_claim(self, timestamp: str) -> None:
        async with self._lock:
            self._claims.discard(timestamp)

    async def latest_timestamp(self) -> str | None:
        async with self._lock:
            if not self._timestamps:
                return None
            return max(self._timestamps, key=self._timestamps.__getitem__)

    async def sweep_timestamps(self, retention_seconds: float) -> int:
        cutoff = epoch_millis(self._clock()) - retention_seconds * 1000
        async with self._lock:
            stale = [ts for ts, score in self._timestamps.items() if score <= cutoff]
            for ts in stale:
                del self._timestamps[ts]
            return len(stale)

    # ── Upsert engine ────────────────────────────────────────────────────

    async def merge(
        self,
        observation: Observation,
        timestamp: str,
        ttl_seconds: float = DEFAULT_RECORD_TTL_SECONDS,
        pilot: PilotRecord | None = None,
    ) -> AggregatedRecord:
        async with self._lock:
            now = self._clock()
            entry = self._live_entry(observation.entity_id, now)
            if entry is None:
                updated = AggregatedRecord(observation.entity_id)
                logger.debug("Tracking new drone %s", observation.entity_id)
            else:
                updated = entry.record.clone()

            updated.absorb(observation, timestamp, pilot)

            self._entries[observation.entity_id] = _Entry(
                updated, now + timedelta(seconds=ttl_seconds)
            )
            return updated.clone()

    async def has_pilot(self, entity_id: str) -> bool:
        async with self._lock:
            entry = self._live_entry(entity_id, self._clock())
            return entry is not None and entry.record.pilot is not None

    async def all_records(self) -> list[AggregatedRecord]:
        async with self._lock:
            now = self._clock()
            return [
                entry.record.clone()
                for entity_id in list(self._entries)
                if (entry := self._live_entry(entity_id, now)) is not None
            ]

    async def close(self) -> None:
        """Nothing to release; records live only as long as the process."""

    # ── Internals ────────────────────────────────────────────────────────

    def _live_entry(self, entity_id: str, now: datetime) -> _Entry | None:
        """Must be called while holding self._lock.  Drops the entry if expired."""
        entry = self._entries.get(entity_id)
        if entry is None:
            return None
        if now >= entry.expires_at:
            del self._entries[entity_id]
            logger.debug("Drone %s expired", entity_id)
            return None
        return entry
