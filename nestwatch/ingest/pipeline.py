"""Ingestion pipeline: fetch → validate → dedup → merge(*) → record.

One call to ``run_cycle`` is one poll.  Everything from the dedup claim to
the final index insert runs in a shielded task: if the caller abandons the
cycle (timeout, shutdown) the merges still finish and the timestamp is
still recorded, so a snapshot is never left half-merged and re-ingestable.
``drain`` waits for that task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import BaseModel

from nestwatch.domain.errors import StoreError, TransportError
from nestwatch.domain.record import PilotRecord
from nestwatch.domain.snapshot import Observation, Snapshot
from nestwatch.ingest.validator import validate_snapshot
from nestwatch.store.base import DEFAULT_RECORD_TTL_SECONDS, TelemetryStore

logger = logging.getLogger(__name__)


class SnapshotSource(Protocol):
    async def fetch(self) -> dict[str, Any]:
        """Return one decoded, not yet validated, report."""
        ...


class PilotLookup(Protocol):
    async def lookup(self, entity_id: str) -> PilotRecord | None:
        """Return the drone's pilot, or None if it cannot be determined."""
        ...


class IngestResult(BaseModel):
    """Outcome of ingesting one new snapshot."""

    timestamp: str
    merged: int
    failed: int = 0
    pilots_attached: int = 0

    model_config = {"frozen": True}


class IngestionPipeline:
    """Drives one snapshot from the feed into the store.

    Args:
        store: Where records and the dedup index live.
        source: The upstream feed.
        pilots: Pilot registry, consulted for restricted drones without a pilot.
        record_ttl_seconds: Sliding lifetime applied on every merge.
        fetch_timeout: Hard bound on one fetch, in seconds.
        on_ingested: Called with every result of a claimed snapshot, also
            when the caller that started the cycle has given up on it.
    """

    def __init__(
        self,
        store: TelemetryStore,
        source: SnapshotSource,
        pilots: PilotLookup,
        record_ttl_seconds: float = DEFAULT_RECORD_TTL_SECONDS,
        fetch_timeout: float = 2.0,
        on_ingested: Callable[[IngestResult], None] | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._pilots = pilots
        self._ttl = record_ttl_seconds
        self._fetch_timeout = fetch_timeout
        self.on_ingested = on_ingested
        self._inflight: asyncio.Task[IngestResult | None] | None = None

    # ── Public API ───────────────────────────────────────────────────────

    async def run_cycle(self) -> IngestResult | None:
        """Fetch, validate and ingest one report.

        Returns None when the snapshot was already ingested.

        Raises:
            TransportError: fetch failed or timed out.
            ValidationError: the report was rejected as a whole.
            ValueError: the report could not be decoded.
        """
        try:
            raw = await asyncio.wait_for(self._source.fetch(), timeout=self._fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"Feed fetch exceeded {self._fetch_timeout}s") from exc

        snapshot = validate_snapshot(raw)
        return await self.ingest(snapshot)

    async def ingest(self, snapshot: Snapshot) -> IngestResult | None:
        """Ingest an already validated snapshot, at most once per timestamp."""
        if not await self._store.should_ingest(snapshot.timestamp):
            logger.info(
                "Snapshot %s already ingested, skipping", snapshot.timestamp
            )
            return None

        task = asyncio.create_task(self._ingest_claimed(snapshot))
        task.add_done_callback(_log_failure)
        self._inflight = task
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for an in-flight merge phase to finish."""
        task = self._inflight
        if task is not None and not task.done():
            logger.info("Waiting for in-flight merges to finish")
            await asyncio.wait([task])

    # ── Internals ────────────────────────────────────────────────────────

    async def _ingest_claimed(self, snapshot: Snapshot) -> IngestResult | None:
        """Runs while holding the dedup claim for snapshot.timestamp."""
        try:
            pilots = await self._lookup_pilots(snapshot)
            outcomes = await asyncio.gather(
                *(
                    self._merge_one(obs, snapshot.timestamp, pilots.get(obs.entity_id))
                    for obs in snapshot.observations
                )
            )
        except BaseException:
            await self._store.release_claim(snapshot.timestamp)
            raise

        merged = sum(outcomes)
        failed = len(outcomes) - merged

        if snapshot.observations and merged == 0:
            # Nothing landed; let the next cycle try this snapshot again
            await self._store.release_claim(snapshot.timestamp)
            logger.error(
                "Every merge for snapshot %s failed (%d drones)",
                snapshot.timestamp,
                failed,
            )
            return self._report(
                IngestResult(timestamp=snapshot.timestamp, merged=0, failed=failed)
            )

        await self._store.record_ingested(snapshot.timestamp, snapshot.epoch_millis)

        result = IngestResult(
            timestamp=snapshot.timestamp,
            merged=merged,
            failed=failed,
            pilots_attached=len(pilots),
        )
        logger.info(
            "Ingested snapshot %s: merged=%d failed=%d pilots=%d",
            result.timestamp,
            result.merged,
            result.failed,
            result.pilots_attached,
        )
        return self._report(result)

    def _report(self, result: IngestResult) -> IngestResult:
        if self.on_ingested is not None:
            self.on_ingested(result)
        return result

    async def _lookup_pilots(self, snapshot: Snapshot) -> dict[str, PilotRecord]:
        """Look up pilots for restricted drones that have none stored yet."""
        wanted: list[str] = []
        for obs in snapshot.restricted_observations:
            if obs.entity_id in wanted:
                continue
            try:
                known = await self._store.has_pilot(obs.entity_id)
            except StoreError as exc:
                # Merge without a pilot; the next restricted sighting tries again
                logger.error("Pilot check for %s failed: %s", obs.entity_id, exc)
                continue
            if not known:
                wanted.append(obs.entity_id)

        if not wanted:
            return {}

        found = await asyncio.gather(*(self._pilots.lookup(eid) for eid in wanted))
        return {eid: pilot for eid, pilot in zip(wanted, found) if pilot is not None}

    async def _merge_one(
        self,
        observation: Observation,
        timestamp: str,
        pilot: PilotRecord | None,
    ) -> bool:
        try:
            await self._store.merge(observation, timestamp, self._ttl, pilot)
        except StoreError as exc:
            logger.error("Merge for %s at %s failed: %s", observation.entity_id, timestamp, exc)
            return False
        return True


def _log_failure(task: asyncio.Task[IngestResult | None]) -> None:
    """Surface merge-phase failures even when no caller awaits the task anymore."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Merge phase failed: %s", exc, exc_info=exc)
