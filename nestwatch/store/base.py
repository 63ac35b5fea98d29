"""The TelemetryStore protocol: the only door to shared mutable state.

Every mutation goes through one of two atomic operations:
    - the dedup gate (``should_ingest`` / ``record_ingested``)
    - the per-drone merge (``merge``)
No caller may read-modify-write a record's fields outside them.
Swap implementations to change the backing store without touching the
ingestion pipeline.
"""

from __future__ import annotations

from typing import Protocol

from nestwatch.domain.record import AggregatedRecord, PilotRecord
from nestwatch.domain.snapshot import Observation

DEFAULT_RECORD_TTL_SECONDS = 600


class TelemetryStore(Protocol):
    """Protocol for aggregate stores."""

    # ── Dedup gate ───────────────────────────────────────────────────────

    async def should_ingest(self, timestamp: str) -> bool:
        """Atomically check and claim *timestamp* for ingestion.

        False if it was already ingested or another ingestion holds the claim.
        """
        ...

    async def record_ingested(self, timestamp: str, epoch_millis: int) -> None:
        """Insert *timestamp* into the dedup index and release its claim."""
        ...

    async def release_claim(self, timestamp: str) -> None:
        """Abandon a claim without recording the timestamp."""
        ...

    async def latest_timestamp(self) -> str | None:
        """Most recent ingested timestamp still in the index."""
        ...

    async def sweep_timestamps(self, retention_seconds: float) -> int:
        """Remove index entries older than *retention_seconds*; return the count."""
        ...

    # ── Upsert engine ────────────────────────────────────────────────────

    async def merge(
        self,
        observation: Observation,
        timestamp: str,
        ttl_seconds: float = DEFAULT_RECORD_TTL_SECONDS,
        pilot: PilotRecord | None = None,
    ) -> AggregatedRecord:
        """Atomically fold *observation* into its drone's record and refresh the TTL."""
        ...

    async def has_pilot(self, entity_id: str) -> bool:
        """True if a live record for *entity_id* already carries pilot details."""
        ...

    async def all_records(self) -> list[AggregatedRecord]:
        """Every live record.  Expired records are never returned."""
        ...

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def close(self) -> None:
        ...
