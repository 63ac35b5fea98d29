"""Expiry sweeper for the dedup index.

Bounds index growth only.  Per-record TTL expiry is handled by the store
itself and needs no sweep.
"""

from __future__ import annotations

import logging

from nestwatch.store.base import TelemetryStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Removes dedup entries older than *retention_seconds*."""

    def __init__(self, store: TelemetryStore, retention_seconds: float) -> None:
        self._store = store
        self._retention_seconds = retention_seconds
        self.total_removed: int = 0

    async def sweep(self) -> int:
        removed = await self._store.sweep_timestamps(self._retention_seconds)
        self.total_removed += removed
        if removed:
            logger.info("Pruned %d dedup entr%s", removed, "y" if removed == 1 else "ies")
        return removed
