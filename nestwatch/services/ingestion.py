"""Glue between one poll cycle and the broadcaster."""

from __future__ import annotations

from nestwatch.ingest.pipeline import IngestionPipeline, IngestResult
from nestwatch.services.broadcaster import Broadcaster


class IngestionService:
    """The scheduler's cycle: ingest one snapshot, then fan out if anything merged.

    Fan-out hangs off the pipeline's ``on_ingested`` hook rather than off
    ``poll_once``, so a snapshot whose cycle timed out mid-merge is still
    pushed once its merges land.
    """

    def __init__(self, pipeline: IngestionPipeline, broadcaster: Broadcaster) -> None:
        self._pipeline = pipeline
        self._broadcaster = broadcaster
        self.last_result: IngestResult | None = None
        pipeline.on_ingested = self._ingested

    async def poll_once(self) -> IngestResult | None:
        return await self._pipeline.run_cycle()

    def _ingested(self, result: IngestResult) -> None:
        self.last_result = result
        if result.merged > 0:
            self._broadcaster.schedule_notify_all(result.timestamp)
