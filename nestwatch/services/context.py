"""Application context: every long-lived collaborator, built once.

One store connection, one HTTP client, one broadcaster and two schedulers
exist for the lifetime of the process.  They are constructed here at
startup, handed to the components that need them, and torn down once on
shutdown in dependency order.
"""

from __future__ import annotations

import logging

import httpx

from nestwatch.config import Settings
from nestwatch.domain.enums import StoreBackend
from nestwatch.ingest.feed_client import FeedClient
from nestwatch.ingest.pipeline import IngestionPipeline
from nestwatch.ingest.registry_client import PilotRegistryClient
from nestwatch.services.broadcaster import Broadcaster
from nestwatch.services.expiry import ExpirySweeper
from nestwatch.services.ingestion import IngestionService
from nestwatch.services.scheduler import PollScheduler
from nestwatch.store.base import TelemetryStore
from nestwatch.store.memory_store import InMemoryTelemetryStore
from nestwatch.store.redis_store import RedisTelemetryStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> TelemetryStore:
    if settings.store_backend == StoreBackend.REDIS:
        logger.info("Using Redis store at %s", settings.redis_url)
        return RedisTelemetryStore.from_url(settings.redis_url)
    logger.info("Using in-memory store")
    return InMemoryTelemetryStore()


class AppContext:
    """Owns the process-wide collaborators and their start/stop order."""

    def __init__(
        self,
        settings: Settings,
        store: TelemetryStore | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.store: TelemetryStore = store or create_store(settings)
        self.http = http or httpx.AsyncClient()

        timeout = settings.fetch_timeout_seconds
        self.pipeline = IngestionPipeline(
            store=self.store,
            source=FeedClient(settings.feed_url, self.http, timeout),
            pilots=PilotRegistryClient(settings.registry_url, self.http, timeout),
            record_ttl_seconds=settings.record_ttl_seconds,
            fetch_timeout=timeout,
        )
        self.broadcaster = Broadcaster(self.store)
        self.ingestion = IngestionService(self.pipeline, self.broadcaster)
        self.sweeper = ExpirySweeper(self.store, settings.dedup_retention_seconds)

        self.poll_scheduler = PollScheduler(
            "poll",
            self.ingestion.poll_once,
            interval=settings.poll_interval_seconds,
            timeout=settings.cycle_timeout_seconds,
        )
        self.sweep_scheduler = PollScheduler(
            "dedup-sweep",
            self.sweeper.sweep,
            interval=settings.dedup_sweep_interval_seconds,
        )

    async def start(self) -> None:
        if not self.settings.polling_enabled:
            logger.info("Polling disabled; serving stored state only")
            return
        self.poll_scheduler.start()
        self.sweep_scheduler.start()

    async def shutdown(self) -> None:
        """No new cycles, let merges land, then close subscribers and connections."""
        await self.poll_scheduler.stop()
        await self.sweep_scheduler.stop()
        await self.pipeline.drain()
        await self.broadcaster.close_all()
        await self.http.aclose()
        await self.store.close()
        logger.info("Shutdown complete")
