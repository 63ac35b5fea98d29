"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from nestwatch.domain.enums import StoreBackend


class Settings(BaseSettings):
    app_name: str = "nestwatch"
    debug: bool = False
    log_level: str = "INFO"

    # Upstream collaborators
    feed_url: str = "https://assignments.reaktor.com/birdnest/drones"
    registry_url: str = "https://assignments.reaktor.com/birdnest/pilots"

    # Poll cadence
    polling_enabled: bool = True
    poll_interval_ms: int = 2000
    fetch_timeout_ms: int | None = None

    # Lifetimes
    record_ttl_seconds: int = 600
    dedup_retention_seconds: int = 600
    dedup_sweep_interval_seconds: int = 600

    # Backing store
    store_backend: StoreBackend = StoreBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"

    # Web
    frontend_url: str = "http://localhost:3000"
    static_dir: str = "public"

    model_config = {"env_prefix": "NESTWATCH_"}

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def fetch_timeout_seconds(self) -> float:
        """Fetch timeout; defaults to one poll period."""
        if self.fetch_timeout_ms is None:
            return self.poll_interval_seconds
        return self.fetch_timeout_ms / 1000

    @property
    def cycle_timeout_seconds(self) -> float:
        """Bound on one whole cycle: the feed fetch plus the pilot lookups."""
        return 2 * self.fetch_timeout_seconds


settings = Settings()
