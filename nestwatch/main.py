"""nestwatch: drone telemetry aggregation with live fan-out.

This is the application entry point.  It builds the AppContext (store,
pipeline, broadcaster, schedulers), wires the HTTP and WebSocket
endpoints, and ties polling to the app lifespan.

Run with:  uvicorn nestwatch.main:app
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from nestwatch.api.drones import create_drones_router
from nestwatch.api.ws_updates import create_updates_router
from nestwatch.config import Settings, settings
from nestwatch.services.context import AppContext

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(
    app_settings: Settings = settings,
    context: AppContext | None = None,
) -> FastAPI:
    """Build the FastAPI app around one AppContext."""

    ctx = context or AppContext(app_settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await ctx.start()
        try:
            yield
        finally:
            await ctx.shutdown()

    app = FastAPI(
        title=app_settings.app_name,
        description="Drone telemetry aggregation, expiry and live fan-out",
        version="1.0.0",
        debug=app_settings.debug,
        lifespan=lifespan,
    )
    app.state.context = ctx

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[app_settings.frontend_url],
        allow_methods=["GET"],
    )

    # ── Routes ───────────────────────────────────────────────────────────

    app.include_router(create_drones_router(ctx.store))
    app.include_router(create_updates_router(ctx.broadcaster))

    # ── Health ───────────────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        records = await ctx.store.all_records()
        last = ctx.ingestion.last_result
        return {
            "status": "ok",
            "store_backend": app_settings.store_backend.value,
            "tracked_drones": len(records),
            "restricted_drones": sum(1 for r in records if r.restricted_ever),
            "subscribers": ctx.broadcaster.subscriber_count,
            "latest_timestamp": await ctx.store.latest_timestamp(),
            "last_ingest": last.model_dump() if last else None,
            "dedup_entries_pruned": ctx.sweeper.total_removed,
            "schedulers": [ctx.poll_scheduler.stats(), ctx.sweep_scheduler.stats()],
        }

    # ── Static assets (mounted last so API routes win) ───────────────────

    static_dir = Path(app_settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
    else:
        logger.info("Static directory %s not found, not serving assets", static_dir)

    return app


app = create_app()
