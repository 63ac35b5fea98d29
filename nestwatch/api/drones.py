"""REST view of the current aggregate set.

Path: GET /api/drones
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from nestwatch.store.base import TelemetryStore


def create_drones_router(store: TelemetryStore) -> APIRouter:
    """Factory that wires the read-only drone endpoints to a store."""

    router = APIRouter(prefix="/api", tags=["drones"])

    @router.get("/drones")
    async def list_drones() -> dict[str, Any]:
        """Every tracked drone, most recently seen first."""
        records = await store.all_records()
        records.sort(key=lambda r: r.last_seen or "", reverse=True)
        return {
            "timestamp": await store.latest_timestamp(),
            "drones": [r.to_view() for r in records],
            "count": len(records),
        }

    @router.get("/drones/{entity_id}")
    async def get_drone(entity_id: str) -> dict[str, Any]:
        for record in await store.all_records():
            if record.entity_id == entity_id:
                return record.to_view()
        raise HTTPException(status_code=404, detail=f"Drone {entity_id} is not tracked")

    return router
