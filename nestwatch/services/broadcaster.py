"""Fan-out of aggregated drone state to live WebSocket subscribers.

Architecture:
    scheduler  →  pipeline merges snapshot  →  notify_all(timestamp)
                                                    ↓
    FE  ←  /ws/updates  ←  {"event": "update", "timestamp", "drones"}

New subscribers get a catch-up push (``notify_one``) on connect so they
don't wait for the next cycle.  Nothing is sent while no drone is tracked.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

from nestwatch.store.base import TelemetryStore

logger = logging.getLogger(__name__)


def update_message(timestamp: str | None, drones: list[dict[str, Any]]) -> str:
    return json.dumps({"event": "update", "timestamp": timestamp, "drones": drones})


class Broadcaster:
    """Tracks connected subscribers and pushes aggregate views to them."""

    def __init__(self, store: TelemetryStore) -> None:
        self._store = store
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    # ── Client management ────────────────────────────────────────────

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.add(ws)
        logger.info("Subscriber connected (%d total)", len(self._clients))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)
        logger.info("Subscriber disconnected (%d remaining)", len(self._clients))

    @property
    def subscriber_count(self) -> int:
        return len(self._clients)

    async def close_all(self) -> None:
        """Wait for queued pushes, then close every subscriber connection."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        async with self._lock:
            clients = set(self._clients)
            self._clients.clear()

        for ws in clients:
            try:
                await ws.close(code=1001)
            except Exception as exc:
                logger.debug("Closing subscriber failed: %s", exc)
        if clients:
            logger.info("Closed %d subscriber(s)", len(clients))

    # ── Push ─────────────────────────────────────────────────────────

    async def notify_all(self, timestamp: str) -> int:
        """Push the full aggregate set to every subscriber.  Returns recipients."""
        records = await self._store.all_records()
        if not records:
            return 0

        message = update_message(timestamp, [r.to_view() for r in records])

        async with self._lock:
            clients = set(self._clients)

        dead: set[WebSocket] = set()
        for ws in clients:
            try:
                await ws.send_text(message)
            except Exception:
                dead.add(ws)

        if dead:
            async with self._lock:
                self._clients -= dead
            logger.info("Removed %d dead subscriber(s)", len(dead))

        logger.debug("Pushed %d drones to %d subscriber(s)", len(records), len(clients) - len(dead))
        return len(clients) - len(dead)

    async def notify_one(self, ws: WebSocket) -> bool:
        """Catch a newly connected subscriber up with the latest state."""
        records = await self._store.all_records()
        if not records:
            return False

        timestamp = await self._store.latest_timestamp()
        await ws.send_text(update_message(timestamp, [r.to_view() for r in records]))
        return True

    def schedule_notify_all(self, timestamp: str) -> None:
        """Run ``notify_all`` in the background so ingestion is never blocked."""
        task = asyncio.create_task(self._notify_all_logged(timestamp))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify_all_logged(self, timestamp: str) -> None:
        try:
            await self.notify_all(timestamp)
        except Exception as exc:
            logger.error("Broadcast for %s failed: %s", timestamp, exc, exc_info=True)
