"""Self-correcting periodic scheduler.

Cycle *start* times track a steady cadence: after a cycle that took ``E``
seconds the scheduler waits ``max(0, P - E)`` rather than ``P``.  A cycle
that overruns the period is followed immediately by the next one, with no
catch-up burst.

The scheduler never dies on a cycle error.  Timeouts and exceptions are
logged at the cycle boundary and the next cycle is scheduled regardless;
only ``stop()`` ends the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from nestwatch.foundation.clock import monotonic

logger = logging.getLogger(__name__)


def next_delay(interval: float, elapsed: float) -> float:
    """Seconds to wait before the next cycle.  Never negative."""
    return max(0.0, interval - elapsed)


class PollScheduler:
    """Runs *cycle* every *interval* seconds until stopped.

    Args:
        name: Used in log lines.
        cycle: Coroutine function executed once per period.
        interval: Nominal period in seconds.
        timeout: Hard bound on one cycle in seconds, or None for no bound.
        clock: Monotonic seconds, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        cycle: Callable[[], Awaitable[Any]],
        interval: float,
        timeout: float | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._name = name
        self._cycle = cycle
        self._interval = interval
        self._timeout = timeout
        self._clock = clock
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

        self.cycles_run: int = 0
        self.cycles_failed: int = 0
        self.last_elapsed: float | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run(), name=f"scheduler:{self._name}")
        logger.info("Scheduler %s started (every %.3fs)", self._name, self._interval)

    async def stop(self) -> None:
        """Stop scheduling.  A cycle already running is allowed to finish."""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Scheduler %s stopped after %d cycles", self._name, self.cycles_run)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Loop ─────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """The scheduling loop.  Returns only after ``stop()``."""
        while not self._stopping.is_set():
            start = self._clock()
            await self.run_once()
            self.last_elapsed = self._clock() - start

            delay = next_delay(self._interval, self.last_elapsed)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> None:
        """Execute one cycle, absorbing any failure."""
        self.cycles_run += 1
        try:
            if self._timeout is None:
                await self._cycle()
            else:
                await asyncio.wait_for(self._cycle(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self.cycles_failed += 1
            logger.warning(
                "Scheduler %s: cycle exceeded %.3fs and was abandoned",
                self._name,
                self._timeout,
            )
        except Exception as exc:
            self.cycles_failed += 1
            logger.error("Scheduler %s: cycle failed: %s", self._name, exc, exc_info=True)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "running": self.running,
            "interval_seconds": self._interval,
            "cycles_run": self.cycles_run,
            "cycles_failed": self.cycles_failed,
            "last_elapsed_seconds": (
                round(self.last_elapsed, 4) if self.last_elapsed is not None else None
            ),
        }
