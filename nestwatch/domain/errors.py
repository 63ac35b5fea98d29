"""Error taxonomy for the ingestion path.

None of these are fatal to the process.  The poll scheduler catches
everything at the cycle boundary, logs it, and reschedules.
"""

from __future__ import annotations

from typing import Any


class NestwatchError(Exception):
    """Base exception for all nestwatch errors."""


class ValidationError(NestwatchError):
    """A snapshot, observation or pilot payload failed validation.

    Aborts the whole snapshot (or only the pilot attachment for registry
    payloads).  Never retried mid-cycle.
    """

    def __init__(self, message: str, *, field: str = "", value: Any = None) -> None:
        self.field = field
        self.value = value
        super().__init__(message)


class TransportError(NestwatchError):
    """Upstream fetch failed: timeout, connection error or non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class StoreError(NestwatchError):
    """An atomic merge or dedup operation failed in the backing store."""
