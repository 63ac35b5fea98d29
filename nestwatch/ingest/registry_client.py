"""Pilot registry client.

Looks up the registered pilot of a drone.  A failed or malformed lookup
never aborts a snapshot; the drone is stored without pilot details and the
next restricted sighting tries again.
"""

from __future__ import annotations

import logging

import httpx

from nestwatch.domain.errors import TransportError, ValidationError
from nestwatch.domain.record import PilotRecord
from nestwatch.ingest.validator import validate_pilot

logger = logging.getLogger(__name__)


class PilotRegistryClient:
    """JSON client for ``GET {base_url}/{entity_id}``."""

    def __init__(self, base_url: str, http: httpx.AsyncClient, timeout: float) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http
        self._timeout = timeout

    async def fetch_pilot(self, entity_id: str) -> PilotRecord:
        """Fetch and validate the pilot of *entity_id*.

        Raises:
            TransportError: on timeout, connection failure, non-2xx status
                or a body that is not a JSON object.
            ValidationError: if the pilot payload is malformed.
        """
        url = f"{self._base_url}/{entity_id}"
        try:
            response = await self._http.get(url, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Registry request timed out after {self._timeout}s", url=url
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Registry request failed: {exc}", url=url) from exc

        logger.debug("Registry responded %d for %s", response.status_code, entity_id)
        if not response.is_success:
            raise TransportError(
                f"Registry responded {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"Registry body is not JSON: {exc}", url=url) from exc
        if not isinstance(payload, dict):
            raise TransportError("Registry body is not a JSON object", url=url)

        return validate_pilot(payload)

    async def lookup(self, entity_id: str) -> PilotRecord | None:
        """Like ``fetch_pilot`` but degrades to None on any lookup failure."""
        try:
            return await self.fetch_pilot(entity_id)
        except (TransportError, ValidationError) as exc:
            logger.warning("Pilot lookup for %s failed: %s", entity_id, exc)
            return None
