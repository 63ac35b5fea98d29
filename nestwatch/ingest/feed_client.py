"""Upstream feed client: fetch the monitoring report and decode its XML.

The decoded shape is what ``validate_snapshot`` expects::

    {"timestamp": "2023-01-11T13:58:02.472Z",
     "observations": [{"entity_id": "SN-...", "position_x": 1.0, "position_y": 2.0}, ...]}

Decoding does not judge values; numbers that fail to parse are passed
through as strings so the validator can reject them with a precise message.
"""

from __future__ import annotations

import logging
from typing import Any
from xml.etree import ElementTree as ET

import httpx

from nestwatch.domain.errors import TransportError

logger = logging.getLogger(__name__)


def _number_or_text(text: str | None) -> Any:
    if text is None:
        return None
    try:
        return float(text)
    except ValueError:
        return text


def _child_text(node: ET.Element, name: str) -> str | None:
    child = node.find(name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def decode_report(document: str) -> dict[str, Any]:
    """Decode one XML report into the raw snapshot mapping.

    Raises:
        ValueError: if the document is not XML or has no capture element.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise ValueError(f"Report is not valid XML: {exc}") from exc

    capture = root if root.tag == "capture" else root.find("capture")
    if capture is None:
        raise ValueError("Report has no <capture> element")

    return {
        "timestamp": capture.get("snapshotTimestamp"),
        "observations": [
            {
                "entity_id": _child_text(drone, "serialNumber"),
                "position_x": _number_or_text(_child_text(drone, "positionX")),
                "position_y": _number_or_text(_child_text(drone, "positionY")),
            }
            for drone in capture.findall("drone")
        ],
    }


class FeedClient:
    """Fetches the drone report with a hard per-request timeout."""

    def __init__(self, url: str, http: httpx.AsyncClient, timeout: float) -> None:
        self._url = url
        self._http = http
        self._timeout = timeout

    async def fetch(self) -> dict[str, Any]:
        """GET the report and decode it.

        Raises:
            TransportError: on timeout, connection failure or non-2xx status.
            ValueError: if the body cannot be decoded.
        """
        try:
            response = await self._http.get(self._url, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Feed request timed out after {self._timeout}s", url=self._url
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Feed request failed: {exc}", url=self._url) from exc

        logger.debug("Feed responded %d", response.status_code)
        if not response.is_success:
            raise TransportError(
                f"Feed responded {response.status_code}",
                status_code=response.status_code,
                url=self._url,
            )

        return decode_report(response.text)
