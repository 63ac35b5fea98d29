"""Boundary validation for feed snapshots and pilot registry payloads.

Snapshots are all-or-nothing: the first bad value rejects the whole report
so a partially trusted capture never reaches the store.  Pilot payloads are
softer; a bad one only costs the drone its pilot details.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from nestwatch.domain.airspace import within_area
from nestwatch.domain.errors import ValidationError
from nestwatch.domain.record import PilotRecord
from nestwatch.domain.snapshot import Observation, Snapshot
from nestwatch.foundation.clock import epoch_millis

_ISO_8601 = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})"
    r"T(?P<hm>\d{2}:\d{2})(?::(?P<sec>\d{2})(?:[.,](?P<fraction>\d+))?)?"
    r"(?P<zone>[zZ]|[+-]\d{2}(?::?\d{2})?)?\Z"
)
_ENTITY_ID = re.compile(r"^SN-[A-Za-z0-9_-]{10}\Z")
_PILOT_ID = re.compile(r"^P-[A-Za-z0-9_-]{10}\Z")

# Registry bookkeeping, not pilot data
_DROPPED_PILOT_FIELDS = ("createdDt",)


def _normalized(match: re.Match[str]) -> str:
    """Rewrite a matched timestamp into the subset ``fromisoformat`` accepts."""
    text = f"{match['date']}T{match['hm']}:{match['sec'] or '00'}"
    if match["fraction"]:
        # Sub-microsecond digits are truncated
        text += "." + match["fraction"][:6].ljust(6, "0")

    zone = match["zone"]
    if zone in ("z", "Z"):
        text += "+00:00"
    elif zone:
        digits = zone[1:].replace(":", "")
        text += f"{zone[0]}{digits[:2]}:{digits[2:] or '00'}"
    return text


def parse_timestamp(value: Any) -> datetime:
    """Parse a strict ISO-8601 timestamp or raise ValidationError."""
    match = _ISO_8601.match(value) if isinstance(value, str) else None
    if match is None:
        raise ValidationError(f"Invalid timestamp '{value}'", field="timestamp", value=value)
    try:
        return datetime.fromisoformat(_normalized(match))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid timestamp '{value}'", field="timestamp", value=value
        ) from exc


def _is_coordinate(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def validate_snapshot(raw: Mapping[str, Any]) -> Snapshot:
    """Validate a decoded feed report and build the Snapshot.

    Checks, short-circuiting on the first failure:
        1. timestamp is strict ISO-8601
        2. every entity id is a well-formed serial number
        3. every coordinate pair is numeric and inside the monitored area

    Raises:
        ValidationError: naming the offending field and value.
    """
    timestamp = raw.get("timestamp")
    captured_at = parse_timestamp(timestamp)

    readings = raw.get("observations") or []
    if not isinstance(readings, (list, tuple)):
        raise ValidationError(
            f"Invalid observations '{readings}'", field="observations", value=readings
        )

    for reading in readings:
        if not isinstance(reading, Mapping):
            raise ValidationError(
                f"Invalid observation '{reading}'", field="observations", value=reading
            )
        entity_id = reading.get("entity_id")
        if not isinstance(entity_id, str) or not _ENTITY_ID.match(entity_id):
            raise ValidationError(
                f"Invalid entity id '{entity_id}'", field="entity_id", value=entity_id
            )

    for reading in readings:
        entity_id = reading["entity_id"]
        x, y = reading.get("position_x"), reading.get("position_y")
        if not (_is_coordinate(x) and _is_coordinate(y) and within_area(x, y)):
            raise ValidationError(
                f"Invalid coordinates '{x} {y}' for '{entity_id}'",
                field="position",
                value=(x, y),
            )

    return Snapshot(
        timestamp=timestamp,
        epoch_millis=epoch_millis(captured_at),
        observations=tuple(
            Observation.at(r["entity_id"], float(r["position_x"]), float(r["position_y"]))
            for r in readings
        ),
    )


def validate_pilot(raw: Mapping[str, Any]) -> PilotRecord:
    """Validate a pilot registry payload and build the PilotRecord.

    Only ``pilotId`` is checked; other details are taken as given.

    Raises:
        ValidationError: if ``pilotId`` is malformed.
    """
    payload = {k: v for k, v in raw.items() if k not in _DROPPED_PILOT_FIELDS}
    pilot_id = payload.get("pilotId")
    if not isinstance(pilot_id, str) or not _PILOT_ID.match(pilot_id):
        raise ValidationError(f"Invalid pilotId '{pilot_id}'", field="pilotId", value=pilot_id)

    return PilotRecord(
        pilot_id=pilot_id,
        first_name=str(payload.get("firstName", "")),
        last_name=str(payload.get("lastName", "")),
        phone_number=str(payload.get("phoneNumber", "")),
        email=str(payload.get("email", "")),
    )
