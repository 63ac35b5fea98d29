"""AggregatedRecord: the rolling per-drone view built from observations.

One record exists per drone serial number.  It is created by the first
observation, mutated by every later merge, and disappears as a single unit
once its TTL elapses without a refresh.

Invariants (enforced by ``absorb``):
    - closest_distance never increases.
    - restriction moves CLEAR → RESTRICTED only, never back.
    - first_restricted_at is written exactly once, on that transition.
    - position_history is newest-first with one entry per merge.

Thread-safety note:
    Records are mutated *only* inside a store's atomic merge.  They are not
    themselves locked.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from nestwatch.domain.enums import RestrictionState
from nestwatch.domain.snapshot import Observation


class PilotRecord(BaseModel):
    """Registered pilot of a drone, as returned by the pilot registry."""

    pilot_id: str = Field(..., alias="pilotId")
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    phone_number: str = Field("", alias="phoneNumber")
    email: str = ""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    def to_view(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class PositionFix(BaseModel):
    """One entry of a drone's position history."""

    timestamp: str
    x: float
    y: float

    model_config = {"frozen": True}

    def to_view(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "positionX": self.x, "positionY": self.y}


class AggregatedRecord:
    """Mutable aggregate of every observation of one drone within its lifetime."""

    __slots__ = (
        "entity_id",
        "closest_distance",
        "last_seen",
        "restriction",
        "first_restricted_at",
        "pilot",
        "_history",
    )

    def __init__(self, entity_id: str) -> None:
        self.entity_id: str = entity_id
        self.closest_distance: float = math.inf
        self.last_seen: str | None = None
        self.restriction: RestrictionState = RestrictionState.CLEAR
        self.first_restricted_at: str | None = None
        self.pilot: PilotRecord | None = None
        self._history: list[PositionFix] = []

    # ── Mutation ─────────────────────────────────────────────────────────

    def absorb(
        self,
        observation: Observation,
        timestamp: str,
        pilot: PilotRecord | None = None,
    ) -> None:
        """Fold one observation into this record."""
        if observation.entity_id != self.entity_id:
            raise ValueError(
                f"observation for {observation.entity_id!r} merged into {self.entity_id!r}"
            )

        self.closest_distance = min(self.closest_distance, observation.distance)
        self.last_seen = timestamp

        if observation.restricted:
            self.mark_restricted(timestamp)

        self._history.insert(
            0,
            PositionFix(timestamp=timestamp, x=observation.position_x, y=observation.position_y),
        )

        if observation.restricted and pilot is not None:
            # A different pilot for the same drone replaces the old one outright
            self.pilot = pilot

    def mark_restricted(self, timestamp: str) -> bool:
        """CLEAR → RESTRICTED.  Returns True only on the transition itself."""
        if self.restriction is RestrictionState.RESTRICTED:
            return False
        self.restriction = RestrictionState.RESTRICTED
        self.first_restricted_at = timestamp
        return True

    def clone(self) -> AggregatedRecord:
        """Independent copy.  PositionFix and PilotRecord are frozen, so sharing them is safe."""
        copy = AggregatedRecord(self.entity_id)
        copy.closest_distance = self.closest_distance
        copy.last_seen = self.last_seen
        copy.restriction = self.restriction
        copy.first_restricted_at = self.first_restricted_at
        copy.pilot = self.pilot
        copy._history = list(self._history)
        return copy

    @classmethod
    def restore(
        cls,
        entity_id: str,
        *,
        closest_distance: float,
        last_seen: str | None,
        restricted_ever: bool,
        first_restricted_at: str | None,
        position_history: list[PositionFix],
        pilot: PilotRecord | None = None,
    ) -> AggregatedRecord:
        """Rebuild a record from fields persisted by an external store."""
        record = cls(entity_id)
        record.closest_distance = closest_distance
        record.last_seen = last_seen
        if restricted_ever:
            record.restriction = RestrictionState.RESTRICTED
            record.first_restricted_at = first_restricted_at
        record.pilot = pilot
        record._history = list(position_history)
        return record

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def restricted_ever(self) -> bool:
        return self.restriction is RestrictionState.RESTRICTED

    @property
    def position_history(self) -> list[PositionFix]:
        """Newest-first copy of the position history."""
        return list(self._history)

    def to_view(self) -> dict[str, Any]:
        """The shape pushed to subscribers and served by the REST API."""
        view: dict[str, Any] = {
            "id": self.entity_id,
            "closestDistance": self.closest_distance,
            "lastSeen": self.last_seen,
            "restrictedEver": self.restricted_ever,
            "positionHistory": [fix.to_view() for fix in self._history],
        }
        if self.first_restricted_at is not None:
            view["firstRestrictedAt"] = self.first_restricted_at
        if self.pilot is not None:
            view["pilot"] = self.pilot.to_view()
        return view

    # ── Dunder ───────────────────────────────────────────────────────────

    def __repr__(self) -> str:
        return (
            f"AggregatedRecord(id={self.entity_id}, "
            f"closest={self.closest_distance:.1f}, "
            f"state={self.restriction.value}, "
            f"fixes={len(self._history)})"
        )
