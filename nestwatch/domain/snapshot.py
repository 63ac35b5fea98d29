"""Snapshot and Observation: what one upstream report tells us.

A Snapshot is immutable once received and is ingested at most once per
distinct timestamp.  Observations are transient: the store consumes them
during a merge and never keeps them verbatim.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from nestwatch.domain.airspace import PROTECTED_RADIUS, distance_to_origin


class Observation(BaseModel):
    """One drone's reading within a Snapshot."""

    entity_id: str = Field(..., description="Drone serial number")
    position_x: float
    position_y: float
    distance: float = Field(..., ge=0.0, description="Distance to the nest")
    restricted: bool = Field(..., description="True if inside the protected zone")

    model_config = {"frozen": True}

    @classmethod
    def at(cls, entity_id: str, x: float, y: float) -> Observation:
        """Build an observation, deriving distance and restriction from position."""
        distance = distance_to_origin(x, y)
        return cls(
            entity_id=entity_id,
            position_x=x,
            position_y=y,
            distance=distance,
            restricted=distance <= PROTECTED_RADIUS,
        )


class Snapshot(BaseModel):
    """One validated upstream report."""

    timestamp: str = Field(..., description="ISO-8601 capture time, the dedup key")
    epoch_millis: int = Field(..., description="Capture time as an ordering score")
    observations: tuple[Observation, ...] = ()

    model_config = {"frozen": True}

    @property
    def restricted_observations(self) -> list[Observation]:
        return [o for o in self.observations if o.restricted]
