"""The monitored airspace: a fixed rectangle with a protected zone around the nest.

Coordinates and distances share one unit (the sensor reports millimetres).
"""

from __future__ import annotations

import math

AREA_WIDTH: float = 500_000
AREA_HEIGHT: float = 500_000

ORIGIN_X: float = 250_000
ORIGIN_Y: float = 250_000

PROTECTED_RADIUS: float = 100_000


def distance_to_origin(x: float, y: float) -> float:
    """Euclidean distance from (x, y) to the nest."""
    return math.hypot(x - ORIGIN_X, y - ORIGIN_Y)


def within_protected_zone(x: float, y: float) -> bool:
    """True if (x, y) lies inside or on the edge of the protected zone."""
    return distance_to_origin(x, y) <= PROTECTED_RADIUS


def within_area(x: float, y: float) -> bool:
    """True if (x, y) lies inside the monitored rectangle, edges included."""
    return 0 <= x <= AREA_WIDTH and 0 <= y <= AREA_HEIGHT
