"""Controlled enumerations for the nestwatch domain."""

from __future__ import annotations

from enum import Enum


class RestrictionState(str, Enum):
    """Per-drone restriction state.  The only transition is CLEAR → RESTRICTED."""

    CLEAR = "clear"
    RESTRICTED = "restricted"


class StoreBackend(str, Enum):
    """Which backing store holds the aggregated records."""

    MEMORY = "memory"
    REDIS = "redis"
