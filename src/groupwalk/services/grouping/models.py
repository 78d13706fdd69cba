"""Grouping domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import time
from typing import Dict, List, Optional

from ...config import settings
from ...models.domain import Booking, Location


@dataclass(frozen=True, slots=True)
class GroupingPolicy:
    max_radius_km: float = settings.max_radius_km
    max_time_gap_minutes: int = settings.max_time_gap_minutes
    max_dogs_per_group: int = settings.max_dogs_per_group
    min_group_size: int = settings.min_group_size
    radius_multiplier: float = settings.pair_radius_multiplier

    def __post_init__(self) -> None:
        if self.max_radius_km <= 0:
            raise ValueError("max_radius_km must be > 0")
        if self.max_time_gap_minutes < 0:
            raise ValueError("max_time_gap_minutes must be >= 0")
        if self.min_group_size < 2:
            raise ValueError("min_group_size must be >= 2")
        if self.max_dogs_per_group < self.min_group_size:
            raise ValueError("max_dogs_per_group must be >= min_group_size")


@dataclass(slots=True)
class GroupCandidate:
    bookings: List[Booking]
    center: Location
    radius_km: float
    route: List[Location]
    total_distance_km: float
    start: time
    end: time
    total_dogs: int
    score: float
    walker_id: Optional[str] = None
    walker_name: Optional[str] = None
    area_code: Optional[str] = None
    unassigned_reason: Optional[str] = None

    @property
    def booking_ids(self) -> list[str]:
        return [booking.booking_id for booking in self.bookings]

    @property
    def has_walker(self) -> bool:
        return self.walker_id is not None


@dataclass(slots=True)
class GroupingResult:
    groups: List[GroupCandidate]
    ungrouped: Dict[str, str] = field(default_factory=dict)
