"""Domain models for customers, dogs, bookings, walkers and visit slots."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from ..errors import InvalidTimeWindowError, TimeFormatError

_HHMM_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class GroupPreference(str, Enum):
    PREFER_GROUP = "PREFER_GROUP"
    NEUTRAL = "NEUTRAL"
    SOLO_ONLY = "SOLO_ONLY"


class DogSize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    EXTRA_LARGE = "EXTRA_LARGE"


class ServiceType(str, Enum):
    SINGLE_WALK = "SINGLE_WALK"
    GROUP_WALK = "GROUP_WALK"
    DAYCARE = "DAYCARE"
    PUPPY_VISIT = "PUPPY_VISIT"
    HOME_VISIT = "HOME_VISIT"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    WALKER_ASSIGNED = "WALKER_ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class SlotStatus(str, Enum):
    OPEN = "OPEN"
    FULL = "FULL"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RunMode(str, Enum):
    PREVIEW = "PREVIEW"
    APPLY = "APPLY"


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:MM`` string into a :class:`datetime.time`."""

    match = _HHMM_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise TimeFormatError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise TimeFormatError(f"Invalid time '{value}', expected HH:MM")
    return time(hours, minutes)


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def windows_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open interval overlap test for ``[start, end)`` windows."""

    return start_a < end_b and start_b < end_a


@dataclass(frozen=True, slots=True)
class Location:
    """WGS84 coordinate pair in decimal degrees."""

    latitude: Optional[float]
    longitude: Optional[float]

    @property
    def is_valid(self) -> bool:
        if self.latitude is None or self.longitude is None:
            return False
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            return False
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0

    def as_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(slots=True)
class Customer:
    customer_id: str
    name: str
    location: Location
    postal_code: str
    group_preference: GroupPreference = GroupPreference.NEUTRAL
    max_group_size: int = 4
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Dog:
    dog_id: str
    customer_id: str
    name: str
    size: DogSize = DogSize.MEDIUM
    friendly_with_others: bool = False
    group_approved: bool = False


@dataclass(slots=True)
class Booking:
    """A single customer's request for a visit on one day."""

    booking_id: str
    customer: Customer
    dogs: tuple[Dog, ...]
    requested_date: date
    start: time
    end: time
    service_type: ServiceType = ServiceType.SINGLE_WALK
    status: BookingStatus = BookingStatus.PENDING
    slot_id: Optional[str] = None
    pickup_override: Optional[Location] = None
    pickup_postal_code: Optional[str] = None
    base_price: float = 18.0
    price: Optional[float] = None
    original_price: Optional[float] = None
    group_discount: float = 0.0
    is_group_booking: bool = False

    def __post_init__(self) -> None:
        if not self.dogs:
            raise ValueError(f"Booking {self.booking_id} must reference at least one dog")
        foreign = [dog.dog_id for dog in self.dogs if dog.customer_id != self.customer.customer_id]
        if foreign:
            raise ValueError(f"Booking {self.booking_id} references dogs of another customer: {foreign}")
        if self.start >= self.end:
            raise InvalidTimeWindowError(
                f"Booking {self.booking_id} has an empty time window "
                f"{format_hhmm(self.start)}-{format_hhmm(self.end)}"
            )
        if self.price is None:
            self.price = self.base_price * len(self.dogs)

    @property
    def pickup_location(self) -> Location:
        return self.pickup_override if self.pickup_override is not None else self.customer.location

    @property
    def area_code(self) -> str:
        return self.pickup_postal_code or self.customer.postal_code

    @property
    def dog_count(self) -> int:
        return len(self.dogs)


@dataclass(slots=True)
class Walker:
    """A field worker. ``work_days`` uses ``date.weekday()`` numbering (Monday=0)."""

    walker_id: str
    name: str
    work_areas: frozenset[str]
    available_from: time
    available_to: time
    work_days: frozenset[int]
    max_dogs: int
    is_active: bool = True


@dataclass(slots=True)
class Slot:
    """A scheduled visit, individual (one booking) or group (two or more)."""

    slot_id: str
    walker_id: str
    slot_date: date
    start: time
    end: time
    max_dogs: int
    current_dogs: int = 0
    status: SlotStatus = SlotStatus.OPEN
    is_group: bool = False
    booking_ids: list[str] = field(default_factory=list)
    area_code: Optional[str] = None
    center: Optional[Location] = None
    radius_km: Optional[float] = None
    score: Optional[float] = None
    route: list[Location] = field(default_factory=list)
    total_distance_km: Optional[float] = None
    proposal_key: Optional[str] = None
    run_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def remaining_capacity(self) -> int:
        return self.max_dogs - self.current_dogs


@dataclass(slots=True)
class Notification:
    customer_id: str
    kind: str
    title: str
    message: str
    booking_id: Optional[str] = None
    slot_id: Optional[str] = None
    link: str = "/customer"
    notification_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(slots=True)
class OptimizationRun:
    """Audit record of one optimization attempt for a target date."""

    run_id: str
    target_date: date
    max_radius_km: float
    max_time_gap_minutes: int
    mode: RunMode = RunMode.PREVIEW
    status: RunStatus = RunStatus.RUNNING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    bookings_analyzed: int = 0
    bookings_grouped: int = 0
    groups_created: int = 0
    total_savings: float = 0.0
    results: dict = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    error_message: Optional[str] = None
    source_run_id: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.status is not RunStatus.RUNNING
