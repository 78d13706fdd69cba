"""Rules deciding which bookings may be grouped, alone and in pairs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..config import settings
from ..models.domain import Booking, Dog, GroupPreference, minutes_of_day
from .geospatial import distance_km, format_distance

REASON_SOLO_ONLY = "customer prefers solo visits"
REASON_DOGS_NOT_APPROVED = "dogs not approved for group visits"
REASON_DOGS_NOT_FRIENDLY = "dogs not friendly with other dogs"
REASON_SERVICE_TYPE = "service type cannot be grouped"
REASON_MISSING_COORDINATES = "missing coordinates"
REASON_DOG_NOT_APPROVED = "not approved for group visits"
REASON_DOG_NOT_FRIENDLY = "not friendly with other dogs"


@dataclass(frozen=True, slots=True)
class PairCheck:
    ok: bool
    reason: Optional[str] = None


def ineligibility_reason(
    booking: Booking,
    groupable_service_types: Iterable[str] | None = None,
) -> Optional[str]:
    """Return why a booking can never be grouped, or ``None`` if it can."""

    if booking.customer.group_preference is GroupPreference.SOLO_ONLY:
        return REASON_SOLO_ONLY
    if not all(dog.group_approved for dog in booking.dogs):
        return REASON_DOGS_NOT_APPROVED
    if not all(dog.friendly_with_others for dog in booking.dogs):
        return REASON_DOGS_NOT_FRIENDLY
    allowed = set(groupable_service_types or settings.groupable_service_types)
    if booking.service_type.value not in allowed:
        return REASON_SERVICE_TYPE
    return None


def dog_ineligibility_reason(dog: Dog) -> Optional[str]:
    if not dog.group_approved:
        return REASON_DOG_NOT_APPROVED
    if not dog.friendly_with_others:
        return REASON_DOG_NOT_FRIENDLY
    return None


def is_group_eligible(booking: Booking, groupable_service_types: Iterable[str] | None = None) -> bool:
    return ineligibility_reason(booking, groupable_service_types) is None


def time_gap_minutes(first: Booking, second: Booking) -> int:
    """Smaller of the start-to-start and end-to-end gaps."""

    start_gap = abs(minutes_of_day(first.start) - minutes_of_day(second.start))
    end_gap = abs(minutes_of_day(first.end) - minutes_of_day(second.end))
    return min(start_gap, end_gap)


def can_pair(
    first: Booking,
    second: Booking,
    max_radius_km: float,
    max_time_gap_minutes: int,
    *,
    radius_multiplier: float | None = None,
) -> PairCheck:
    """Check whether two bookings may share a group.

    The result is symmetric in ``first`` and ``second``.
    """

    if not (first.pickup_location.is_valid and second.pickup_location.is_valid):
        return PairCheck(False, REASON_MISSING_COORDINATES)

    multiplier = radius_multiplier if radius_multiplier is not None else settings.pair_radius_multiplier
    distance = distance_km(first.pickup_location, second.pickup_location)
    if distance > max_radius_km * multiplier:
        return PairCheck(False, f"distance too large ({format_distance(distance)})")

    gap = time_gap_minutes(first, second)
    if gap > max_time_gap_minutes:
        return PairCheck(False, f"time windows too far apart ({gap} min)")

    total_dogs = first.dog_count + second.dog_count
    max_dogs = min(first.customer.max_group_size, second.customer.max_group_size)
    if total_dogs > max_dogs:
        return PairCheck(False, f"too many dogs ({total_dogs})")

    logging.debug(f"Bookings {first.booking_id} and {second.booking_id} can pair ({distance:.3f} km, {gap} min)")
    return PairCheck(True)
