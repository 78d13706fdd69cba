from datetime import date

import pytest

from groupwalk.models.domain import (
    Booking,
    Customer,
    Dog,
    GroupPreference,
    Location,
    ServiceType,
    parse_hhmm,
)
from groupwalk.services.eligibility import (
    REASON_DOG_NOT_APPROVED,
    REASON_DOG_NOT_FRIENDLY,
    REASON_DOGS_NOT_APPROVED,
    REASON_DOGS_NOT_FRIENDLY,
    REASON_MISSING_COORDINATES,
    REASON_SERVICE_TYPE,
    REASON_SOLO_ONLY,
    can_pair,
    dog_ineligibility_reason,
    ineligibility_reason,
    is_group_eligible,
    time_gap_minutes,
)

DAY = date(2025, 6, 2)


def _booking(
    bid: str,
    lat: float | None,
    lon: float | None,
    start: str = "09:00",
    end: str = "10:00",
    *,
    dogs: int = 1,
    approved: bool = True,
    friendly: bool = True,
    preference: GroupPreference = GroupPreference.NEUTRAL,
    service_type: ServiceType = ServiceType.SINGLE_WALK,
    max_group_size: int = 4,
) -> Booking:
    customer = Customer(
        customer_id=f"C-{bid}",
        name=f"Customer {bid}",
        location=Location(lat, lon),
        postal_code="10115",
        group_preference=preference,
        max_group_size=max_group_size,
    )
    return Booking(
        booking_id=bid,
        customer=customer,
        dogs=tuple(
            Dog(f"D-{bid}-{i}", customer.customer_id, f"Dog {i}", friendly_with_others=friendly, group_approved=approved)
            for i in range(dogs)
        ),
        requested_date=DAY,
        start=parse_hhmm(start),
        end=parse_hhmm(end),
        service_type=service_type,
    )


def test_eligible_booking() -> None:
    booking = _booking("B1", 52.52, 13.40)

    assert is_group_eligible(booking)
    assert ineligibility_reason(booking) is None


@pytest.mark.parametrize(
    ("kwargs", "reason"),
    [
        ({"preference": GroupPreference.SOLO_ONLY}, REASON_SOLO_ONLY),
        ({"approved": False}, REASON_DOGS_NOT_APPROVED),
        ({"friendly": False}, REASON_DOGS_NOT_FRIENDLY),
        ({"service_type": ServiceType.DAYCARE}, REASON_SERVICE_TYPE),
    ],
)
def test_ineligibility_reasons(kwargs: dict, reason: str) -> None:
    booking = _booking("B1", 52.52, 13.40, **kwargs)

    assert not is_group_eligible(booking)
    assert ineligibility_reason(booking) == reason


def test_group_approval_is_independent_of_friendliness() -> None:
    assert ineligibility_reason(_booking("B1", 52.52, 13.40, approved=False, friendly=True)) == REASON_DOGS_NOT_APPROVED
    assert ineligibility_reason(_booking("B2", 52.52, 13.40, approved=True, friendly=False)) == REASON_DOGS_NOT_FRIENDLY


def test_dog_ineligibility_reason() -> None:
    assert dog_ineligibility_reason(Dog("D1", "C1", "Rex", friendly_with_others=True, group_approved=True)) is None
    assert dog_ineligibility_reason(Dog("D2", "C1", "Bo", friendly_with_others=False, group_approved=False)) == (
        REASON_DOG_NOT_APPROVED
    )
    assert dog_ineligibility_reason(Dog("D3", "C1", "Lu", friendly_with_others=False, group_approved=True)) == (
        REASON_DOG_NOT_FRIENDLY
    )


def test_can_pair_close_bookings() -> None:
    first = _booking("B1", 52.520, 13.400, "09:00", "10:00")
    second = _booking("B2", 52.521, 13.401, "09:10", "10:10")

    assert can_pair(first, second, 2.0, 30).ok


def test_can_pair_missing_coordinates() -> None:
    first = _booking("B1", 52.520, 13.400)
    second = _booking("B2", None, None)

    check = can_pair(first, second, 2.0, 30)

    assert not check.ok
    assert check.reason == REASON_MISSING_COORDINATES


def test_can_pair_distance_limit_uses_multiplier() -> None:
    first = _booking("B1", 52.520, 13.400)
    # ~3.3 km north
    second = _booking("B2", 52.550, 13.400)

    assert can_pair(first, second, 2.0, 30).ok
    check = can_pair(first, second, 2.0, 30, radius_multiplier=1.5)
    assert not check.ok
    assert check.reason == "distance too large (3.3 km)"


def test_can_pair_time_gap_uses_closest_boundary() -> None:
    first = _booking("B1", 52.520, 13.400, "09:00", "10:00")
    # starts 45 min later but ends only 20 min later
    second = _booking("B2", 52.520, 13.400, "09:45", "10:20")

    assert time_gap_minutes(first, second) == 20
    assert can_pair(first, second, 2.0, 30).ok
    check = can_pair(first, second, 2.0, 15)
    assert not check.ok
    assert check.reason == "time windows too far apart (20 min)"


def test_can_pair_respects_smallest_customer_group_size() -> None:
    first = _booking("B1", 52.520, 13.400, dogs=2)
    second = _booking("B2", 52.520, 13.400, dogs=1, max_group_size=2)

    check = can_pair(first, second, 2.0, 30)

    assert not check.ok
    assert check.reason == "too many dogs (3)"


def test_can_pair_is_symmetric() -> None:
    bookings = [
        _booking("B1", 52.520, 13.400, "09:00", "10:00"),
        _booking("B2", 52.600, 13.500, "09:00", "10:00"),
        _booking("B3", 52.521, 13.401, "11:00", "12:00", dogs=3),
        _booking("B4", None, 13.4),
    ]
    for first in bookings:
        for second in bookings:
            assert can_pair(first, second, 2.0, 30) == can_pair(second, first, 2.0, 30)
