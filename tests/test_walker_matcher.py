from datetime import date

from groupwalk.models.domain import (
    Booking,
    Customer,
    Dog,
    Location,
    Slot,
    SlotStatus,
    Walker,
    parse_hhmm,
)
from groupwalk.persistence.memory import InMemoryRepository
from groupwalk.services.grouping import materialize_group
from groupwalk.services.matching import WalkerMatcher, dominant_area_code

MONDAY = date(2025, 6, 2)


def _booking(bid: str, postal_code: str = "10115", start: str = "09:00", end: str = "10:00") -> Booking:
    customer = Customer(f"C-{bid}", f"Customer {bid}", Location(52.520, 13.400), postal_code)
    return Booking(
        booking_id=bid,
        customer=customer,
        dogs=(Dog(f"D-{bid}", customer.customer_id, "Rex", friendly_with_others=True, group_approved=True),),
        requested_date=MONDAY,
        start=parse_hhmm(start),
        end=parse_hhmm(end),
    )


def _walker(
    wid: str,
    areas: tuple[str, ...] = ("10115",),
    days: tuple[int, ...] = (0, 1, 2, 3, 4),
    available_from: str = "08:00",
    available_to: str = "18:00",
    max_dogs: int = 4,
    active: bool = True,
) -> Walker:
    return Walker(
        walker_id=wid,
        name=f"Walker {wid}",
        work_areas=frozenset(areas),
        available_from=parse_hhmm(available_from),
        available_to=parse_hhmm(available_to),
        work_days=frozenset(days),
        max_dogs=max_dogs,
        is_active=active,
    )


def _slot(sid: str, walker_id: str, start: str, end: str, status: SlotStatus = SlotStatus.OPEN) -> Slot:
    return Slot(
        slot_id=sid,
        walker_id=walker_id,
        slot_date=MONDAY,
        start=parse_hhmm(start),
        end=parse_hhmm(end),
        max_dogs=4,
        status=status,
    )


def _group():
    return materialize_group([_booking("B1"), _booking("B2", start="09:10", end="10:10")])


def test_dominant_area_code_prefers_first_on_tie() -> None:
    bookings = [_booking("B1", "10117"), _booking("B2", "10115"), _booking("B3", "10115"), _booking("B4", "10117")]

    assert dominant_area_code(bookings) == "10117"
    assert dominant_area_code(bookings[1:]) == "10115"
    assert dominant_area_code([]) is None


def test_matches_first_walker_in_stable_order() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W2"))
    repository.add_walker(_walker("W1"))

    match = WalkerMatcher(repository).match(_group(), MONDAY)

    assert match.matched
    assert match.walker_id == "W1"
    assert match.walker_name == "Walker W1"
    assert match.area_code == "10115"


def test_no_walker_for_area_weekday_or_capacity() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1", areas=("20095",)))
    repository.add_walker(_walker("W2", days=(5, 6)))
    repository.add_walker(_walker("W3", max_dogs=1))
    repository.add_walker(_walker("W4", active=False))

    match = WalkerMatcher(repository).match(_group(), MONDAY)

    assert not match.matched
    assert match.reason == "no walker serves area 10115 on Monday for 2 dogs"


def test_group_window_must_fit_walker_hours() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1", available_from="09:30"))

    match = WalkerMatcher(repository).match(_group(), MONDAY)

    assert not match.matched
    assert match.reason == "no walker free during 09:00-10:10"


def test_overlapping_slot_skips_walker() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))
    repository.add_walker(_walker("W2"))
    repository.add_slot(_slot("S1", "W1", "09:30", "10:30"))

    match = WalkerMatcher(repository).match(_group(), MONDAY)

    assert match.walker_id == "W2"


def test_adjacent_and_cancelled_slots_do_not_conflict() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))
    repository.add_slot(_slot("S1", "W1", "08:00", "09:00"))
    repository.add_slot(_slot("S2", "W1", "10:10", "11:00"))
    repository.add_slot(_slot("S3", "W1", "09:00", "10:00", status=SlotStatus.CANCELLED))

    assert WalkerMatcher(repository).match(_group(), MONDAY).walker_id == "W1"


def test_reserved_windows_count_as_commitments() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))

    match = WalkerMatcher(repository).match(
        _group(), MONDAY, reserved={"W1": [(parse_hhmm("09:45"), parse_hhmm("10:45"))]}
    )

    assert not match.matched
    assert match.reason == "no walker free during 09:00-10:10"
