from dataclasses import replace
from datetime import date

import pytest

from groupwalk.errors import (
    BookingConflictError,
    CapacityExceededError,
    InvalidLocationError,
    NotFoundError,
    SlotTransitionError,
    WalkerConflictError,
)
from groupwalk.models.domain import (
    Booking,
    BookingStatus,
    Customer,
    Dog,
    GroupPreference,
    Location,
    Slot,
    SlotStatus,
    Walker,
    parse_hhmm,
)
from groupwalk.persistence.memory import InMemoryRepository
from groupwalk.services.slots.service import (
    NOTIFICATION_GROUP_JOINED,
    NOTIFICATION_WALKER_ASSIGNED,
    SlotService,
    match_score,
    suggestion_score,
)

MONDAY = date(2025, 6, 2)
HOME = Location(52.520, 13.400)


def _customer(cid: str, location: Location = HOME, preference: GroupPreference = GroupPreference.NEUTRAL) -> Customer:
    return Customer(cid, f"Customer {cid}", location, "10115", group_preference=preference)


def _booking(bid: str, customer: Customer, dogs: int = 1, slot_id: str | None = None) -> Booking:
    return Booking(
        booking_id=bid,
        customer=customer,
        dogs=tuple(
            Dog(f"D-{bid}-{i}", customer.customer_id, f"Dog {i}", friendly_with_others=True, group_approved=True)
            for i in range(dogs)
        ),
        requested_date=MONDAY,
        start=parse_hhmm("09:00"),
        end=parse_hhmm("10:00"),
        status=BookingStatus.WALKER_ASSIGNED if slot_id else BookingStatus.PENDING,
        slot_id=slot_id,
    )


def _slot(
    sid: str,
    center: Location | None = HOME,
    booking_ids: tuple[str, ...] = (),
    current_dogs: int | None = None,
    max_dogs: int = 4,
    is_group: bool = True,
    walker_id: str = "W1",
    area_code: str | None = "10115",
) -> Slot:
    dogs = len(booking_ids) if current_dogs is None else current_dogs
    return Slot(
        slot_id=sid,
        walker_id=walker_id,
        slot_date=MONDAY,
        start=parse_hhmm("09:00"),
        end=parse_hhmm("10:00"),
        max_dogs=max_dogs,
        current_dogs=dogs,
        status=SlotStatus.FULL if dogs == max_dogs else SlotStatus.OPEN,
        is_group=is_group,
        booking_ids=list(booking_ids),
        center=center,
        radius_km=0.2,
        area_code=area_code,
    )


def _walker(wid: str = "W1") -> Walker:
    return Walker(
        walker_id=wid,
        name=f"Walker {wid}",
        work_areas=frozenset({"10115"}),
        available_from=parse_hhmm("07:00"),
        available_to=parse_hhmm("19:00"),
        work_days=frozenset({0, 1, 2, 3, 4}),
        max_dogs=4,
    )


def _single_member_repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_walker(_walker())
    repository.add_booking(_booking("B1", _customer("C1"), slot_id="S1"))
    repository.add_slot(_slot("S1", booking_ids=("B1",), is_group=False))
    return repository


def test_join_applies_discount_and_recomputes_geometry() -> None:
    repository = _single_member_repository()
    repository.add_booking(_booking("B2", _customer("C2", Location(52.530, 13.400))))

    slot = SlotService(repository, discount_rate=0.15).join("S1", "B2")

    assert slot.is_group
    assert slot.current_dogs == 2
    assert slot.booking_ids == ["B1", "B2"]
    assert slot.center.latitude == pytest.approx(52.525, abs=1e-4)
    assert slot.radius_km == pytest.approx(0.556, abs=0.01)
    assert len(slot.route) == 2
    booking = repository.get_booking("B2")
    assert booking.status is BookingStatus.WALKER_ASSIGNED
    assert booking.price == pytest.approx(15.30)
    assert booking.is_group_booking
    notifications = repository.list_notifications("C2")
    assert len(notifications) == 1
    assert notifications[0].kind == NOTIFICATION_GROUP_JOINED
    assert notifications[0].slot_id == "S1"
    assert "15.30" in notifications[0].message


def test_join_rejects_ineligible_booking() -> None:
    repository = _single_member_repository()
    repository.add_booking(_booking("B2", _customer("C2", preference=GroupPreference.SOLO_ONLY)))

    with pytest.raises(ValueError, match="solo"):
        SlotService(repository).join("S1", "B2")

    assert repository.get_slot("S1").current_dogs == 1


def test_join_rejects_booking_without_location() -> None:
    repository = _single_member_repository()
    repository.add_booking(_booking("B2", _customer("C2", Location(None, None))))

    with pytest.raises(InvalidLocationError):
        SlotService(repository).join("S1", "B2")


def test_join_over_capacity_fails() -> None:
    repository = InMemoryRepository()
    repository.add_booking(_booking("B1", _customer("C1"), dogs=3, slot_id="S1"))
    repository.add_slot(_slot("S1", booking_ids=("B1",), current_dogs=3))
    repository.add_booking(_booking("B2", _customer("C2"), dogs=2))

    with pytest.raises(CapacityExceededError):
        SlotService(repository).join("S1", "B2")

    assert repository.get_booking("B2").slot_id is None


def test_join_unknown_slot_fails() -> None:
    repository = _single_member_repository()
    repository.add_booking(_booking("B2", _customer("C2")))

    with pytest.raises(NotFoundError):
        SlotService(repository).join("missing", "B2")


def test_leave_shrinks_geometry_and_clears_empty_slot() -> None:
    repository = _single_member_repository()
    repository.add_booking(_booking("B2", _customer("C2", Location(52.530, 13.400))))
    service = SlotService(repository)
    service.join("S1", "B2")

    slot = service.leave("S1", "B2")
    assert slot.is_group is False
    assert slot.center == HOME
    assert slot.radius_km == pytest.approx(0.0)
    assert repository.get_booking("B2").price == pytest.approx(18.0)

    emptied = service.leave("S1", "B1")
    assert emptied.current_dogs == 0
    assert emptied.center is None
    assert emptied.route == []


def test_lifecycle_actions() -> None:
    repository = _single_member_repository()
    service = SlotService(repository)

    assert service.start("S1").status is SlotStatus.IN_PROGRESS
    with pytest.raises(SlotTransitionError):
        service.cancel("S1")
    assert service.cancel("S1", administrative=True).status is SlotStatus.CANCELLED
    assert repository.get_booking("B1").status is BookingStatus.PENDING


def test_match_score_bands() -> None:
    assert match_score(0.3, 2) == 160.0
    assert match_score(0.8, 3) == 145.0
    assert match_score(1.2, 0) == 110.0
    assert match_score(2.0, 1) == 105.0


def _discovery_repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_walker(_walker())
    seeker = _customer("SEEK")
    repository.add_customer(seeker)
    repository.add_booking(_booking("OWN", seeker, slot_id="S-own"))
    for slot in (
        _slot("S-near", Location(52.5227, 13.400), booking_ids=("N1", "N2")),
        _slot("S-mid", Location(52.5272, 13.400), booking_ids=("M1", "M2", "M3"), walker_id="W-unknown"),
        _slot("S-far", Location(52.565, 13.400), booking_ids=("F1", "F2")),
        _slot("S-full", HOME, booking_ids=("X1", "X2", "X3", "X4")),
        _slot("S-own", HOME, booking_ids=("OWN", "O2")),
        _slot("S-solo", HOME, booking_ids=("I1",), is_group=False),
        _slot("S-nowhere", None, booking_ids=("Z1", "Z2")),
    ):
        repository.add_slot(slot)
    return repository


def test_available_slots_ranked_by_match_score() -> None:
    available = SlotService(_discovery_repository(), discount_rate=0.15, max_radius_km=2.0).find_available_group_slots(
        "SEEK", MONDAY
    )

    assert [item.slot.slot_id for item in available] == ["S-near", "S-mid"]
    near, mid = available
    assert near.match_score == 160.0
    assert near.walker_name == "Walker W1"
    assert near.group_price == pytest.approx(15.30)
    assert mid.match_score == 145.0
    assert mid.walker_name is None
    assert near.distance_km < mid.distance_km


def test_available_slots_respect_requested_dog_count() -> None:
    available = SlotService(_discovery_repository(), max_radius_km=2.0).find_available_group_slots(
        "SEEK", MONDAY, dog_ids=["D1", "D2"]
    )

    assert [item.slot.slot_id for item in available] == ["S-near"]
    assert available[0].group_price == pytest.approx(30.60)


def test_available_slots_require_customer_location() -> None:
    repository = InMemoryRepository()
    repository.add_customer(_customer("LOST", Location(None, None)))

    with pytest.raises(InvalidLocationError):
        SlotService(repository).find_available_group_slots("LOST", MONDAY)
    with pytest.raises(NotFoundError):
        SlotService(repository).find_available_group_slots("nobody", MONDAY)


def test_suggestion_score_rewards_company_and_fill() -> None:
    assert suggestion_score(0, 4, 1) == 107.5
    assert suggestion_score(1, 4, 1) == 135.0
    assert suggestion_score(2, 4, 1) == 142.5


def _scheduling_repository() -> InMemoryRepository:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))
    repository.add_walker(_walker("W2"))
    repository.add_walker(_walker("W3"))
    repository.add_booking(_booking("B1", _customer("C1"), slot_id="S1"))
    repository.add_booking(_booking("B2", _customer("C2"), slot_id="S2"))
    repository.add_booking(_booking("B3", _customer("C3"), slot_id="S2"))
    repository.add_slot(_slot("S1", booking_ids=("B1",), is_group=False, walker_id="W1"))
    repository.add_slot(_slot("S2", booking_ids=("B2", "B3"), walker_id="W2"))
    repository.add_booking(_booking("NEW", _customer("C9")))
    return repository


def test_suggestions_rank_existing_slots_by_company_and_fill() -> None:
    suggestions = SlotService(_scheduling_repository()).find_slot_suggestions("NEW")

    assert [item.slot.slot_id for item in suggestions] == ["S2", "S1"]
    assert suggestions[0].score == 142.5
    assert suggestions[1].score == 135.0
    assert suggestions[0].walker_name == "Walker W2"
    assert not suggestions[0].is_new_slot


def test_suggestions_skip_slots_in_other_areas_or_windows() -> None:
    repository = _scheduling_repository()
    other_area = _slot("S3", booking_ids=(), walker_id="W3", area_code="20095")
    repository.add_slot(other_area)
    later = _slot("S4", booking_ids=(), walker_id="W3")
    later.start, later.end = parse_hhmm("10:00"), parse_hhmm("11:00")
    repository.add_slot(later)

    suggestions = SlotService(repository).find_slot_suggestions("NEW")

    assert {item.slot.slot_id for item in suggestions} == {"S1", "S2"}


def test_individual_slot_of_solo_customer_is_not_offered() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))
    repository.add_walker(_walker("W2"))
    repository.add_booking(_booking("B1", _customer("C1", preference=GroupPreference.SOLO_ONLY), slot_id="S1"))
    repository.add_slot(_slot("S1", booking_ids=("B1",), is_group=False, walker_id="W1"))
    repository.add_booking(_booking("NEW", _customer("C9")))

    suggestions = SlotService(repository).find_slot_suggestions("NEW")

    assert [(item.walker_id, item.is_new_slot, item.score) for item in suggestions] == [("W2", True, 50.0)]
    assert suggestions[0].remaining_capacity == 4


def test_ineligible_booking_only_gets_new_slot_suggestions() -> None:
    repository = _scheduling_repository()
    repository.add_booking(_booking("SOLO", _customer("C8", preference=GroupPreference.SOLO_ONLY)))

    suggestions = SlotService(repository).find_slot_suggestions("SOLO")

    assert [item.walker_id for item in suggestions] == ["W3"]
    assert suggestions[0].is_new_slot


def test_suggestions_refuse_scheduled_booking() -> None:
    with pytest.raises(BookingConflictError):
        SlotService(_scheduling_repository()).find_slot_suggestions("B1")


def test_assign_booking_opens_new_slot_with_walker_capacity() -> None:
    repository = InMemoryRepository()
    repository.add_walker(replace(_walker("W1"), max_dogs=3))
    repository.add_booking(_booking("B1", _customer("C1"), dogs=2))

    slot = SlotService(repository).assign_booking("B1")

    assert slot.walker_id == "W1"
    assert slot.max_dogs == 3
    assert slot.current_dogs == 2
    assert slot.status is SlotStatus.OPEN
    assert slot.is_group is False
    assert slot.proposal_key is None
    assert slot.run_id is None
    booking = repository.get_booking("B1")
    assert booking.status is BookingStatus.WALKER_ASSIGNED
    assert booking.slot_id == slot.slot_id
    assert booking.price == pytest.approx(36.0)
    assert booking.is_group_booking is False
    notifications = repository.list_notifications("C1")
    assert [item.kind for item in notifications] == [NOTIFICATION_WALKER_ASSIGNED]


def test_assign_booking_joins_named_slot() -> None:
    repository = _scheduling_repository()

    slot = SlotService(repository, discount_rate=0.15).assign_booking("NEW", slot_id="S2")

    assert slot.booking_ids == ["B2", "B3", "NEW"]
    assert repository.get_booking("NEW").price == pytest.approx(15.30)


def test_assign_booking_validates_walker_choice() -> None:
    repository = _scheduling_repository()
    repository.add_walker(replace(_walker("W4"), work_areas=frozenset({"20095"})))
    service = SlotService(repository)

    with pytest.raises(WalkerConflictError):
        service.assign_booking("NEW", walker_id="W4")
    with pytest.raises(WalkerConflictError):
        service.assign_booking("NEW", walker_id="W1")
    with pytest.raises(ValueError):
        service.assign_booking("NEW", slot_id="S1", walker_id="W3")
    with pytest.raises(NotFoundError):
        service.assign_booking("NEW", walker_id="nobody")
    assert repository.get_booking("NEW").slot_id is None


def test_assign_booking_without_options_raises() -> None:
    repository = InMemoryRepository()
    repository.add_booking(_booking("B1", _customer("C1")))

    with pytest.raises(WalkerConflictError):
        SlotService(repository).assign_booking("B1")


def test_auto_assign_pending_groups_in_start_order() -> None:
    repository = InMemoryRepository()
    repository.add_walker(_walker("W1"))
    repository.add_booking(_booking("B1", _customer("C1")))
    repository.add_booking(_booking("B2", _customer("C2", Location(52.521, 13.401))))
    repository.add_booking(_booking("B3", _customer("C3", preference=GroupPreference.SOLO_ONLY)))

    report = SlotService(repository, discount_rate=0.15).auto_assign_pending(MONDAY)

    assert set(report.assigned) == {"B1", "B2"}
    assert report.assigned["B1"] == report.assigned["B2"]
    assert list(report.unassigned) == ["B3"]
    slot = repository.get_slot(report.assigned["B1"])
    assert slot.booking_ids == ["B1", "B2"]
    assert slot.is_group
    assert repository.get_booking("B2").price == pytest.approx(15.30)
    assert repository.get_booking("B3").status is BookingStatus.PENDING


def test_walker_daily_schedule_lists_slots_with_bookings() -> None:
    repository = _scheduling_repository()
    early = _slot("S0", booking_ids=(), walker_id="W1")
    early.start, early.end = parse_hhmm("07:00"), parse_hhmm("08:00")
    repository.add_slot(early)

    schedule = SlotService(repository).walker_daily_schedule("W1", MONDAY)

    assert schedule.walker.walker_id == "W1"
    assert [entry.slot.slot_id for entry in schedule.slots] == ["S0", "S1"]
    assert [booking.booking_id for booking in schedule.slots[1].bookings] == ["B1"]
    assert SlotService(repository).walker_daily_schedule("W3", MONDAY).slots == []
    with pytest.raises(NotFoundError):
        SlotService(repository).walker_daily_schedule("nobody", MONDAY)


def test_group_eligible_dogs_splits_by_reason() -> None:
    repository = InMemoryRepository()
    repository.add_customer(_customer("C1"))
    repository.add_dog(Dog("D1", "C1", "Rex", friendly_with_others=True, group_approved=True))
    repository.add_dog(Dog("D2", "C1", "Bello", friendly_with_others=True, group_approved=False))
    repository.add_dog(Dog("D3", "C1", "Luna", friendly_with_others=False, group_approved=True))
    repository.add_dog(Dog("D4", "C2", "Other", friendly_with_others=True, group_approved=True))

    result = SlotService(repository).group_eligible_dogs("C1")

    assert [dog.dog_id for dog in result.eligible] == ["D1"]
    assert [(dog.dog_id, reason) for dog, reason in result.ineligible] == [
        ("D2", "not approved for group visits"),
        ("D3", "not friendly with other dogs"),
    ]
    with pytest.raises(NotFoundError):
        SlotService(repository).group_eligible_dogs("nobody")
