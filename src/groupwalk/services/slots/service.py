"""Direct slot actions, open-slot discovery and day scheduling."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Optional, Sequence

from ...config import settings
from ...errors import (
    BookingConflictError,
    CapacityExceededError,
    InvalidLocationError,
    NotFoundError,
    SlotTransitionError,
    WalkerConflictError,
)
from ...models.domain import (
    Booking,
    BookingStatus,
    Dog,
    Notification,
    Slot,
    SlotStatus,
    Walker,
    format_hhmm,
    windows_overlap,
)
from ...models.queries import BookingQuery, SlotQuery
from ...persistence.repository import BookingUpdate, GroupCommit, Repository
from ..eligibility import dog_ineligibility_reason, ineligibility_reason
from ..geospatial import centroid, covering_radius, distance_km, optimize_route, route_distance_km
from ..matching.walker_matcher import WalkerMatcher
from ..optimization.pricing import group_price, undiscounted_price
from .state import SlotAction

NOTIFICATION_GROUP_JOINED = "GROUP_JOINED"
NOTIFICATION_WALKER_ASSIGNED = "WALKER_ASSIGNED"

MATCH_BASE_SCORE = 100.0
MATCH_DISTANCE_BANDS_KM = ((0.5, 50.0), (1.0, 30.0), (1.5, 10.0))
MATCH_PER_DOG_BONUS = 5.0
# Slots are offered up to this multiple of their covering radius (or the policy radius).
SEARCH_RADIUS_FACTOR = 1.5

SUGGESTION_BASE_SCORE = 100.0
SUGGESTION_SHARED_BONUS = 20.0
SUGGESTION_FILL_WEIGHT = 30.0
NEW_SLOT_SCORE = 50.0
MAX_SUGGESTIONS = 5

_CLOSED_BOOKING_STATUSES = (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.CANCELLED)
_ASSIGNMENT_ERRORS = (
    BookingConflictError,
    CapacityExceededError,
    NotFoundError,
    SlotTransitionError,
    WalkerConflictError,
    ValueError,
)


@dataclass(slots=True)
class AvailableSlot:
    slot: Slot
    walker_name: Optional[str]
    distance_km: float
    match_score: float
    group_price: float


@dataclass(slots=True)
class SlotSuggestion:
    """An existing open slot to join, or a walker who could open a new one (``slot`` is ``None``)."""

    walker_id: str
    walker_name: Optional[str]
    start: time
    end: time
    score: float
    remaining_capacity: int
    slot: Optional[Slot] = None

    @property
    def is_new_slot(self) -> bool:
        return self.slot is None


@dataclass(slots=True)
class AutoAssignReport:
    target_date: date
    assigned: dict[str, str] = field(default_factory=dict)
    unassigned: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ScheduledSlot:
    slot: Slot
    bookings: list[Booking]


@dataclass(slots=True)
class WalkerSchedule:
    walker: Walker
    target_date: date
    slots: list[ScheduledSlot]


@dataclass(slots=True)
class DogEligibility:
    customer_id: str
    eligible: list[Dog] = field(default_factory=list)
    ineligible: list[tuple[Dog, str]] = field(default_factory=list)


def match_score(distance: float, current_dogs: int) -> float:
    score = MATCH_BASE_SCORE
    for limit, bonus in MATCH_DISTANCE_BANDS_KM:
        if distance < limit:
            score += bonus
            break
    return score + MATCH_PER_DOG_BONUS * current_dogs


def suggestion_score(current_dogs: int, max_dogs: int, dogs: int) -> float:
    """Prefer slots that already have company and end up fuller."""

    score = SUGGESTION_BASE_SCORE
    if current_dogs > 0:
        score += SUGGESTION_SHARED_BONUS
    fill_rate = (current_dogs + dogs) / max_dogs if max_dogs else 0.0
    return round(score + fill_rate * SUGGESTION_FILL_WEIGHT, 2)


class SlotService:
    def __init__(
        self,
        repository: Repository,
        discount_rate: float | None = None,
        max_radius_km: float | None = None,
    ) -> None:
        self.repository = repository
        self.discount_rate = discount_rate if discount_rate is not None else settings.group_discount_rate
        self.max_radius_km = max_radius_km if max_radius_km is not None else settings.max_radius_km

    def join(self, slot_id: str, booking_id: str) -> Slot:
        booking = self.repository.get_booking(booking_id)
        reason = ineligibility_reason(booking)
        if reason is not None:
            raise ValueError(f"Booking {booking_id} cannot join a group slot: {reason}")
        if not booking.pickup_location.is_valid:
            raise InvalidLocationError(f"Booking {booking_id} has no valid pickup location")

        slot = self.repository.get_slot(slot_id)
        price = group_price(booking.base_price, booking.dog_count, self.discount_rate)
        update = BookingUpdate(
            booking_id=booking.booking_id,
            dog_count=booking.dog_count,
            price=price,
            original_price=undiscounted_price(booking.base_price, booking.dog_count),
            group_discount=self.discount_rate,
        )
        notification = Notification(
            customer_id=booking.customer.customer_id,
            kind=NOTIFICATION_GROUP_JOINED,
            title="You joined a group walk",
            message=(
                f"Your booking for {slot.slot_date.isoformat()} ({format_hhmm(slot.start)}-{format_hhmm(slot.end)}) "
                f"joined a group walk. New price: EUR {price:.2f}."
            ),
            booking_id=booking.booking_id,
            slot_id=slot_id,
        )
        slot = self.repository.join_slot(slot_id, update, notification)
        logging.info(f"Booking {booking_id} joined slot {slot_id} ({slot.current_dogs}/{slot.max_dogs} dogs)")
        return self._refresh_geometry(slot)

    def leave(self, slot_id: str, booking_id: str) -> Slot:
        slot = self.repository.leave_slot(slot_id, booking_id)
        logging.info(f"Booking {booking_id} left slot {slot_id} ({slot.current_dogs}/{slot.max_dogs} dogs)")
        return self._refresh_geometry(slot)

    def start(self, slot_id: str) -> Slot:
        return self.repository.transition_slot(slot_id, SlotAction.START)

    def complete(self, slot_id: str) -> Slot:
        return self.repository.transition_slot(slot_id, SlotAction.COMPLETE)

    def cancel(self, slot_id: str, *, administrative: bool = False) -> Slot:
        slot = self.repository.transition_slot(slot_id, SlotAction.CANCEL, administrative=administrative)
        logging.info(f"Slot {slot_id} cancelled (administrative={administrative})")
        return slot

    def find_available_group_slots(
        self,
        customer_id: str,
        target_date: date,
        dog_ids: Sequence[str] | None = None,
    ) -> list[AvailableSlot]:
        """Open group slots on ``target_date`` the customer's dogs could join, best match first."""

        customer = self.repository.get_customer(customer_id)
        if not customer.location.is_valid:
            raise InvalidLocationError(f"Customer {customer_id} has no valid location")
        dog_count = len(dog_ids) if dog_ids else 1

        own_bookings = {
            booking.booking_id
            for booking in self.repository.list_bookings(BookingQuery(target_date=target_date, customer_id=customer_id))
        }
        slots = self.repository.list_slots(
            SlotQuery(target_date=target_date, statuses=(SlotStatus.OPEN,), group_only=True)
        )

        available: list[AvailableSlot] = []
        for slot in slots:
            if slot.center is None or not slot.center.is_valid:
                continue
            if slot.remaining_capacity < dog_count:
                continue
            if own_bookings.intersection(slot.booking_ids):
                continue
            distance = distance_km(customer.location, slot.center)
            if distance > SEARCH_RADIUS_FACTOR * max(slot.radius_km or 0.0, self.max_radius_km):
                continue
            available.append(
                AvailableSlot(
                    slot=slot,
                    walker_name=self._walker_name(slot.walker_id),
                    distance_km=round(distance, 3),
                    match_score=match_score(distance, slot.current_dogs),
                    group_price=group_price(settings.default_base_price, dog_count, self.discount_rate),
                )
            )

        available.sort(key=lambda item: (-item.match_score, item.distance_km, item.slot.slot_id))
        return available

    # -- scheduling ------------------------------------------------------------

    def find_slot_suggestions(self, booking_id: str) -> list[SlotSuggestion]:
        """Where ``booking_id`` could be scheduled, best first.

        Open slots in the booking's area that overlap its window and still
        have room come first; they are only offered to group-eligible
        bookings. When none fit, free walkers serving the area are offered
        as new individual slots.
        """

        booking = self.repository.get_booking(booking_id)
        if booking.slot_id is not None or booking.status in _CLOSED_BOOKING_STATUSES:
            raise BookingConflictError(f"Booking {booking_id} is already scheduled or closed")
        dogs = max(booking.dog_count, 1)

        suggestions: list[SlotSuggestion] = []
        if booking.pickup_location.is_valid and ineligibility_reason(booking) is None:
            slots = self.repository.list_slots(
                SlotQuery(target_date=booking.requested_date, statuses=(SlotStatus.OPEN,))
            )
            for slot in slots:
                if slot.area_code != booking.area_code or slot.remaining_capacity < dogs:
                    continue
                if not windows_overlap(booking.start, booking.end, slot.start, slot.end):
                    continue
                if not self._members_groupable(slot):
                    continue
                suggestions.append(
                    SlotSuggestion(
                        walker_id=slot.walker_id,
                        walker_name=self._walker_name(slot.walker_id),
                        start=slot.start,
                        end=slot.end,
                        score=suggestion_score(slot.current_dogs, slot.max_dogs, dogs),
                        remaining_capacity=slot.remaining_capacity,
                        slot=slot,
                    )
                )

        if not suggestions:
            walkers = WalkerMatcher(self.repository).available_walkers(
                booking.area_code, booking.requested_date, booking.start, booking.end, dogs
            )
            suggestions = [
                SlotSuggestion(
                    walker_id=walker.walker_id,
                    walker_name=walker.name,
                    start=booking.start,
                    end=booking.end,
                    score=NEW_SLOT_SCORE,
                    remaining_capacity=walker.max_dogs,
                )
                for walker in walkers
            ]

        suggestions.sort(key=lambda item: (-item.score, item.walker_id, item.slot.slot_id if item.slot else ""))
        return suggestions[:MAX_SUGGESTIONS]

    def assign_booking(
        self,
        booking_id: str,
        slot_id: str | None = None,
        walker_id: str | None = None,
    ) -> Slot:
        """Put a booking into an existing slot or a new slot with ``walker_id``.

        With neither given, the best suggestion is used.
        """

        if slot_id is not None and walker_id is not None:
            raise ValueError("Pass either slot_id or walker_id, not both")
        if slot_id is None and walker_id is None:
            suggestions = self.find_slot_suggestions(booking_id)
            if not suggestions:
                raise WalkerConflictError(f"No open slot or free walker for booking {booking_id}")
            best = suggestions[0]
            if best.slot is not None:
                slot_id = best.slot.slot_id
            else:
                walker_id = best.walker_id

        if slot_id is not None:
            return self.join(slot_id, booking_id)
        return self._open_slot(booking_id, walker_id)

    def auto_assign_pending(self, target_date: date) -> AutoAssignReport:
        """Assign every pending booking of the day, earliest start first."""

        pending = self.repository.list_bookings(
            BookingQuery(target_date=target_date, statuses=(BookingStatus.PENDING,), unassigned_only=True)
        )
        report = AutoAssignReport(target_date=target_date)
        for booking in sorted(pending, key=lambda item: (item.start, item.booking_id)):
            try:
                slot = self.assign_booking(booking.booking_id)
            except _ASSIGNMENT_ERRORS as exc:
                logging.warning(f"Could not auto-assign booking {booking.booking_id}: {exc}")
                report.unassigned[booking.booking_id] = str(exc)
                continue
            report.assigned[booking.booking_id] = slot.slot_id

        logging.info(
            f"Auto-assigned {len(report.assigned)} of {len(pending)} pending bookings on {target_date.isoformat()}"
        )
        return report

    def walker_daily_schedule(self, walker_id: str, target_date: date) -> WalkerSchedule:
        walker = self.repository.get_walker(walker_id)
        slots = sorted(
            self.repository.list_slots(SlotQuery(target_date=target_date, walker_id=walker_id)),
            key=lambda slot: (slot.start, slot.slot_id),
        )
        booking_ids = tuple(booking_id for slot in slots for booking_id in slot.booking_ids)
        bookings: dict[str, Booking] = {}
        if booking_ids:
            bookings = {
                booking.booking_id: booking
                for booking in self.repository.list_bookings(BookingQuery(booking_ids=booking_ids))
            }
        entries = [
            ScheduledSlot(slot=slot, bookings=[bookings[bid] for bid in slot.booking_ids if bid in bookings])
            for slot in slots
        ]
        return WalkerSchedule(walker=walker, target_date=target_date, slots=entries)

    def group_eligible_dogs(self, customer_id: str) -> DogEligibility:
        self.repository.get_customer(customer_id)
        result = DogEligibility(customer_id=customer_id)
        for dog in self.repository.list_dogs(customer_id):
            reason = dog_ineligibility_reason(dog)
            if reason is None:
                result.eligible.append(dog)
            else:
                result.ineligible.append((dog, reason))
        return result

    def _open_slot(self, booking_id: str, walker_id: str) -> Slot:
        booking = self.repository.get_booking(booking_id)
        if booking.slot_id is not None or booking.status in _CLOSED_BOOKING_STATUSES:
            raise BookingConflictError(f"Booking {booking_id} is already scheduled or closed")
        if not booking.pickup_location.is_valid:
            raise InvalidLocationError(f"Booking {booking_id} has no valid pickup location")

        walker = self.repository.get_walker(walker_id)
        window = f"{format_hhmm(booking.start)}-{format_hhmm(booking.end)}"
        if (
            not walker.is_active
            or booking.requested_date.weekday() not in walker.work_days
            or booking.area_code not in walker.work_areas
            or booking.start < walker.available_from
            or booking.end > walker.available_to
        ):
            raise WalkerConflictError(
                f"Walker {walker_id} does not serve area {booking.area_code} on "
                f"{booking.requested_date.isoformat()} {window}"
            )
        if booking.dog_count > walker.max_dogs:
            raise CapacityExceededError(f"Walker {walker_id} takes at most {walker.max_dogs} dogs")

        price = undiscounted_price(booking.base_price, booking.dog_count)
        result = self.repository.commit_group(
            GroupCommit(
                proposal_key=None,
                run_id=None,
                walker_id=walker.walker_id,
                slot_date=booking.requested_date,
                start=booking.start,
                end=booking.end,
                max_dogs=walker.max_dogs,
                area_code=booking.area_code,
                center=booking.pickup_location,
                radius_km=0.0,
                score=NEW_SLOT_SCORE,
                route=[booking.pickup_location],
                total_distance_km=0.0,
                bookings=[BookingUpdate(booking.booking_id, booking.dog_count, price, price, 0.0)],
                notifications=[
                    Notification(
                        customer_id=booking.customer.customer_id,
                        kind=NOTIFICATION_WALKER_ASSIGNED,
                        title="A walker has been assigned",
                        message=(
                            f"{walker.name} will walk your dogs on {booking.requested_date.isoformat()} ({window})."
                        ),
                        booking_id=booking.booking_id,
                    )
                ],
            )
        )
        logging.info(f"Booking {booking_id} assigned to walker {walker_id} in new slot {result.slot.slot_id}")
        return result.slot

    def _members_groupable(self, slot: Slot) -> bool:
        if slot.is_group or not slot.booking_ids:
            return True
        members = self.repository.list_bookings(BookingQuery(booking_ids=tuple(slot.booking_ids)))
        return all(ineligibility_reason(member) is None for member in members)

    def _walker_name(self, walker_id: str) -> Optional[str]:
        try:
            return self.repository.get_walker(walker_id).name
        except NotFoundError:
            return None

    def _refresh_geometry(self, slot: Slot) -> Slot:
        members: list[Booking] = []
        if slot.booking_ids:
            members = self.repository.list_bookings(BookingQuery(booking_ids=tuple(slot.booking_ids)))
        points = [booking.pickup_location for booking in members if booking.pickup_location.is_valid]
        if not points:
            return self.repository.update_slot_geometry(slot.slot_id, None, None, [], None)
        center = centroid(points)
        route = optimize_route(points)
        return self.repository.update_slot_geometry(
            slot.slot_id,
            center,
            covering_radius(center, points),
            route,
            route_distance_km(route),
        )
