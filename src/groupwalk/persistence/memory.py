"""Thread-safe in-memory repository.

Used by the test-suite and whenever Supabase is not configured. Records are
deep-copied on the way in and out so callers never share state with the
store. Every read and write runs under one re-entrant store latch, so a
write set is validated and applied as a single step.
"""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import (
    BookingConflictError,
    NotFoundError,
    RunStateError,
    WalkerConflictError,
)
from ..models.domain import (
    Booking,
    BookingStatus,
    Customer,
    Dog,
    Location,
    Notification,
    OptimizationRun,
    Slot,
    SlotStatus,
    Walker,
    windows_overlap,
)
from ..models.queries import BookingQuery, SlotQuery, WalkerQuery
from ..services.slots import state
from ..services.slots.state import SlotAction
from .repository import BookingUpdate, GroupCommit, GroupCommitResult, Repository

_BOOKING_STATUS_FOR_ACTION = {
    SlotAction.START: BookingStatus.IN_PROGRESS,
    SlotAction.COMPLETE: BookingStatus.COMPLETED,
}


def _release_booking(booking: Booking) -> None:
    booking.status = BookingStatus.PENDING
    booking.slot_id = None
    booking.is_group_booking = False
    booking.price = booking.original_price if booking.original_price is not None else booking.base_price * booking.dog_count
    booking.original_price = None
    booking.group_discount = 0.0


def _apply_update(booking: Booking, slot: Slot, update: BookingUpdate) -> None:
    booking.status = BookingStatus.WALKER_ASSIGNED
    booking.slot_id = slot.slot_id
    booking.is_group_booking = True
    booking.price = update.price
    booking.original_price = update.original_price
    booking.group_discount = update.group_discount


class InMemoryRepository(Repository):
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._customers: Dict[str, Customer] = {}
        self._dogs: Dict[str, Dog] = {}
        self._bookings: Dict[str, Booking] = {}
        self._walkers: Dict[str, Walker] = {}
        self._slots: Dict[str, Slot] = {}
        self._runs: Dict[str, OptimizationRun] = {}
        self._notifications: List[Notification] = []
        self._latch = threading.RLock()

    # -- seeding -------------------------------------------------------------

    def add_customer(self, customer: Customer) -> Customer:
        with self._latch:
            self._customers[customer.customer_id] = copy.deepcopy(customer)
        return customer

    def add_booking(self, booking: Booking) -> Booking:
        with self._latch:
            self._customers.setdefault(booking.customer.customer_id, copy.deepcopy(booking.customer))
            for dog in booking.dogs:
                self._dogs.setdefault(dog.dog_id, copy.deepcopy(dog))
            self._bookings[booking.booking_id] = copy.deepcopy(booking)
        return booking

    def add_bookings(self, bookings: Iterable[Booking]) -> None:
        for booking in bookings:
            self.add_booking(booking)

    def add_dog(self, dog: Dog) -> Dog:
        with self._latch:
            self._dogs[dog.dog_id] = copy.deepcopy(dog)
        return dog

    def add_walker(self, walker: Walker) -> Walker:
        with self._latch:
            self._walkers[walker.walker_id] = copy.deepcopy(walker)
        return walker

    def add_slot(self, slot: Slot) -> Slot:
        with self._latch:
            self._slots[slot.slot_id] = copy.deepcopy(slot)
        return slot

    # -- reads ---------------------------------------------------------------

    def list_bookings(self, query: BookingQuery) -> list[Booking]:
        with self._latch:
            found = [
                booking
                for booking in self._bookings.values()
                if (query.target_date is None or booking.requested_date == query.target_date)
                and (query.statuses is None or booking.status in query.statuses)
                and (not query.unassigned_only or booking.slot_id is None)
                and (query.customer_id is None or booking.customer.customer_id == query.customer_id)
                and (query.booking_ids is None or booking.booking_id in query.booking_ids)
            ]
            return copy.deepcopy(found)

    def get_booking(self, booking_id: str) -> Booking:
        with self._latch:
            return copy.deepcopy(self._require_booking(booking_id))

    def get_customer(self, customer_id: str) -> Customer:
        with self._latch:
            customer = self._customers.get(customer_id)
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")
            return copy.deepcopy(customer)

    def list_dogs(self, customer_id: str) -> list[Dog]:
        with self._latch:
            found = [dog for dog in self._dogs.values() if dog.customer_id == customer_id]
            return copy.deepcopy(sorted(found, key=lambda dog: dog.dog_id))

    def list_walkers(self, query: WalkerQuery) -> list[Walker]:
        with self._latch:
            found = [
                walker
                for walker in self._walkers.values()
                if (not query.active_only or walker.is_active)
                and (query.weekday is None or query.weekday in walker.work_days)
                and (query.area_code is None or query.area_code in walker.work_areas)
                and (query.min_capacity is None or walker.max_dogs >= query.min_capacity)
            ]
            return copy.deepcopy(found)

    def get_walker(self, walker_id: str) -> Walker:
        with self._latch:
            walker = self._walkers.get(walker_id)
            if walker is None:
                raise NotFoundError(f"Walker {walker_id} not found")
            return copy.deepcopy(walker)

    def list_slots(self, query: SlotQuery) -> list[Slot]:
        with self._latch:
            found = [
                slot
                for slot in self._slots.values()
                if (query.target_date is None or slot.slot_date == query.target_date)
                and (query.walker_id is None or slot.walker_id == query.walker_id)
                and (query.statuses is None or slot.status in query.statuses)
                and (not query.group_only or slot.is_group)
                and (query.proposal_key is None or slot.proposal_key == query.proposal_key)
            ]
            return copy.deepcopy(found)

    def get_slot(self, slot_id: str) -> Slot:
        with self._latch:
            return copy.deepcopy(self._require_slot(slot_id))

    def list_notifications(self, customer_id: Optional[str] = None) -> list[Notification]:
        with self._latch:
            return copy.deepcopy(
                [item for item in self._notifications if customer_id is None or item.customer_id == customer_id]
            )

    # -- optimization runs ---------------------------------------------------

    def create_run(self, run: OptimizationRun) -> OptimizationRun:
        with self._latch:
            if run.run_id in self._runs:
                raise RunStateError(f"Run {run.run_id} already exists")
            if run.started_at is None:
                run.started_at = self._clock()
            self._runs[run.run_id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    def finalize_run(self, run: OptimizationRun) -> OptimizationRun:
        with self._latch:
            stored = self._runs.get(run.run_id)
            if stored is None:
                raise NotFoundError(f"Run {run.run_id} not found")
            if stored.is_finalized:
                raise RunStateError(f"Run {run.run_id} is already {stored.status.value}")
            if not run.is_finalized:
                raise RunStateError(f"Run {run.run_id} must be finalized with a terminal status")
            if run.completed_at is None:
                run.completed_at = self._clock()
            self._runs[run.run_id] = copy.deepcopy(run)
            return copy.deepcopy(run)

    def get_run(self, run_id: str) -> OptimizationRun:
        with self._latch:
            run = self._runs.get(run_id)
            if run is None:
                raise NotFoundError(f"Run {run_id} not found")
            return copy.deepcopy(run)

    def list_runs(self, limit: int = 20) -> list[OptimizationRun]:
        with self._latch:
            runs = list(self._runs.values())
        runs.reverse()
        runs.sort(key=lambda run: run.started_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return copy.deepcopy(runs[:limit])

    # -- atomic writes -------------------------------------------------------

    def commit_group(self, commit: GroupCommit) -> GroupCommitResult:
        with self._latch:
            existing_id = self._slot_id_for_proposal(commit.proposal_key) if commit.proposal_key else None
            existing = self._slots.get(existing_id) if existing_id else None

            if existing is None:
                self._ensure_walker_free(commit.walker_id, commit.slot_date, commit.start, commit.end)
                slot = Slot(
                    slot_id=f"slot-{uuid.uuid4().hex[:12]}",
                    walker_id=commit.walker_id,
                    slot_date=commit.slot_date,
                    start=commit.start,
                    end=commit.end,
                    max_dogs=commit.max_dogs,
                    area_code=commit.area_code,
                    center=commit.center,
                    radius_km=commit.radius_km,
                    score=commit.score,
                    route=list(commit.route),
                    total_distance_km=commit.total_distance_km,
                    proposal_key=commit.proposal_key,
                    run_id=commit.run_id,
                )
            else:
                slot = copy.deepcopy(existing)

            # Validate the whole write set on copies before touching the store.
            staged: Dict[str, Booking] = {}
            for update in commit.bookings:
                booking = self._require_booking(update.booking_id)
                if booking.slot_id == slot.slot_id and booking.booking_id in slot.booking_ids:
                    continue
                if booking.status is BookingStatus.CANCELLED or booking.slot_id is not None:
                    raise BookingConflictError(f"Booking {booking.booking_id} is no longer available for grouping")
                state.join(slot, booking.booking_id, booking.dog_count)
                updated = copy.deepcopy(booking)
                _apply_update(updated, slot, update)
                staged[updated.booking_id] = updated
            slot.is_group = len(slot.booking_ids) >= 2
            for booking in staged.values():
                booking.is_group_booking = slot.is_group

            self._slots[slot.slot_id] = slot
            self._bookings.update(staged)
            sent = 0
            for notification in commit.notifications:
                if notification.booking_id is not None and notification.booking_id not in staged:
                    continue
                self._store_notification(notification, slot.slot_id)
                sent += 1

            return GroupCommitResult(
                slot=copy.deepcopy(slot),
                created=existing is None,
                bookings_attached=list(staged),
                notifications_sent=sent,
            )

    def join_slot(
        self,
        slot_id: str,
        update: BookingUpdate,
        notification: Optional[Notification] = None,
    ) -> Slot:
        with self._latch:
            slot = copy.deepcopy(self._require_slot(slot_id))
            booking = copy.deepcopy(self._require_booking(update.booking_id))
            if booking.status is BookingStatus.CANCELLED or booking.slot_id is not None:
                raise BookingConflictError(f"Booking {booking.booking_id} is already scheduled or cancelled")
            if booking.requested_date != slot.slot_date:
                raise BookingConflictError(
                    f"Booking {booking.booking_id} is for {booking.requested_date}, slot runs on {slot.slot_date}"
                )
            state.join(slot, booking.booking_id, booking.dog_count)
            slot.is_group = len(slot.booking_ids) >= 2
            _apply_update(booking, slot, update)
            booking.is_group_booking = slot.is_group

            self._slots[slot_id] = slot
            self._bookings[booking.booking_id] = booking
            if notification is not None:
                self._store_notification(notification, slot_id)
            return copy.deepcopy(slot)

    def leave_slot(self, slot_id: str, booking_id: str) -> Slot:
        with self._latch:
            slot = copy.deepcopy(self._require_slot(slot_id))
            booking = copy.deepcopy(self._require_booking(booking_id))
            state.leave(slot, booking_id, booking.dog_count)
            _release_booking(booking)
            staged = {booking_id: booking}
            if not slot.is_group:
                for remaining_id in slot.booking_ids:
                    remaining = copy.deepcopy(self._require_booking(remaining_id))
                    remaining.is_group_booking = False
                    if remaining.original_price is not None:
                        remaining.price = remaining.original_price
                        remaining.group_discount = 0.0
                    staged[remaining_id] = remaining

            self._slots[slot_id] = slot
            self._bookings.update(staged)
            return copy.deepcopy(slot)

    def transition_slot(self, slot_id: str, action: SlotAction, *, administrative: bool = False) -> Slot:
        action = SlotAction(action)
        with self._latch:
            slot = copy.deepcopy(self._require_slot(slot_id))
            state.apply_action(slot, action, self._clock(), administrative=administrative)
            staged: Dict[str, Booking] = {}
            for booking_id in slot.booking_ids:
                booking = self._bookings.get(booking_id)
                if booking is None or booking.slot_id != slot_id:
                    continue
                booking = copy.deepcopy(booking)
                if action is SlotAction.CANCEL:
                    _release_booking(booking)
                else:
                    booking.status = _BOOKING_STATUS_FOR_ACTION[action]
                staged[booking_id] = booking

            self._slots[slot_id] = slot
            self._bookings.update(staged)
            return copy.deepcopy(slot)

    def update_slot_geometry(
        self,
        slot_id: str,
        center: Optional[Location],
        radius_km: Optional[float],
        route: List[Location],
        total_distance_km: Optional[float],
    ) -> Slot:
        with self._latch:
            slot = self._require_slot(slot_id)
            slot.center = center
            slot.radius_km = radius_km
            slot.route = list(route)
            slot.total_distance_km = total_distance_km
            return copy.deepcopy(slot)

    # -- helpers -------------------------------------------------------------

    def _slot_id_for_proposal(self, proposal_key: str) -> Optional[str]:
        with self._latch:
            for slot in self._slots.values():
                if slot.proposal_key == proposal_key:
                    return slot.slot_id
        return None

    def _require_booking(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _require_slot(self, slot_id: str) -> Slot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def _ensure_walker_free(self, walker_id: str, slot_date: date, start: time, end: time) -> None:
        for slot in self._slots.values():
            if slot.walker_id != walker_id or slot.slot_date != slot_date:
                continue
            if slot.status is SlotStatus.CANCELLED:
                continue
            if windows_overlap(start, end, slot.start, slot.end):
                raise WalkerConflictError(
                    f"Walker {walker_id} already has slot {slot.slot_id} overlapping this window"
                )

    def _store_notification(self, notification: Notification, slot_id: str) -> None:
        stored = copy.deepcopy(notification)
        stored.slot_id = stored.slot_id or slot_id
        stored.notification_id = stored.notification_id or f"ntf-{uuid.uuid4().hex[:12]}"
        stored.created_at = stored.created_at or self._clock()
        self._notifications.append(stored)
