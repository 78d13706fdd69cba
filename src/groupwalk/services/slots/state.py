"""Slot lifecycle.

OPEN <-> FULL -> IN_PROGRESS -> COMPLETED, with CANCELLED reachable from OPEN,
FULL and (administratively) IN_PROGRESS. COMPLETED and CANCELLED are terminal.
Every function mutates the given slot in place and raises before touching it
when the transition is not allowed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ...errors import BookingConflictError, CapacityExceededError, SlotTransitionError
from ...models.domain import Slot, SlotStatus

_MEMBERSHIP_LOCKED = (SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED, SlotStatus.CANCELLED)


class SlotAction(str, Enum):
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _settle_capacity_status(slot: Slot) -> None:
    slot.status = SlotStatus.FULL if slot.current_dogs == slot.max_dogs else SlotStatus.OPEN


def join(slot: Slot, booking_id: str, dogs: int) -> Slot:
    if slot.status in _MEMBERSHIP_LOCKED:
        raise SlotTransitionError(f"Slot {slot.slot_id} is {slot.status.value}; bookings can no longer join")
    if booking_id in slot.booking_ids:
        raise BookingConflictError(f"Booking {booking_id} is already part of slot {slot.slot_id}")
    if dogs < 1:
        raise ValueError("dogs must be >= 1")
    if slot.current_dogs + dogs > slot.max_dogs:
        raise CapacityExceededError(
            f"Slot {slot.slot_id} has {slot.current_dogs}/{slot.max_dogs} dogs; cannot add {dogs}"
        )
    slot.booking_ids.append(booking_id)
    slot.current_dogs += dogs
    _settle_capacity_status(slot)
    return slot


def leave(slot: Slot, booking_id: str, dogs: int) -> Slot:
    if slot.status in _MEMBERSHIP_LOCKED:
        raise SlotTransitionError(f"Slot {slot.slot_id} is {slot.status.value}; bookings can no longer leave")
    if booking_id not in slot.booking_ids:
        raise BookingConflictError(f"Booking {booking_id} is not part of slot {slot.slot_id}")
    slot.booking_ids.remove(booking_id)
    slot.current_dogs = max(0, slot.current_dogs - dogs)
    slot.status = SlotStatus.OPEN
    # A group needs two bookings; a single remaining booking makes it an individual visit.
    if slot.is_group and len(slot.booking_ids) < 2:
        slot.is_group = False
    return slot


def start(slot: Slot, now: Optional[datetime] = None) -> Slot:
    if slot.status not in (SlotStatus.OPEN, SlotStatus.FULL):
        raise SlotTransitionError(f"Slot {slot.slot_id} cannot start from {slot.status.value}")
    slot.status = SlotStatus.IN_PROGRESS
    slot.started_at = _now(now)
    return slot


def complete(slot: Slot, now: Optional[datetime] = None) -> Slot:
    if slot.status is not SlotStatus.IN_PROGRESS:
        raise SlotTransitionError(f"Slot {slot.slot_id} cannot complete from {slot.status.value}")
    slot.status = SlotStatus.COMPLETED
    slot.completed_at = _now(now)
    return slot


def cancel(slot: Slot, now: Optional[datetime] = None, *, administrative: bool = False) -> Slot:
    allowed = {SlotStatus.OPEN, SlotStatus.FULL}
    if administrative:
        allowed.add(SlotStatus.IN_PROGRESS)
    if slot.status not in allowed:
        raise SlotTransitionError(f"Slot {slot.slot_id} cannot be cancelled from {slot.status.value}")
    slot.status = SlotStatus.CANCELLED
    slot.cancelled_at = _now(now)
    return slot


def apply_action(
    slot: Slot,
    action: SlotAction,
    now: Optional[datetime] = None,
    *,
    administrative: bool = False,
) -> Slot:
    if action is SlotAction.START:
        return start(slot, now)
    if action is SlotAction.COMPLETE:
        return complete(slot, now)
    return cancel(slot, now, administrative=administrative)
