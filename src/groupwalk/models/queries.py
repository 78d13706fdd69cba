"""Query records accepted by repository reads.

Each record lists every supported filter. ``None`` means "do not filter on
this field".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from .domain import BookingStatus, SlotStatus


@dataclass(frozen=True, slots=True)
class BookingQuery:
    target_date: Optional[date] = None
    statuses: Optional[tuple[BookingStatus, ...]] = None
    unassigned_only: bool = False
    customer_id: Optional[str] = None
    booking_ids: Optional[tuple[str, ...]] = None


@dataclass(frozen=True, slots=True)
class WalkerQuery:
    """``weekday`` follows ``date.weekday()`` numbering."""

    weekday: Optional[int] = None
    area_code: Optional[str] = None
    min_capacity: Optional[int] = None
    active_only: bool = True


@dataclass(frozen=True, slots=True)
class SlotQuery:
    target_date: Optional[date] = None
    walker_id: Optional[str] = None
    statuses: Optional[tuple[SlotStatus, ...]] = None
    group_only: bool = False
    proposal_key: Optional[str] = None
