"""Walker selection for materialized groups."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Mapping, Optional, Sequence

from ...models.domain import Booking, SlotStatus, Walker, format_hhmm, windows_overlap
from ...models.queries import SlotQuery, WalkerQuery
from ...persistence.repository import Repository
from ..grouping.models import GroupCandidate

ACTIVE_SLOT_STATUSES = (SlotStatus.OPEN, SlotStatus.FULL, SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED)


@dataclass(frozen=True, slots=True)
class WalkerMatch:
    area_code: Optional[str]
    walker_id: Optional[str] = None
    walker_name: Optional[str] = None
    walker_max_dogs: Optional[int] = None
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.walker_id is not None


def dominant_area_code(bookings: Sequence[Booking]) -> Optional[str]:
    """Most frequent pickup area code; ties go to the first one seen."""

    counts: dict[str, int] = {}
    for booking in bookings:
        counts[booking.area_code] = counts.get(booking.area_code, 0) + 1
    if not counts:
        return None
    return max(counts, key=counts.get)


class WalkerMatcher:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    def match(
        self,
        group: GroupCandidate,
        target_date: date,
        reserved: Mapping[str, Sequence[tuple[time, time]]] | None = None,
    ) -> WalkerMatch:
        """Find the first walker able to take the group.

        ``reserved`` holds windows already promised to walkers earlier in the
        same run; they count as commitments just like stored slots.
        """

        reserved = reserved or {}
        area = dominant_area_code(group.bookings)
        walkers = self._candidates(area, target_date, group.total_dogs)
        if not walkers:
            return WalkerMatch(
                area_code=area,
                reason=f"no walker serves area {area} on {target_date.strftime('%A')} for {group.total_dogs} dogs",
            )

        for walker in walkers:
            if self.is_free(walker, target_date, group.start, group.end, reserved.get(walker.walker_id, ())):
                return WalkerMatch(
                    area_code=area,
                    walker_id=walker.walker_id,
                    walker_name=walker.name,
                    walker_max_dogs=walker.max_dogs,
                )

        window = f"{format_hhmm(group.start)}-{format_hhmm(group.end)}"
        return WalkerMatch(area_code=area, reason=f"no walker free during {window}")

    def available_walkers(
        self,
        area_code: Optional[str],
        target_date: date,
        start: time,
        end: time,
        dogs: int,
    ) -> list[Walker]:
        """Walkers serving ``area_code`` who could open a new slot for the window."""

        return [
            walker
            for walker in self._candidates(area_code, target_date, dogs)
            if self.is_free(walker, target_date, start, end)
        ]

    def is_free(
        self,
        walker: Walker,
        target_date: date,
        start: time,
        end: time,
        reserved: Sequence[tuple[time, time]] = (),
    ) -> bool:
        window = f"{format_hhmm(start)}-{format_hhmm(end)}"
        if start < walker.available_from or end > walker.available_to:
            logging.debug(f"Walker {walker.walker_id} not available for {window}")
            return False

        slots = self.repository.list_slots(
            SlotQuery(target_date=target_date, walker_id=walker.walker_id, statuses=ACTIVE_SLOT_STATUSES)
        )
        commitments = [(slot.start, slot.end) for slot in slots]
        commitments.extend(reserved)
        if any(windows_overlap(start, end, other_start, other_end) for other_start, other_end in commitments):
            logging.debug(f"Walker {walker.walker_id} already committed during {window}")
            return False
        return True

    def _candidates(self, area_code: Optional[str], target_date: date, dogs: int) -> list[Walker]:
        walkers = self.repository.list_walkers(
            WalkerQuery(weekday=target_date.weekday(), area_code=area_code, min_capacity=dogs)
        )
        return sorted(walkers, key=lambda item: item.walker_id)
