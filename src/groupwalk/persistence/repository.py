"""Storage contract for the scheduling core."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, time
from functools import lru_cache
from typing import List, Optional

from ..db.supabase import get_supabase_client
from ..models.domain import (
    Booking,
    Customer,
    Dog,
    Location,
    Notification,
    OptimizationRun,
    Slot,
    Walker,
)
from ..models.queries import BookingQuery, SlotQuery, WalkerQuery
from ..services.slots.state import SlotAction


@dataclass(slots=True)
class BookingUpdate:
    """Price change for a booking joining a slot."""

    booking_id: str
    dog_count: int
    price: float
    original_price: float
    group_discount: float


@dataclass(slots=True)
class GroupCommit:
    """Write set for one group: a slot create/reuse plus its booking updates and notifications.

    A ``proposal_key`` of ``None`` always creates a fresh slot; direct
    assignments outside an optimization run also leave ``run_id`` unset.
    """

    proposal_key: Optional[str]
    run_id: Optional[str]
    walker_id: str
    slot_date: date
    start: time
    end: time
    max_dogs: int
    area_code: Optional[str]
    center: Location
    radius_km: float
    score: float
    route: List[Location]
    total_distance_km: float
    bookings: List[BookingUpdate] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)


@dataclass(slots=True)
class GroupCommitResult:
    slot: Slot
    created: bool
    bookings_attached: List[str]
    notifications_sent: int


class Repository(ABC):
    """Reads return detached copies; writes marked atomic are all-or-nothing."""

    # -- reads ---------------------------------------------------------------

    @abstractmethod
    def list_bookings(self, query: BookingQuery) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def get_booking(self, booking_id: str) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def get_customer(self, customer_id: str) -> Customer:
        raise NotImplementedError

    @abstractmethod
    def list_dogs(self, customer_id: str) -> list[Dog]:
        raise NotImplementedError

    @abstractmethod
    def list_walkers(self, query: WalkerQuery) -> list[Walker]:
        raise NotImplementedError

    @abstractmethod
    def get_walker(self, walker_id: str) -> Walker:
        raise NotImplementedError

    @abstractmethod
    def list_slots(self, query: SlotQuery) -> list[Slot]:
        raise NotImplementedError

    @abstractmethod
    def get_slot(self, slot_id: str) -> Slot:
        raise NotImplementedError

    @abstractmethod
    def list_notifications(self, customer_id: Optional[str] = None) -> list[Notification]:
        raise NotImplementedError

    # -- optimization runs ---------------------------------------------------

    @abstractmethod
    def create_run(self, run: OptimizationRun) -> OptimizationRun:
        raise NotImplementedError

    @abstractmethod
    def finalize_run(self, run: OptimizationRun) -> OptimizationRun:
        """Write the terminal status and results. Refuses a second write."""
        raise NotImplementedError

    @abstractmethod
    def get_run(self, run_id: str) -> OptimizationRun:
        raise NotImplementedError

    @abstractmethod
    def list_runs(self, limit: int = 20) -> list[OptimizationRun]:
        raise NotImplementedError

    # -- atomic writes -------------------------------------------------------

    @abstractmethod
    def commit_group(self, commit: GroupCommit) -> GroupCommitResult:
        """Create (or reuse, by proposal key) a group slot and attach its bookings.

        Capacity, booking availability and walker conflicts are re-checked
        immediately before writing. On any violation nothing is written.
        """
        raise NotImplementedError

    @abstractmethod
    def join_slot(
        self,
        slot_id: str,
        update: BookingUpdate,
        notification: Optional[Notification] = None,
    ) -> Slot:
        """Atomic capacity check-and-increment plus booking link."""
        raise NotImplementedError

    @abstractmethod
    def leave_slot(self, slot_id: str, booking_id: str) -> Slot:
        """Detach a booking; it returns to PENDING at its undiscounted price."""
        raise NotImplementedError

    @abstractmethod
    def transition_slot(self, slot_id: str, action: SlotAction, *, administrative: bool = False) -> Slot:
        """Start, complete or cancel a slot; member bookings follow the slot status."""
        raise NotImplementedError

    @abstractmethod
    def update_slot_geometry(
        self,
        slot_id: str,
        center: Optional[Location],
        radius_km: Optional[float],
        route: List[Location],
        total_distance_km: Optional[float],
    ) -> Slot:
        raise NotImplementedError


@lru_cache()
def get_repository() -> Repository:
    """Supabase-backed repository when configured, otherwise an in-memory one."""

    client = get_supabase_client()
    if client is None:
        from .memory import InMemoryRepository

        logging.warning("Supabase not configured - using in-memory repository (data is not persisted)")
        return InMemoryRepository()

    from .database import SupabaseRepository

    return SupabaseRepository(client)
