"""Optimization run domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from ...config import settings
from ...models.domain import OptimizationRun
from ..grouping.models import GroupCandidate, GroupingPolicy


def group_key(index: int) -> str:
    """Stable label of the ``index``-th group (1-based) within one proposal."""

    return f"G{index:02d}"


def proposal_key(origin_run_id: str, group_id: str) -> str:
    return f"{origin_run_id}:{group_id}"


@dataclass(frozen=True, slots=True)
class OptimizationParams:
    target_date: date
    policy: GroupingPolicy = field(default_factory=GroupingPolicy)
    discount_rate: float = settings.group_discount_rate
    persist: bool = settings.persist_runs

    def __post_init__(self) -> None:
        if not 0.0 <= self.discount_rate < 1.0:
            raise ValueError("discount_rate must be in [0, 1)")


@dataclass(slots=True)
class UngroupedBooking:
    booking_id: str
    customer_id: str
    reason: str


@dataclass(slots=True)
class RunStats:
    total_bookings: int = 0
    eligible_bookings: int = 0
    grouped_bookings: int = 0
    groups_created: int = 0
    groups_with_walker: int = 0
    total_savings: float = 0.0
    average_group_size: float = 0.0


@dataclass(slots=True)
class Proposal:
    run_id: str
    params: OptimizationParams
    groups: List[GroupCandidate]
    ungrouped: List[UngroupedBooking]
    warnings: List[str] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)


@dataclass(slots=True)
class GroupApplication:
    group_id: str
    proposal_key: str
    booking_ids: List[str]
    slot_id: Optional[str] = None
    created: bool = False
    bookings_attached: List[str] = field(default_factory=list)
    notifications_sent: int = 0
    savings: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ApplyReport:
    run_id: str
    source_run_id: str
    applied: List[GroupApplication] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"{item.group_id}: {item.error}" for item in self.applied if item.error]

    @property
    def succeeded(self) -> list[GroupApplication]:
        return [item for item in self.applied if item.succeeded]


@dataclass(slots=True)
class RunOutcome:
    run: OptimizationRun
    snapshot: dict
    report: Optional[ApplyReport] = None
