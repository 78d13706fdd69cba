"""Optimization run orchestration.

A run loads the day's open bookings, filters them for eligibility, builds
groups, matches walkers and stores the resulting proposal snapshot on an
``OptimizationRun`` record. In apply mode the snapshot is then replayed group
by group against live state; each group commits atomically and independently.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Sequence

import httpx

from ...config import settings
from ...errors import (
    BookingConflictError,
    CapacityExceededError,
    NotFoundError,
    RunStateError,
    SlotTransitionError,
    WalkerConflictError,
)
from ...models.domain import (
    Booking,
    BookingStatus,
    Notification,
    OptimizationRun,
    RunMode,
    RunStatus,
    format_hhmm,
    parse_hhmm,
)
from ...models.queries import BookingQuery
from ...persistence.filesystem import FileStorage
from ...persistence.repository import BookingUpdate, GroupCommit, Repository, get_repository
from ...schemas.optimization import (
    OptimizationRunListResponse,
    OptimizationRunModel,
    OptimizationRunRequest,
    OptimizationRunResponse,
)
from ..eligibility import REASON_MISSING_COORDINATES, ineligibility_reason
from ..geocoding import NominatimGeocoder, get_geocoder
from ..grouping.builder import GreedyGroupBuilder, GroupCandidateBuilder
from ..grouping.models import GroupingPolicy
from ..matching.walker_matcher import WalkerMatcher
from ..outputs.formatter import (
    apply_report_to_dict,
    location_from_dict,
    proposal_to_csv,
    proposal_to_snapshot,
)
from ..slots.service import NOTIFICATION_GROUP_JOINED
from .models import (
    ApplyReport,
    GroupApplication,
    OptimizationParams,
    Proposal,
    RunOutcome,
    RunStats,
    UngroupedBooking,
    group_key,
    proposal_key,
)
from .pricing import group_price, group_savings, undiscounted_price

# Consistency failures that abort a single group during apply.
_GROUP_APPLY_ERRORS = (
    BookingConflictError,
    CapacityExceededError,
    NotFoundError,
    SlotTransitionError,
    WalkerConflictError,
)


def _optimizable_statuses() -> tuple[BookingStatus, ...]:
    return tuple(BookingStatus(value) for value in settings.optimizable_booking_statuses)


def _group_notification(booking: Booking, group_size: int, price: float, start: time, end: time) -> Notification:
    others = group_size - 1
    return Notification(
        customer_id=booking.customer.customer_id,
        kind=NOTIFICATION_GROUP_JOINED,
        title="Your walk is now a group walk",
        message=(
            f"Your walk on {booking.requested_date.isoformat()} ({format_hhmm(start)}-{format_hhmm(end)}) "
            f"was grouped with {others} other booking{'s' if others != 1 else ''}. "
            f"New price: EUR {price:.2f}."
        ),
        booking_id=booking.booking_id,
    )


class OptimizationRunController:
    def __init__(
        self,
        repository: Repository,
        builder: GroupCandidateBuilder | None = None,
        matcher: WalkerMatcher | None = None,
        geocoder: NominatimGeocoder | None = None,
        storage_factory: Callable[[], FileStorage] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.builder = builder or GreedyGroupBuilder()
        self.matcher = matcher or WalkerMatcher(repository)
        self.geocoder = geocoder
        self.storage_factory = storage_factory or FileStorage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- public API ----------------------------------------------------------

    def preview(self, params: OptimizationParams) -> RunOutcome:
        return self.run(params, apply=False)

    def run(self, params: OptimizationParams, *, apply: bool = False) -> RunOutcome:
        run = self._start_run(
            OptimizationRun(
                run_id=str(uuid.uuid4()),
                target_date=params.target_date,
                max_radius_km=params.policy.max_radius_km,
                max_time_gap_minutes=params.policy.max_time_gap_minutes,
                mode=RunMode.APPLY if apply else RunMode.PREVIEW,
            )
        )
        try:
            proposal = self.compute_proposal(run.run_id, params)
            snapshot = proposal_to_snapshot(proposal)
            report = None
            if apply:
                report = self._apply_snapshot(run.run_id, run.run_id, snapshot)
        except Exception as exc:
            self._fail(run, exc)
            raise

        stats = proposal.stats
        run.bookings_analyzed = stats.total_bookings
        if report is None:
            run.bookings_grouped = stats.grouped_bookings
            run.groups_created = stats.groups_created
            run.total_savings = stats.total_savings
        else:
            self._record_apply_counts(run, report)
        run.results = {"proposal": snapshot, "apply": apply_report_to_dict(report) if report else None}
        return self._complete(run, snapshot, report, params.persist)

    def apply_preview(self, run_id: str, *, persist: bool | None = None) -> RunOutcome:
        """Replay the stored proposal of a completed run against live state."""

        source = self.repository.get_run(run_id)
        if source.status is not RunStatus.COMPLETED:
            raise RunStateError(f"Run {run_id} is {source.status.value}; only completed runs can be applied")
        snapshot = (source.results or {}).get("proposal")
        if not snapshot:
            raise RunStateError(f"Run {run_id} has no stored proposal")
        origin_run_id = source.source_run_id or source.run_id

        run = self._start_run(
            OptimizationRun(
                run_id=str(uuid.uuid4()),
                target_date=source.target_date,
                max_radius_km=source.max_radius_km,
                max_time_gap_minutes=source.max_time_gap_minutes,
                mode=RunMode.APPLY,
                source_run_id=origin_run_id,
            )
        )
        try:
            report = self._apply_snapshot(run.run_id, origin_run_id, snapshot)
        except Exception as exc:
            self._fail(run, exc)
            raise

        run.bookings_analyzed = source.bookings_analyzed
        self._record_apply_counts(run, report)
        run.results = {"proposal": snapshot, "apply": apply_report_to_dict(report)}
        return self._complete(run, snapshot, report, settings.persist_runs if persist is None else persist)

    # -- proposal ------------------------------------------------------------

    def compute_proposal(self, run_id: str, params: OptimizationParams) -> Proposal:
        """Read-only part of a run: eligibility, grouping and walker matching."""

        bookings = self.repository.list_bookings(
            BookingQuery(
                target_date=params.target_date,
                statuses=_optimizable_statuses(),
                unassigned_only=True,
            )
        )
        logging.info(f"Optimization run {run_id}: {len(bookings)} open bookings on {params.target_date}")
        self._fill_missing_locations(bookings)

        eligible: list[Booking] = []
        ungrouped: list[UngroupedBooking] = []
        for booking in bookings:
            reason = ineligibility_reason(booking)
            if reason is None and not booking.pickup_location.is_valid:
                reason = REASON_MISSING_COORDINATES
            if reason is None:
                eligible.append(booking)
            else:
                ungrouped.append(UngroupedBooking(booking.booking_id, booking.customer.customer_id, reason))

        result = self.builder.build(eligible, params.policy)
        customers = {booking.booking_id: booking.customer.customer_id for booking in eligible}
        ungrouped.extend(
            UngroupedBooking(booking_id, customers[booking_id], reason)
            for booking_id, reason in result.ungrouped.items()
        )

        warnings: list[str] = []
        reserved: dict[str, list[tuple[time, time]]] = defaultdict(list)
        for index, group in enumerate(result.groups, start=1):
            match = self.matcher.match(group, params.target_date, reserved)
            group.area_code = match.area_code
            if match.matched:
                group.walker_id = match.walker_id
                group.walker_name = match.walker_name
                reserved[match.walker_id].append((group.start, group.end))
            else:
                group.unassigned_reason = match.reason
                warnings.append(f"{group_key(index)}: {match.reason}")
                logging.warning(f"Run {run_id} group {group_key(index)} has no walker: {match.reason}")

        grouped = sum(len(group.bookings) for group in result.groups)
        stats = RunStats(
            total_bookings=len(bookings),
            eligible_bookings=len(eligible),
            grouped_bookings=grouped,
            groups_created=len(result.groups),
            groups_with_walker=sum(1 for group in result.groups if group.has_walker),
            total_savings=round(
                sum(
                    group_savings(booking.base_price, booking.dog_count, params.discount_rate)
                    for group in result.groups
                    for booking in group.bookings
                ),
                2,
            ),
            average_group_size=round(grouped / len(result.groups), 2) if result.groups else 0.0,
        )
        return Proposal(
            run_id=run_id,
            params=params,
            groups=result.groups,
            ungrouped=ungrouped,
            warnings=warnings,
            stats=stats,
        )

    def _fill_missing_locations(self, bookings: Sequence[Booking]) -> None:
        if self.geocoder is None:
            return
        for booking in bookings:
            if booking.pickup_location.is_valid or not booking.customer.address:
                continue
            try:
                found = self.geocoder.geocode(booking.customer.address)
            except (httpx.HTTPError, ValueError) as exc:
                logging.warning(f"Geocoding failed for booking {booking.booking_id}: {exc}")
                continue
            if found is not None:
                booking.pickup_override = found.location

    # -- apply ---------------------------------------------------------------

    def _apply_snapshot(self, run_id: str, origin_run_id: str, snapshot: dict) -> ApplyReport:
        report = ApplyReport(run_id=run_id, source_run_id=origin_run_id)
        discount_rate = snapshot["parameters"]["group_discount_rate"]
        max_dogs_per_group = snapshot["parameters"]["max_dogs_per_group"]
        for group in snapshot["groups"]:
            if not group.get("walker"):
                report.skipped.append(group["group_id"])
                continue
            application = GroupApplication(
                group_id=group["group_id"],
                proposal_key=proposal_key(origin_run_id, group["group_id"]),
                booking_ids=list(group["booking_ids"]),
            )
            try:
                self._apply_group(run_id, snapshot, group, application, discount_rate, max_dogs_per_group)
            except _GROUP_APPLY_ERRORS as exc:
                application.error = str(exc)
                logging.warning(f"Run {run_id} could not apply group {group['group_id']}: {exc}")
            report.applied.append(application)

        logging.info(
            f"Run {run_id} applied {len(report.succeeded)}/{len(report.applied)} groups "
            f"({len(report.skipped)} skipped without walker)"
        )
        return report

    def _apply_group(
        self,
        run_id: str,
        snapshot: dict,
        group: dict,
        application: GroupApplication,
        discount_rate: float,
        max_dogs_per_group: int,
    ) -> None:
        bookings = self.repository.list_bookings(BookingQuery(booking_ids=tuple(application.booking_ids)))
        found = {booking.booking_id for booking in bookings}
        missing = [booking_id for booking_id in application.booking_ids if booking_id not in found]
        if missing:
            raise NotFoundError(f"Bookings not found: {', '.join(missing)}")

        walker = self.repository.get_walker(group["walker"]["walker_id"])
        start = parse_hhmm(group["time_window"]["start"])
        end = parse_hhmm(group["time_window"]["end"])

        updates: list[BookingUpdate] = []
        notifications: list[Notification] = []
        notified: set[str] = set()
        for booking in bookings:
            price = group_price(booking.base_price, booking.dog_count, discount_rate)
            updates.append(
                BookingUpdate(
                    booking_id=booking.booking_id,
                    dog_count=booking.dog_count,
                    price=price,
                    original_price=undiscounted_price(booking.base_price, booking.dog_count),
                    group_discount=discount_rate,
                )
            )
            if booking.customer.customer_id not in notified:
                notified.add(booking.customer.customer_id)
                notifications.append(_group_notification(booking, len(bookings), price, start, end))

        result = self.repository.commit_group(
            GroupCommit(
                proposal_key=application.proposal_key,
                run_id=run_id,
                walker_id=walker.walker_id,
                slot_date=date_from_snapshot(snapshot),
                start=start,
                end=end,
                max_dogs=min(walker.max_dogs, max_dogs_per_group),
                area_code=group.get("area_code"),
                center=location_from_dict(group["center"]),
                radius_km=group["radius_km"],
                score=group["score"],
                route=[location_from_dict(point) for point in group["route"]],
                total_distance_km=group["total_distance_km"],
                bookings=updates,
                notifications=notifications,
            )
        )
        application.slot_id = result.slot.slot_id
        application.created = result.created
        application.bookings_attached = result.bookings_attached
        application.notifications_sent = result.notifications_sent
        application.savings = round(
            sum(
                group_savings(booking.base_price, booking.dog_count, discount_rate)
                for booking in bookings
                if booking.booking_id in result.bookings_attached
            ),
            2,
        )

    # -- run record ----------------------------------------------------------

    def _start_run(self, run: OptimizationRun) -> OptimizationRun:
        run.started_at = self._clock()
        run = self.repository.create_run(run)
        logging.info(f"Started {run.mode.value.lower()} run {run.run_id} for {run.target_date}")
        return run

    @staticmethod
    def _record_apply_counts(run: OptimizationRun, report: ApplyReport) -> None:
        succeeded = report.succeeded
        run.bookings_grouped = sum(len(item.bookings_attached) for item in succeeded)
        run.groups_created = sum(1 for item in succeeded if item.created)
        run.total_savings = round(sum(item.savings for item in succeeded), 2)
        run.errors.extend(report.errors)

    def _complete(
        self,
        run: OptimizationRun,
        snapshot: dict,
        report: Optional[ApplyReport],
        persist: bool,
    ) -> RunOutcome:
        run.status = RunStatus.COMPLETED
        run.completed_at = self._clock()
        run = self.repository.finalize_run(run)
        logging.info(
            f"Run {run.run_id} completed: {run.bookings_analyzed} analyzed, {run.bookings_grouped} grouped, "
            f"{run.groups_created} groups, savings {run.total_savings:.2f}"
        )
        if persist:
            self._persist_artifacts(run, snapshot)
        return RunOutcome(run=run, snapshot=snapshot, report=report)

    def _fail(self, run: OptimizationRun, exc: Exception) -> None:
        logging.exception(f"Optimization run {run.run_id} failed: {exc}")
        run.status = RunStatus.FAILED
        run.error_message = str(exc)
        run.completed_at = self._clock()
        try:
            self.repository.finalize_run(run)
        except Exception as finalize_exc:
            logging.error(f"Could not mark run {run.run_id} as failed: {finalize_exc}")

    def _persist_artifacts(self, run: OptimizationRun, snapshot: dict) -> None:
        try:
            storage = self.storage_factory()
            run_dir = storage.make_run_directory(run.target_date, run.run_id)
            storage.write_json(run_dir / "summary.json", {"run": run_to_dict(run), **run.results})
            storage.write_csv(run_dir / "groups.csv", proposal_to_csv(snapshot))
        except OSError as exc:
            logging.warning(f"Failed to write artifacts for run {run.run_id}: {exc}")


def date_from_snapshot(snapshot: dict) -> date:
    return date.fromisoformat(snapshot["target_date"])


def run_to_dict(run: OptimizationRun) -> dict:
    return {
        "run_id": run.run_id,
        "target_date": run.target_date.isoformat(),
        "mode": run.mode.value,
        "status": run.status.value,
        "max_radius_km": run.max_radius_km,
        "max_time_gap_minutes": run.max_time_gap_minutes,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "bookings_analyzed": run.bookings_analyzed,
        "bookings_grouped": run.bookings_grouped,
        "groups_created": run.groups_created,
        "total_savings": run.total_savings,
        "errors": list(run.errors),
        "error_message": run.error_message,
        "source_run_id": run.source_run_id,
    }


# -- HTTP-facing helpers -------------------------------------------------------


def _controller() -> OptimizationRunController:
    return OptimizationRunController(get_repository(), geocoder=get_geocoder())


def _params_from_request(payload: OptimizationRunRequest) -> OptimizationParams:
    base = GroupingPolicy()
    policy = GroupingPolicy(
        max_radius_km=payload.max_radius_km if payload.max_radius_km is not None else base.max_radius_km,
        max_time_gap_minutes=payload.max_time_gap_minutes
        if payload.max_time_gap_minutes is not None
        else base.max_time_gap_minutes,
        max_dogs_per_group=payload.max_dogs_per_group
        if payload.max_dogs_per_group is not None
        else base.max_dogs_per_group,
        min_group_size=base.min_group_size,
        radius_multiplier=base.radius_multiplier,
    )
    return OptimizationParams(
        target_date=payload.date,
        policy=policy,
        discount_rate=payload.group_discount_rate
        if payload.group_discount_rate is not None
        else settings.group_discount_rate,
        persist=payload.persist if payload.persist is not None else settings.persist_runs,
    )


def _to_response(outcome: RunOutcome) -> OptimizationRunResponse:
    return OptimizationRunResponse(
        run=OptimizationRunModel(**run_to_dict(outcome.run)),
        proposal=outcome.snapshot,
        apply=apply_report_to_dict(outcome.report) if outcome.report else None,
    )


def run_optimization(payload: OptimizationRunRequest) -> OptimizationRunResponse:
    return _to_response(_controller().run(_params_from_request(payload), apply=payload.apply))


def apply_stored_run(run_id: str) -> OptimizationRunResponse:
    return _to_response(_controller().apply_preview(run_id))


def get_run(run_id: str) -> OptimizationRunResponse:
    run = get_repository().get_run(run_id)
    results = run.results or {}
    return OptimizationRunResponse(
        run=OptimizationRunModel(**run_to_dict(run)),
        proposal=results.get("proposal") or {},
        apply=results.get("apply"),
    )


def list_runs(limit: int = 20) -> OptimizationRunListResponse:
    runs = get_repository().list_runs(limit)
    return OptimizationRunListResponse(runs=[OptimizationRunModel(**run_to_dict(run)) for run in runs])
