"""Supabase-backed repository.

Reads are plain table queries. Every atomic write set goes through a Postgres
function invoked with ``rpc()`` so the capacity check and the writes run in
one transaction; the functions signal rule violations by raising with one of
the codes in ``_ERROR_CODES`` at the start of the message.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Optional

from supabase import Client

from ..errors import (
    BookingConflictError,
    CapacityExceededError,
    GroupWalkError,
    NotFoundError,
    RepositoryError,
    RunStateError,
    SlotTransitionError,
    WalkerConflictError,
)
from ..models.domain import (
    Booking,
    BookingStatus,
    Customer,
    Dog,
    DogSize,
    GroupPreference,
    Location,
    Notification,
    OptimizationRun,
    RunMode,
    RunStatus,
    ServiceType,
    Slot,
    SlotStatus,
    Walker,
)
from ..models.queries import BookingQuery, SlotQuery, WalkerQuery
from ..services.slots.state import SlotAction
from .repository import BookingUpdate, GroupCommit, GroupCommitResult, Repository

_ERROR_CODES: dict[str, type[GroupWalkError]] = {
    "CAPACITY_EXCEEDED": CapacityExceededError,
    "BOOKING_CONFLICT": BookingConflictError,
    "WALKER_CONFLICT": WalkerConflictError,
    "SLOT_TRANSITION": SlotTransitionError,
    "NOT_FOUND": NotFoundError,
}


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value)[:8])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _location(latitude: Any, longitude: Any) -> Location:
    return Location(
        float(latitude) if latitude is not None else None,
        float(longitude) if longitude is not None else None,
    )


def customer_from_row(row: dict[str, Any]) -> Customer:
    return Customer(
        customer_id=row["customer_id"],
        name=row.get("name") or "",
        location=_location(row.get("latitude"), row.get("longitude")),
        postal_code=row.get("postal_code") or "",
        group_preference=GroupPreference(row.get("group_preference") or GroupPreference.NEUTRAL.value),
        max_group_size=int(row.get("max_group_size") or 4),
        address=row.get("address"),
    )


def dog_from_row(row: dict[str, Any]) -> Dog:
    return Dog(
        dog_id=row["dog_id"],
        customer_id=row["customer_id"],
        name=row.get("name") or "",
        size=DogSize(row.get("size") or DogSize.MEDIUM.value),
        friendly_with_others=bool(row.get("friendly_with_others")),
        group_approved=bool(row.get("group_approved")),
    )


def booking_from_row(row: dict[str, Any], customer: Customer, dogs: dict[str, Dog]) -> Booking:
    override = None
    if row.get("pickup_latitude") is not None or row.get("pickup_longitude") is not None:
        override = _location(row.get("pickup_latitude"), row.get("pickup_longitude"))
    return Booking(
        booking_id=row["booking_id"],
        customer=customer,
        dogs=tuple(dogs[dog_id] for dog_id in row.get("dog_ids") or [] if dog_id in dogs),
        requested_date=_parse_date(row["requested_date"]),
        start=_parse_time(row["start_time"]),
        end=_parse_time(row["end_time"]),
        service_type=ServiceType(row.get("service_type") or ServiceType.SINGLE_WALK.value),
        status=BookingStatus(row.get("status") or BookingStatus.PENDING.value),
        slot_id=row.get("slot_id"),
        pickup_override=override,
        pickup_postal_code=row.get("pickup_postal_code"),
        base_price=float(row.get("base_price") or 0.0),
        price=float(row["price"]) if row.get("price") is not None else None,
        original_price=float(row["original_price"]) if row.get("original_price") is not None else None,
        group_discount=float(row.get("group_discount") or 0.0),
        is_group_booking=bool(row.get("is_group_booking")),
    )


def walker_from_row(row: dict[str, Any]) -> Walker:
    return Walker(
        walker_id=row["walker_id"],
        name=row.get("name") or "",
        work_areas=frozenset(row.get("work_areas") or []),
        available_from=_parse_time(row["available_from"]),
        available_to=_parse_time(row["available_to"]),
        work_days=frozenset(int(day) for day in row.get("work_days") or []),
        max_dogs=int(row.get("max_dogs") or 0),
        is_active=bool(row.get("is_active", True)),
    )


def slot_from_row(row: dict[str, Any]) -> Slot:
    center = None
    if row.get("center_latitude") is not None:
        center = _location(row.get("center_latitude"), row.get("center_longitude"))
    return Slot(
        slot_id=row["slot_id"],
        walker_id=row["walker_id"],
        slot_date=_parse_date(row["slot_date"]),
        start=_parse_time(row["start_time"]),
        end=_parse_time(row["end_time"]),
        max_dogs=int(row["max_dogs"]),
        current_dogs=int(row.get("current_dogs") or 0),
        status=SlotStatus(row.get("status") or SlotStatus.OPEN.value),
        is_group=bool(row.get("is_group")),
        booking_ids=list(row.get("booking_ids") or []),
        area_code=row.get("area_code"),
        center=center,
        radius_km=row.get("radius_km"),
        score=row.get("score"),
        route=[_location(point["latitude"], point["longitude"]) for point in row.get("route") or []],
        total_distance_km=row.get("total_distance_km"),
        proposal_key=row.get("proposal_key"),
        run_id=row.get("run_id"),
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
        cancelled_at=_parse_datetime(row.get("cancelled_at")),
    )


def run_from_row(row: dict[str, Any]) -> OptimizationRun:
    return OptimizationRun(
        run_id=row["run_id"],
        target_date=_parse_date(row["target_date"]),
        max_radius_km=float(row["max_radius_km"]),
        max_time_gap_minutes=int(row["max_time_gap_minutes"]),
        mode=RunMode(row.get("mode") or RunMode.PREVIEW.value),
        status=RunStatus(row.get("status") or RunStatus.RUNNING.value),
        started_at=_parse_datetime(row.get("started_at")),
        completed_at=_parse_datetime(row.get("completed_at")),
        bookings_analyzed=int(row.get("bookings_analyzed") or 0),
        bookings_grouped=int(row.get("bookings_grouped") or 0),
        groups_created=int(row.get("groups_created") or 0),
        total_savings=float(row.get("total_savings") or 0.0),
        results=row.get("results") or {},
        errors=list(row.get("errors") or []),
        error_message=row.get("error_message"),
        source_run_id=row.get("source_run_id"),
    )


def run_to_row(run: OptimizationRun) -> dict[str, Any]:
    return {
        "run_id": run.run_id,
        "target_date": run.target_date.isoformat(),
        "max_radius_km": run.max_radius_km,
        "max_time_gap_minutes": run.max_time_gap_minutes,
        "mode": run.mode.value,
        "status": run.status.value,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "bookings_analyzed": run.bookings_analyzed,
        "bookings_grouped": run.bookings_grouped,
        "groups_created": run.groups_created,
        "total_savings": run.total_savings,
        "results": run.results,
        "errors": run.errors,
        "error_message": run.error_message,
        "source_run_id": run.source_run_id,
    }


def notification_to_row(notification: Notification) -> dict[str, Any]:
    return {
        "customer_id": notification.customer_id,
        "kind": notification.kind,
        "title": notification.title,
        "message": notification.message,
        "booking_id": notification.booking_id,
        "slot_id": notification.slot_id,
        "link": notification.link,
    }


def _translate(exc: Exception) -> GroupWalkError:
    message = getattr(exc, "message", None) or str(exc)
    for code, error_type in _ERROR_CODES.items():
        if code in message:
            return error_type(message)
    return RepositoryError(f"Supabase request failed: {message}")


class SupabaseRepository(Repository):
    def __init__(self, client: Client) -> None:
        self.client = client

    def _execute(self, request: Any) -> list[dict[str, Any]]:
        try:
            response = request.execute()
        except Exception as exc:
            raise _translate(exc) from exc
        data = response.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    def _rpc(self, function: str, params: dict[str, Any]) -> Any:
        try:
            return self.client.rpc(function, params).execute().data
        except Exception as exc:
            logging.warning(f"RPC {function} failed: {exc}")
            raise _translate(exc) from exc

    # -- reads ---------------------------------------------------------------

    def _hydrate_bookings(self, rows: list[dict[str, Any]]) -> list[Booking]:
        if not rows:
            return []
        customer_ids = sorted({row["customer_id"] for row in rows})
        dog_ids = sorted({dog_id for row in rows for dog_id in row.get("dog_ids") or []})
        customers = {
            row["customer_id"]: customer_from_row(row)
            for row in self._execute(self.client.table("customers").select("*").in_("customer_id", customer_ids))
        }
        dogs = {
            row["dog_id"]: dog_from_row(row)
            for row in self._execute(self.client.table("dogs").select("*").in_("dog_id", dog_ids))
        }
        bookings = []
        for row in rows:
            customer = customers.get(row["customer_id"])
            if customer is None:
                logging.warning(f"Skipping booking {row['booking_id']}: customer {row['customer_id']} not found")
                continue
            try:
                bookings.append(booking_from_row(row, customer, dogs))
            except ValueError as exc:
                logging.warning(f"Skipping invalid booking {row['booking_id']}: {exc}")
        return bookings

    def list_bookings(self, query: BookingQuery) -> list[Booking]:
        request = self.client.table("bookings").select("*")
        if query.target_date is not None:
            request = request.eq("requested_date", query.target_date.isoformat())
        if query.statuses is not None:
            request = request.in_("status", [status.value for status in query.statuses])
        if query.unassigned_only:
            request = request.is_("slot_id", "null")
        if query.customer_id is not None:
            request = request.eq("customer_id", query.customer_id)
        if query.booking_ids is not None:
            request = request.in_("booking_id", list(query.booking_ids))
        return self._hydrate_bookings(self._execute(request.order("booking_id")))

    def get_booking(self, booking_id: str) -> Booking:
        rows = self._execute(self.client.table("bookings").select("*").eq("booking_id", booking_id))
        bookings = self._hydrate_bookings(rows)
        if not bookings:
            raise NotFoundError(f"Booking {booking_id} not found")
        return bookings[0]

    def get_customer(self, customer_id: str) -> Customer:
        rows = self._execute(self.client.table("customers").select("*").eq("customer_id", customer_id))
        if not rows:
            raise NotFoundError(f"Customer {customer_id} not found")
        return customer_from_row(rows[0])

    def list_dogs(self, customer_id: str) -> list[Dog]:
        rows = self._execute(self.client.table("dogs").select("*").eq("customer_id", customer_id).order("dog_id"))
        return [dog_from_row(row) for row in rows]

    def list_walkers(self, query: WalkerQuery) -> list[Walker]:
        request = self.client.table("walkers").select("*")
        if query.active_only:
            request = request.eq("is_active", True)
        if query.weekday is not None:
            request = request.contains("work_days", [query.weekday])
        if query.area_code is not None:
            request = request.contains("work_areas", [query.area_code])
        if query.min_capacity is not None:
            request = request.gte("max_dogs", query.min_capacity)
        return [walker_from_row(row) for row in self._execute(request.order("walker_id"))]

    def get_walker(self, walker_id: str) -> Walker:
        rows = self._execute(self.client.table("walkers").select("*").eq("walker_id", walker_id))
        if not rows:
            raise NotFoundError(f"Walker {walker_id} not found")
        return walker_from_row(rows[0])

    def list_slots(self, query: SlotQuery) -> list[Slot]:
        request = self.client.table("walk_slots").select("*")
        if query.target_date is not None:
            request = request.eq("slot_date", query.target_date.isoformat())
        if query.walker_id is not None:
            request = request.eq("walker_id", query.walker_id)
        if query.statuses is not None:
            request = request.in_("status", [status.value for status in query.statuses])
        if query.group_only:
            request = request.eq("is_group", True)
        if query.proposal_key is not None:
            request = request.eq("proposal_key", query.proposal_key)
        return [slot_from_row(row) for row in self._execute(request.order("start_time"))]

    def get_slot(self, slot_id: str) -> Slot:
        rows = self._execute(self.client.table("walk_slots").select("*").eq("slot_id", slot_id))
        if not rows:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot_from_row(rows[0])

    def list_notifications(self, customer_id: Optional[str] = None) -> list[Notification]:
        request = self.client.table("notifications").select("*")
        if customer_id is not None:
            request = request.eq("customer_id", customer_id)
        return [
            Notification(
                customer_id=row["customer_id"],
                kind=row["kind"],
                title=row.get("title") or "",
                message=row.get("message") or "",
                booking_id=row.get("booking_id"),
                slot_id=row.get("slot_id"),
                link=row.get("link") or "/customer",
                notification_id=row.get("notification_id"),
                created_at=_parse_datetime(row.get("created_at")),
            )
            for row in self._execute(request.order("created_at", desc=True))
        ]

    # -- optimization runs ---------------------------------------------------

    def create_run(self, run: OptimizationRun) -> OptimizationRun:
        rows = self._execute(self.client.table("optimization_runs").insert(run_to_row(run)))
        return run_from_row(rows[0]) if rows else run

    def finalize_run(self, run: OptimizationRun) -> OptimizationRun:
        if not run.is_finalized:
            raise RunStateError(f"Run {run.run_id} must be finalized with a terminal status")
        row = run_to_row(run)
        row.pop("run_id")
        if row["completed_at"] is None:
            row.pop("completed_at")
        # Conditional update: only a RUNNING record accepts the terminal write.
        rows = self._execute(
            self.client.table("optimization_runs")
            .update(row)
            .eq("run_id", run.run_id)
            .eq("status", RunStatus.RUNNING.value)
        )
        if not rows:
            existing = self.get_run(run.run_id)
            raise RunStateError(f"Run {run.run_id} is already {existing.status.value}")
        return run_from_row(rows[0])

    def get_run(self, run_id: str) -> OptimizationRun:
        rows = self._execute(self.client.table("optimization_runs").select("*").eq("run_id", run_id))
        if not rows:
            raise NotFoundError(f"Run {run_id} not found")
        return run_from_row(rows[0])

    def list_runs(self, limit: int = 20) -> list[OptimizationRun]:
        rows = self._execute(
            self.client.table("optimization_runs").select("*").order("started_at", desc=True).limit(limit)
        )
        return [run_from_row(row) for row in rows]

    # -- atomic writes -------------------------------------------------------

    def commit_group(self, commit: GroupCommit) -> GroupCommitResult:
        payload = {
            "proposal_key": commit.proposal_key,
            "run_id": commit.run_id,
            "walker_id": commit.walker_id,
            "slot_date": commit.slot_date.isoformat(),
            "start_time": commit.start.isoformat(),
            "end_time": commit.end.isoformat(),
            "max_dogs": commit.max_dogs,
            "area_code": commit.area_code,
            "center_latitude": commit.center.latitude,
            "center_longitude": commit.center.longitude,
            "radius_km": commit.radius_km,
            "score": commit.score,
            "route": [point.as_dict() for point in commit.route],
            "total_distance_km": commit.total_distance_km,
            "bookings": [
                {
                    "booking_id": update.booking_id,
                    "dogs": update.dog_count,
                    "price": update.price,
                    "original_price": update.original_price,
                    "group_discount": update.group_discount,
                }
                for update in commit.bookings
            ],
            "notifications": [notification_to_row(item) for item in commit.notifications],
        }
        data = self._rpc("commit_group_slot", {"payload": payload})
        result = data[0] if isinstance(data, list) else data
        return GroupCommitResult(
            slot=slot_from_row(result["slot"]),
            created=bool(result.get("created")),
            bookings_attached=list(result.get("bookings_attached") or []),
            notifications_sent=int(result.get("notifications_sent") or 0),
        )

    def join_slot(
        self,
        slot_id: str,
        update: BookingUpdate,
        notification: Optional[Notification] = None,
    ) -> Slot:
        data = self._rpc(
            "join_walk_slot",
            {
                "p_slot_id": slot_id,
                "p_booking_id": update.booking_id,
                "p_dogs": update.dog_count,
                "p_price": update.price,
                "p_original_price": update.original_price,
                "p_discount": update.group_discount,
                "p_notification": notification_to_row(notification) if notification else None,
            },
        )
        return slot_from_row(data[0] if isinstance(data, list) else data)

    def leave_slot(self, slot_id: str, booking_id: str) -> Slot:
        data = self._rpc("leave_walk_slot", {"p_slot_id": slot_id, "p_booking_id": booking_id})
        return slot_from_row(data[0] if isinstance(data, list) else data)

    def transition_slot(self, slot_id: str, action: SlotAction, *, administrative: bool = False) -> Slot:
        data = self._rpc(
            "transition_walk_slot",
            {"p_slot_id": slot_id, "p_action": SlotAction(action).value, "p_administrative": administrative},
        )
        return slot_from_row(data[0] if isinstance(data, list) else data)

    def update_slot_geometry(
        self,
        slot_id: str,
        center: Optional[Location],
        radius_km: Optional[float],
        route: list[Location],
        total_distance_km: Optional[float],
    ) -> Slot:
        rows = self._execute(
            self.client.table("walk_slots")
            .update(
                {
                    "center_latitude": center.latitude if center else None,
                    "center_longitude": center.longitude if center else None,
                    "radius_km": radius_km,
                    "route": [point.as_dict() for point in route],
                    "total_distance_km": total_distance_km,
                }
            )
            .eq("slot_id", slot_id)
        )
        if not rows:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot_from_row(rows[0])
