"""Walk slot endpoints."""

from __future__ import annotations

from datetime import date as date_type
from typing import List

from fastapi import APIRouter, Query, status

from ...models.domain import Slot, format_hhmm
from ...persistence.repository import get_repository
from ...schemas.slots import (
    AutoAssignResponse,
    AvailableSlotModel,
    AvailableSlotsResponse,
    LocationModel,
    SlotAssignRequest,
    SlotCancelRequest,
    SlotMembershipRequest,
    SlotModel,
    SlotSuggestionModel,
    SlotSuggestionsResponse,
)
from ...services.slots.service import SlotService, SlotSuggestion
from ..errors import to_http_exception

router = APIRouter(prefix="/slots", tags=["slots"])


def get_slot_service() -> SlotService:
    return SlotService(get_repository())


def slot_to_model(slot: Slot) -> SlotModel:
    return SlotModel(
        slot_id=slot.slot_id,
        walker_id=slot.walker_id,
        slot_date=slot.slot_date,
        start=format_hhmm(slot.start),
        end=format_hhmm(slot.end),
        max_dogs=slot.max_dogs,
        current_dogs=slot.current_dogs,
        remaining_capacity=slot.remaining_capacity,
        status=slot.status.value,
        is_group=slot.is_group,
        booking_ids=list(slot.booking_ids),
        area_code=slot.area_code,
        center=LocationModel(**slot.center.as_dict()) if slot.center and slot.center.is_valid else None,
        radius_km=slot.radius_km,
        score=slot.score,
        route=[LocationModel(**point.as_dict()) for point in slot.route if point.is_valid],
        total_distance_km=slot.total_distance_km,
        started_at=slot.started_at,
        completed_at=slot.completed_at,
        cancelled_at=slot.cancelled_at,
    )


@router.get("/available", response_model=AvailableSlotsResponse, status_code=status.HTTP_200_OK)
def available_slots(
    customer_id: str = Query(...),
    target_date: date_type = Query(..., alias="date"),
    dog_ids: List[str] | None = Query(default=None),
) -> AvailableSlotsResponse:
    try:
        found = get_slot_service().find_available_group_slots(customer_id, target_date, dog_ids)
    except Exception as exc:
        raise to_http_exception(exc, "find available group slots") from exc
    return AvailableSlotsResponse(
        customer_id=customer_id,
        date=target_date,
        dog_count=len(dog_ids) if dog_ids else 1,
        slots=[
            AvailableSlotModel(
                slot=slot_to_model(item.slot),
                walker_name=item.walker_name,
                distance_km=item.distance_km,
                match_score=item.match_score,
                group_price=item.group_price,
            )
            for item in found
        ],
    )


def suggestion_to_model(item: SlotSuggestion) -> SlotSuggestionModel:
    return SlotSuggestionModel(
        walker_id=item.walker_id,
        walker_name=item.walker_name,
        start=format_hhmm(item.start),
        end=format_hhmm(item.end),
        score=item.score,
        remaining_capacity=item.remaining_capacity,
        is_new_slot=item.is_new_slot,
        slot=slot_to_model(item.slot) if item.slot else None,
    )


@router.get("/suggestions", response_model=SlotSuggestionsResponse, status_code=status.HTTP_200_OK)
def slot_suggestions(booking_id: str = Query(...)) -> SlotSuggestionsResponse:
    try:
        found = get_slot_service().find_slot_suggestions(booking_id)
    except Exception as exc:
        raise to_http_exception(exc, f"suggest slots for booking {booking_id}") from exc
    return SlotSuggestionsResponse(booking_id=booking_id, suggestions=[suggestion_to_model(item) for item in found])


@router.post("/assign", response_model=SlotModel, status_code=status.HTTP_200_OK)
def assign_booking(payload: SlotAssignRequest) -> SlotModel:
    try:
        slot = get_slot_service().assign_booking(payload.booking_id, payload.slot_id, payload.walker_id)
    except Exception as exc:
        raise to_http_exception(exc, f"assign booking {payload.booking_id}") from exc
    return slot_to_model(slot)


@router.post("/auto-assign", response_model=AutoAssignResponse, status_code=status.HTTP_200_OK)
def auto_assign(target_date: date_type = Query(..., alias="date")) -> AutoAssignResponse:
    """Assign the day's pending bookings one by one, earliest start first."""
    try:
        report = get_slot_service().auto_assign_pending(target_date)
    except Exception as exc:
        raise to_http_exception(exc, "auto-assign pending bookings") from exc
    return AutoAssignResponse(date=report.target_date, assigned=report.assigned, unassigned=report.unassigned)


@router.post("/{slot_id}/join", response_model=SlotModel, status_code=status.HTTP_200_OK)
def join_slot(slot_id: str, payload: SlotMembershipRequest) -> SlotModel:
    try:
        return slot_to_model(get_slot_service().join(slot_id, payload.booking_id))
    except Exception as exc:
        raise to_http_exception(exc, f"join slot {slot_id}") from exc


@router.post("/{slot_id}/leave", response_model=SlotModel, status_code=status.HTTP_200_OK)
def leave_slot(slot_id: str, payload: SlotMembershipRequest) -> SlotModel:
    try:
        return slot_to_model(get_slot_service().leave(slot_id, payload.booking_id))
    except Exception as exc:
        raise to_http_exception(exc, f"leave slot {slot_id}") from exc


@router.post("/{slot_id}/start", response_model=SlotModel, status_code=status.HTTP_200_OK)
def start_slot(slot_id: str) -> SlotModel:
    try:
        return slot_to_model(get_slot_service().start(slot_id))
    except Exception as exc:
        raise to_http_exception(exc, f"start slot {slot_id}") from exc


@router.post("/{slot_id}/complete", response_model=SlotModel, status_code=status.HTTP_200_OK)
def complete_slot(slot_id: str) -> SlotModel:
    try:
        return slot_to_model(get_slot_service().complete(slot_id))
    except Exception as exc:
        raise to_http_exception(exc, f"complete slot {slot_id}") from exc


@router.post("/{slot_id}/cancel", response_model=SlotModel, status_code=status.HTTP_200_OK)
def cancel_slot(slot_id: str, payload: SlotCancelRequest | None = None) -> SlotModel:
    administrative = payload.administrative if payload else False
    try:
        return slot_to_model(get_slot_service().cancel(slot_id, administrative=administrative))
    except Exception as exc:
        raise to_http_exception(exc, f"cancel slot {slot_id}") from exc
