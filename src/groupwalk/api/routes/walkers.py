"""Walker schedule endpoints."""

from __future__ import annotations

from datetime import date as date_type

from fastapi import APIRouter, Query, status

from ...models.domain import format_hhmm
from ...schemas.walkers import ScheduledBookingModel, ScheduledSlotModel, WalkerScheduleResponse
from ..errors import to_http_exception
from .slots import get_slot_service, slot_to_model

router = APIRouter(prefix="/walkers", tags=["walkers"])


@router.get("/{walker_id}/schedule", response_model=WalkerScheduleResponse, status_code=status.HTTP_200_OK)
def walker_schedule(walker_id: str, target_date: date_type = Query(..., alias="date")) -> WalkerScheduleResponse:
    try:
        schedule = get_slot_service().walker_daily_schedule(walker_id, target_date)
    except Exception as exc:
        raise to_http_exception(exc, f"load schedule for walker {walker_id}") from exc
    return WalkerScheduleResponse(
        walker_id=schedule.walker.walker_id,
        walker_name=schedule.walker.name,
        date=schedule.target_date,
        slots=[
            ScheduledSlotModel(
                slot=slot_to_model(entry.slot),
                bookings=[
                    ScheduledBookingModel(
                        booking_id=booking.booking_id,
                        customer_id=booking.customer.customer_id,
                        customer_name=booking.customer.name,
                        dog_count=booking.dog_count,
                        start=format_hhmm(booking.start),
                        end=format_hhmm(booking.end),
                        status=booking.status.value,
                        price=booking.price,
                    )
                    for booking in entry.bookings
                ],
            )
            for entry in schedule.slots
        ],
    )
