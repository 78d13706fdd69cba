"""Walker schedule schemas."""

from __future__ import annotations

from datetime import date as date_type
from typing import List, Optional

from pydantic import BaseModel

from .slots import SlotModel


class ScheduledBookingModel(BaseModel):
    booking_id: str
    customer_id: str
    customer_name: str
    dog_count: int
    start: str
    end: str
    status: str
    price: Optional[float] = None


class ScheduledSlotModel(BaseModel):
    slot: SlotModel
    bookings: List[ScheduledBookingModel]


class WalkerScheduleResponse(BaseModel):
    walker_id: str
    walker_name: str
    date: date_type
    slots: List[ScheduledSlotModel]
