"""Slot action request/response schemas."""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LocationModel(BaseModel):
    latitude: float
    longitude: float


class SlotMembershipRequest(BaseModel):
    booking_id: str


class SlotCancelRequest(BaseModel):
    administrative: bool = Field(default=False, description="Allow cancelling a slot that is already in progress.")


class SlotModel(BaseModel):
    slot_id: str
    walker_id: str
    slot_date: date_type
    start: str
    end: str
    max_dogs: int
    current_dogs: int
    remaining_capacity: int
    status: str
    is_group: bool
    booking_ids: List[str]
    area_code: Optional[str] = None
    center: Optional[LocationModel] = None
    radius_km: Optional[float] = None
    score: Optional[float] = None
    route: List[LocationModel] = Field(default_factory=list)
    total_distance_km: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class AvailableSlotModel(BaseModel):
    slot: SlotModel
    walker_name: Optional[str] = None
    distance_km: float
    match_score: float
    group_price: float


class AvailableSlotsResponse(BaseModel):
    customer_id: str
    date: date_type
    dog_count: int
    slots: List[AvailableSlotModel]


class SlotSuggestionModel(BaseModel):
    walker_id: str
    walker_name: Optional[str] = None
    start: str
    end: str
    score: float
    remaining_capacity: int
    is_new_slot: bool
    slot: Optional[SlotModel] = None


class SlotSuggestionsResponse(BaseModel):
    booking_id: str
    suggestions: List[SlotSuggestionModel]


class SlotAssignRequest(BaseModel):
    booking_id: str
    slot_id: Optional[str] = Field(default=None, description="Join this existing slot.")
    walker_id: Optional[str] = Field(default=None, description="Open a new slot with this walker.")


class AutoAssignResponse(BaseModel):
    date: date_type
    assigned: Dict[str, str] = Field(default_factory=dict, description="Booking id to slot id.")
    unassigned: Dict[str, str] = Field(default_factory=dict, description="Booking id to the reason it was skipped.")
