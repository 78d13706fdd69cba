"""Customer-facing schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel


class DogModel(BaseModel):
    dog_id: str
    name: str
    size: str
    friendly_with_others: bool
    group_approved: bool


class IneligibleDogModel(BaseModel):
    dog: DogModel
    reason: str


class GroupEligibleDogsResponse(BaseModel):
    customer_id: str
    eligible: List[DogModel]
    ineligible: List[IneligibleDogModel]
