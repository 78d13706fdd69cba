"""Optimization run request/response schemas."""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OptimizationRunRequest(BaseModel):
    date: date_type = Field(..., description="Target date whose open bookings are grouped.")
    max_radius_km: Optional[float] = Field(None, gt=0)
    max_time_gap_minutes: Optional[int] = Field(None, ge=0)
    max_dogs_per_group: Optional[int] = Field(None, ge=2)
    group_discount_rate: Optional[float] = Field(None, ge=0, lt=1)
    apply: bool = Field(default=False, description="Commit walker-matched groups after computing the proposal.")
    persist: Optional[bool] = Field(default=None, description="Write summary.json/groups.csv for this run.")


class OptimizationRunModel(BaseModel):
    run_id: str
    target_date: date_type
    mode: str
    status: str
    max_radius_km: float
    max_time_gap_minutes: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    bookings_analyzed: int = 0
    bookings_grouped: int = 0
    groups_created: int = 0
    total_savings: float = 0.0
    errors: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    source_run_id: Optional[str] = None


class OptimizationRunResponse(BaseModel):
    run: OptimizationRunModel
    proposal: dict
    apply: Optional[dict] = None


class OptimizationRunListResponse(BaseModel):
    runs: List[OptimizationRunModel]
