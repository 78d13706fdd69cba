"""Group optimization endpoints."""

from __future__ import annotations

from datetime import date as date_type

from fastapi import APIRouter, Query, status

from ...schemas.optimization import (
    OptimizationRunListResponse,
    OptimizationRunRequest,
    OptimizationRunResponse,
)
from ...services.optimization import service as optimization_service
from ..errors import to_http_exception

router = APIRouter(prefix="/optimization", tags=["optimization"])


@router.get("/preview", response_model=OptimizationRunResponse, status_code=status.HTTP_200_OK)
def preview(
    target_date: date_type = Query(..., alias="date"),
    max_radius_km: float | None = Query(default=None, gt=0),
    max_time_gap_minutes: int | None = Query(default=None, ge=0),
) -> OptimizationRunResponse:
    payload = OptimizationRunRequest(
        date=target_date,
        max_radius_km=max_radius_km,
        max_time_gap_minutes=max_time_gap_minutes,
        apply=False,
    )
    try:
        return optimization_service.run_optimization(payload)
    except Exception as exc:
        raise to_http_exception(exc, "preview group optimization") from exc


@router.post("/runs", response_model=OptimizationRunResponse, status_code=status.HTTP_201_CREATED)
def create_run(payload: OptimizationRunRequest) -> OptimizationRunResponse:
    try:
        return optimization_service.run_optimization(payload)
    except Exception as exc:
        raise to_http_exception(exc, "run group optimization") from exc


@router.post("/runs/{run_id}/apply", response_model=OptimizationRunResponse, status_code=status.HTTP_201_CREATED)
def apply_run(run_id: str) -> OptimizationRunResponse:
    """Replay a completed run's stored proposal against live state."""
    try:
        return optimization_service.apply_stored_run(run_id)
    except Exception as exc:
        raise to_http_exception(exc, f"apply optimization run {run_id}") from exc


@router.get("/runs", response_model=OptimizationRunListResponse, status_code=status.HTTP_200_OK)
def list_runs(limit: int = Query(default=20, ge=1, le=200)) -> OptimizationRunListResponse:
    try:
        return optimization_service.list_runs(limit)
    except Exception as exc:
        raise to_http_exception(exc, "list optimization runs") from exc


@router.get("/runs/{run_id}", response_model=OptimizationRunResponse, status_code=status.HTTP_200_OK)
def get_run(run_id: str) -> OptimizationRunResponse:
    try:
        return optimization_service.get_run(run_id)
    except Exception as exc:
        raise to_http_exception(exc, f"load optimization run {run_id}") from exc
