"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Report which repository backs the service."""
    from ...db.supabase import get_supabase_client

    if get_supabase_client() is None:
        return {
            "configured": False,
            "backend": "memory",
            "message": "Supabase not configured. Set GW_SUPABASE_URL and GW_SUPABASE_KEY environment variables.",
        }
    return {"configured": True, "backend": "supabase"}
