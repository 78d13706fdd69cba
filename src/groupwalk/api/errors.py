"""Mapping from core exceptions to HTTP errors."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..errors import (
    BookingConflictError,
    CapacityExceededError,
    NotFoundError,
    RunStateError,
    SlotTransitionError,
    WalkerConflictError,
)

_CONFLICTS = (
    BookingConflictError,
    CapacityExceededError,
    RunStateError,
    SlotTransitionError,
    WalkerConflictError,
)


def to_http_exception(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, _CONFLICTS):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logging.exception(f"Error while trying to {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {str(exc)}",
    )
