"""Exception taxonomy for the scheduling core."""

from __future__ import annotations


class GroupWalkError(Exception):
    """Base class for all errors raised by the scheduling core."""


# Input errors. These also subclass ValueError so callers that only know
# about ValueError (and the API layer) treat them as bad input.


class EmptyInputError(GroupWalkError, ValueError):
    """Raised when an operation needs at least one point and got none."""


class InvalidLocationError(GroupWalkError, ValueError):
    """Raised when a location is missing, non-finite or out of range."""


class TimeFormatError(GroupWalkError, ValueError):
    """Raised when a time string is not a valid HH:MM value."""


class InvalidTimeWindowError(GroupWalkError, ValueError):
    """Raised when a time window does not satisfy start < end."""


class NotFoundError(GroupWalkError, LookupError):
    """Raised when a referenced booking, slot, walker or run does not exist."""


# Capacity / consistency errors.


class CapacityExceededError(GroupWalkError):
    """Raised when adding dogs would push a slot beyond its capacity."""


class BookingConflictError(GroupWalkError):
    """Raised when a booking is no longer available for the requested change."""


class WalkerConflictError(GroupWalkError):
    """Raised when a walker already has a commitment overlapping a slot."""


class SlotTransitionError(GroupWalkError):
    """Raised for a slot state change that the lifecycle does not allow."""


class RunStateError(GroupWalkError):
    """Raised when an optimization run record is written after finalization."""


class RepositoryError(GroupWalkError):
    """Raised when the backing store cannot be reached or rejects a request."""
