"""Optimization runs: proposal, pricing and apply."""

from .models import ApplyReport, GroupApplication, OptimizationParams, Proposal, RunOutcome, RunStats, UngroupedBooking
from .pricing import group_price, group_savings, undiscounted_price

__all__ = [
    "ApplyReport",
    "GroupApplication",
    "OptimizationParams",
    "Proposal",
    "RunOutcome",
    "RunStats",
    "UngroupedBooking",
    "group_price",
    "group_savings",
    "undiscounted_price",
]
