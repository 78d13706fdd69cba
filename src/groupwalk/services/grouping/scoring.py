"""Ranking score for a materialized group. Higher is better."""

from __future__ import annotations

from typing import Sequence

from ...models.domain import Booking, GroupPreference, minutes_of_day

BASE_SCORE = 100.0
PER_MEMBER_BONUS = 20.0
PREFERS_GROUP_BONUS = 10.0
# (exclusive upper bound, bonus)
COMPACTNESS_BANDS_KM = ((0.5, 50.0), (1.0, 30.0), (1.5, 10.0))
START_SPREAD_BANDS_MIN = ((15, 30.0), (30, 15.0))


def _banded_bonus(value: float, bands: Sequence[tuple[float, float]]) -> float:
    for upper_bound, bonus in bands:
        if value < upper_bound:
            return bonus
    return 0.0


def start_spread_minutes(bookings: Sequence[Booking]) -> int:
    starts = [minutes_of_day(booking.start) for booking in bookings]
    return max(starts) - min(starts) if starts else 0


def score_group(bookings: Sequence[Booking], radius_km: float) -> float:
    score = BASE_SCORE
    score += PER_MEMBER_BONUS * len(bookings)
    score += _banded_bonus(radius_km, COMPACTNESS_BANDS_KM)
    score += _banded_bonus(start_spread_minutes(bookings), START_SPREAD_BANDS_MIN)
    prefers_group = sum(
        1 for booking in bookings if booking.customer.group_preference is GroupPreference.PREFER_GROUP
    )
    score += PREFERS_GROUP_BONUS * prefers_group
    return score
