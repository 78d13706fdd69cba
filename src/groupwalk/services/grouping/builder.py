"""Group candidate builders.

``GroupCandidateBuilder`` is the contract the run controller depends on, so a
different partitioning strategy can replace the greedy one without touching
walker matching or run orchestration.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from ...models.domain import Booking, minutes_of_day
from ..eligibility import REASON_MISSING_COORDINATES, can_pair
from ..geospatial import centroid, covering_radius, optimize_route, route_distance_km
from .models import GroupCandidate, GroupingPolicy, GroupingResult
from .scoring import score_group

REASON_NO_COMPATIBLE_BOOKING = "no compatible booking found"
REASON_TOO_MANY_DOGS = "too many dogs for a group"


class GroupCandidateBuilder(ABC):
    """Contract for partitioning eligible bookings into disjoint groups."""

    @abstractmethod
    def build(self, bookings: Sequence[Booking], policy: GroupingPolicy) -> GroupingResult:
        raise NotImplementedError


def _sort_key(booking: Booking) -> tuple[int, float]:
    latitude = booking.pickup_location.latitude
    return (minutes_of_day(booking.start), latitude if latitude is not None else 0.0)


def materialize_group(bookings: Sequence[Booking]) -> GroupCandidate:
    """Compute geometry, time window, dog count and score for a set of bookings."""

    points = [booking.pickup_location for booking in bookings]
    center = centroid(points)
    radius = covering_radius(center, points)
    route = optimize_route(points)
    return GroupCandidate(
        bookings=list(bookings),
        center=center,
        radius_km=radius,
        route=route,
        total_distance_km=route_distance_km(route),
        start=min(booking.start for booking in bookings),
        end=max(booking.end for booking in bookings),
        total_dogs=sum(booking.dog_count for booking in bookings),
        score=score_group(bookings, radius),
    )


class GreedyGroupBuilder(GroupCandidateBuilder):
    """Single deterministic greedy pass, no backtracking.

    Bookings are visited in (start time, latitude) order. Each unvisited
    booking anchors a group; later candidates join only when they pair with
    every current member and the dog cap still holds.
    """

    def build(self, bookings: Sequence[Booking], policy: GroupingPolicy) -> GroupingResult:
        ordered = sorted(bookings, key=_sort_key)
        visited: set[str] = set()
        rejections: dict[str, str] = {}
        groups: list[GroupCandidate] = []

        logging.info(
            f"Building groups for {len(ordered)} bookings "
            f"(radius={policy.max_radius_km}km, gap={policy.max_time_gap_minutes}min, "
            f"max_dogs={policy.max_dogs_per_group})"
        )

        for anchor in ordered:
            if anchor.booking_id in visited:
                continue
            visited.add(anchor.booking_id)

            if not anchor.pickup_location.is_valid:
                rejections[anchor.booking_id] = REASON_MISSING_COORDINATES
                continue
            if anchor.dog_count >= policy.max_dogs_per_group:
                rejections[anchor.booking_id] = REASON_TOO_MANY_DOGS
                continue

            members = [anchor]
            dogs = anchor.dog_count
            for candidate in ordered:
                if dogs >= policy.max_dogs_per_group:
                    break
                if candidate.booking_id in visited:
                    continue
                if dogs + candidate.dog_count > policy.max_dogs_per_group:
                    continue
                if self._joins(candidate, members, policy, rejections):
                    members.append(candidate)
                    dogs += candidate.dog_count

            if len(members) < policy.min_group_size:
                continue

            group = materialize_group(members)
            groups.append(group)
            for member in members:
                visited.add(member.booking_id)
                rejections.pop(member.booking_id, None)

        groups.sort(key=lambda group: group.score, reverse=True)
        grouped = {booking_id for group in groups for booking_id in group.booking_ids}
        ungrouped = {
            booking.booking_id: rejections.get(booking.booking_id, REASON_NO_COMPATIBLE_BOOKING)
            for booking in ordered
            if booking.booking_id not in grouped
        }

        logging.info(
            f"Grouping finished: {len(groups)} groups, {len(grouped)} grouped, {len(ungrouped)} ungrouped"
        )
        return GroupingResult(groups=groups, ungrouped=ungrouped)

    @staticmethod
    def _joins(
        candidate: Booking,
        members: Sequence[Booking],
        policy: GroupingPolicy,
        rejections: dict[str, str],
    ) -> bool:
        for member in members:
            check = can_pair(
                member,
                candidate,
                policy.max_radius_km,
                policy.max_time_gap_minutes,
                radius_multiplier=policy.radius_multiplier,
            )
            if not check.ok:
                rejections[candidate.booking_id] = check.reason
                rejections[member.booking_id] = check.reason
                return False
        return True
