"""Utilities to serialize optimization proposals into JSON/CSV artifacts.

The snapshot dict produced here is what gets stored on the run record and is
the only input the apply stage reads, so a stored preview can be replayed.
"""

from __future__ import annotations

import csv
import io
from dataclasses import asdict
from typing import Any

from ...config import settings
from ...models.domain import Location, format_hhmm
from ..geospatial import coverage_polygon, format_distance, route_legs
from ..grouping.models import GroupCandidate
from ..optimization.models import ApplyReport, Proposal, group_key
from ..optimization.pricing import group_savings


def location_to_dict(location: Location) -> dict[str, Any]:
    return {"latitude": location.latitude, "longitude": location.longitude}


def location_from_dict(data: dict[str, Any]) -> Location:
    return Location(data.get("latitude"), data.get("longitude"))


def group_to_snapshot(group_id: str, group: GroupCandidate, discount_rate: float) -> dict[str, Any]:
    walker = None
    if group.has_walker:
        walker = {"walker_id": group.walker_id, "walker_name": group.walker_name}
    savings = sum(
        group_savings(booking.base_price, booking.dog_count, discount_rate) for booking in group.bookings
    )
    return {
        "group_id": group_id,
        "booking_ids": group.booking_ids,
        "customer_ids": [booking.customer.customer_id for booking in group.bookings],
        "center": location_to_dict(group.center),
        "radius_km": round(group.radius_km, 4),
        "time_window": {"start": format_hhmm(group.start), "end": format_hhmm(group.end)},
        "total_dogs": group.total_dogs,
        "score": group.score,
        "route": [location_to_dict(point) for point in group.route],
        "legs": [asdict(leg) for leg in route_legs(group.route, settings.walking_speed_kmh)],
        "total_distance_km": round(group.total_distance_km, 3),
        "total_distance_label": format_distance(group.total_distance_km),
        "area_code": group.area_code,
        "walker": walker,
        "unassigned_reason": group.unassigned_reason,
        "estimated_savings": round(savings, 2),
    }


def proposal_to_snapshot(proposal: Proposal) -> dict[str, Any]:
    params = proposal.params
    groups = [
        group_to_snapshot(group_key(index), group, params.discount_rate)
        for index, group in enumerate(proposal.groups, start=1)
    ]
    polygons = [
        {
            "group_id": snapshot["group_id"],
            "coordinates": coverage_polygon([booking.pickup_location for booking in group.bookings]),
            "center": snapshot["center"],
            "source": "convex_hull",
        }
        for snapshot, group in zip(groups, proposal.groups)
    ]
    return {
        "run_id": proposal.run_id,
        "target_date": params.target_date.isoformat(),
        "parameters": {
            "max_radius_km": params.policy.max_radius_km,
            "max_time_gap_minutes": params.policy.max_time_gap_minutes,
            "max_dogs_per_group": params.policy.max_dogs_per_group,
            "min_group_size": params.policy.min_group_size,
            "radius_multiplier": params.policy.radius_multiplier,
            "group_discount_rate": params.discount_rate,
        },
        "groups": groups,
        "ungrouped": [asdict(item) for item in proposal.ungrouped],
        "warnings": list(proposal.warnings),
        "stats": asdict(proposal.stats),
        "map_overlays": {"polygons": polygons},
    }


def apply_report_to_dict(report: ApplyReport) -> dict[str, Any]:
    return {
        "run_id": report.run_id,
        "source_run_id": report.source_run_id,
        "applied": [asdict(item) for item in report.applied],
        "skipped": list(report.skipped),
        "errors": report.errors,
    }


def proposal_to_csv(snapshot: dict[str, Any]) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "group_id",
        "booking_id",
        "customer_id",
        "walker_id",
        "start",
        "end",
        "score",
        "radius_km",
        "reason",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for group in snapshot.get("groups", []):
        walker = group.get("walker") or {}
        for booking_id, customer_id in zip(group["booking_ids"], group["customer_ids"]):
            writer.writerow(
                {
                    "group_id": group["group_id"],
                    "booking_id": booking_id,
                    "customer_id": customer_id,
                    "walker_id": walker.get("walker_id", ""),
                    "start": group["time_window"]["start"],
                    "end": group["time_window"]["end"],
                    "score": group["score"],
                    "radius_km": group["radius_km"],
                    "reason": group.get("unassigned_reason") or "",
                }
            )
    for item in snapshot.get("ungrouped", []):
        writer.writerow(
            {
                "group_id": "",
                "booking_id": item["booking_id"],
                "customer_id": item["customer_id"],
                "walker_id": "",
                "start": "",
                "end": "",
                "score": "",
                "radius_km": "",
                "reason": item["reason"],
            }
        )
    return buffer.getvalue()
