from __future__ import annotations

from typing import Any, Iterable

from parkspots.geo import haversine_m
from parkspots.models import ParkingSpot, SpotStatus, StatusSummary


def filter_by_status(spots: Iterable[ParkingSpot], status: SpotStatus | None) -> list[ParkingSpot]:
    if status is None:
        return list(spots)
    return [s for s in spots if s.status == status]


def find_nearby(
    spots: Iterable[ParkingSpot],
    lat: float,
    lng: float,
    k: int = 5,
    radius_m: float | None = None,
    status: SpotStatus | None = None,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for s in filter_by_status(spots, status):
        d = haversine_m(lat, lng, s.lat, s.lng)
        if radius_m is not None and d > radius_m:
            continue
        rows.append({"spot": s, "distance_m": d})

    rows.sort(key=lambda r: r["distance_m"])
    rows = rows[: max(0, int(k))]

    return [
        {
            **r["spot"].model_dump(mode="json"),
            "distance_m": float(r["distance_m"]),
        }
        for r in rows
    ]


def summarize_status(spots: Iterable[ParkingSpot]) -> StatusSummary:
    free = occupied = 0
    for s in spots:
        if s.status == SpotStatus.FREE:
            free += 1
        else:
            occupied += 1
    return StatusSummary(free=free, occupied=occupied, total=free + occupied)
