from __future__ import annotations

from datetime import datetime

from parkspots.models import GooglePlace, OSMParkingNode, ParkingSpot, SpotStatus, utcnow


def _placeholder_name(spot_id: str) -> str:
    native_id = spot_id.removeprefix("osm_")
    return f"Parkplatz {native_id.zfill(6)[-6:]}"


def normalize_osm_spot(node: OSMParkingNode, now: datetime | None = None) -> ParkingSpot:
    return ParkingSpot(
        id=node.id,
        lat=node.lat,
        lng=node.lon,
        status=SpotStatus.FREE,
        reported_at=now or utcnow(),
        name=node.tags.get("name") or _placeholder_name(node.id),
        capacity=node.tags.get("capacity"),
    )


def normalize_google_place(place: GooglePlace, now: datetime | None = None) -> ParkingSpot:
    return ParkingSpot(
        id=f"google_{place.place_id}",
        lat=place.geometry.location.lat,
        lng=place.geometry.location.lng,
        status=SpotStatus.FREE,
        reported_at=now or utcnow(),
        name=place.name,
        address=place.formatted_address,
        rating=place.rating,
    )
