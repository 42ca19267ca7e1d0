from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SpotStatus(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"


class ParkingSpot(BaseModel):
    id: str
    lat: float
    lng: float
    status: SpotStatus = SpotStatus.FREE
    reported_at: datetime = Field(default_factory=utcnow)
    name: str | None = None
    address: str | None = None
    # Provider scale, not normalized between OSM and Places.
    rating: float | None = None
    capacity: str | None = None


# --- raw provider records -------------------------------------------------


class OSMParkingNode(BaseModel):
    """A parking node as returned by the Overpass client (id already prefixed)."""

    id: str
    lat: float
    lon: float
    tags: dict[str, str] = {}


class LatLng(BaseModel):
    lat: float
    lng: float


class PlaceGeometry(BaseModel):
    location: LatLng


class GooglePlace(BaseModel):
    place_id: str
    name: str
    geometry: PlaceGeometry
    formatted_address: str | None = None
    rating: float | None = None
    types: list[str] = []


# --- provider fetch outcome -----------------------------------------------


class FetchOutcome(str, Enum):
    SUCCESS = "success"
    EMPTY_UPSTREAM = "empty_upstream"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    DISABLED = "disabled"


@dataclass(frozen=True)
class FetchResult:
    outcome: FetchOutcome
    records: list[Any] = field(default_factory=list)
    endpoint: str | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome in (FetchOutcome.SUCCESS, FetchOutcome.EMPTY_UPSTREAM)


# --- API bodies -----------------------------------------------------------


class LocationQuery(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


class NearbyQuery(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    k: int = 5
    radius_m: float | None = None
    status: SpotStatus | None = None


class NewSpot(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    name: str | None = None


class StatusReport(BaseModel):
    status: SpotStatus


class StatusSummary(BaseModel):
    free: int
    occupied: int
    total: int
