"""Spot collection and the provider aggregation cycle.

The collection lives in memory for the lifetime of the process. It is held
as a tuple and only ever replaced whole, so readers never see a half-merged
list. Provider data is merged first-seen-wins: once an id is in the
collection, later fetches never touch it, which keeps user status reports
from being reverted by fresh provider data.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from typing import Callable, Iterable, Protocol

import httpx

from parkspots.config import Settings
from parkspots.google_places import GooglePlacesClient
from parkspots.models import FetchResult, ParkingSpot, SpotStatus, utcnow
from parkspots.normalizers import normalize_google_place, normalize_osm_spot
from parkspots.osm import OverpassClient

logger = logging.getLogger(__name__)


class SpotNotFoundError(KeyError):
    pass


class ProviderClient(Protocol):
    async def fetch(self, lat: float, lng: float, radius: int) -> FetchResult: ...


def merge_spots(existing: Iterable[ParkingSpot], incoming: Iterable[ParkingSpot]) -> list[ParkingSpot]:
    merged = list(existing)
    seen = {s.id for s in merged}
    for spot in incoming:
        if spot.id in seen:
            continue
        seen.add(spot.id)
        merged.append(spot)
    return merged


class SpotAggregator:
    def __init__(
        self,
        osm_client: ProviderClient,
        places_client: ProviderClient,
        osm_radius_m: int = 500,
        places_radius_m: int = 2000,
        spots: Iterable[ParkingSpot] = (),
    ) -> None:
        self.osm_client = osm_client
        self.places_client = places_client
        self.osm_radius_m = osm_radius_m
        self.places_radius_m = places_radius_m
        # Held for every read-modify-write of _spots
        self._lock = threading.Lock()
        self._spots: tuple[ParkingSpot, ...] = tuple(merge_spots((), spots))

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> SpotAggregator:
        return cls(
            osm_client=OverpassClient.from_settings(settings, http_client=http_client),
            places_client=GooglePlacesClient.from_settings(settings, http_client=http_client),
            osm_radius_m=settings.osm_radius_m,
            places_radius_m=settings.places_radius_m,
        )

    @property
    def spots(self) -> list[ParkingSpot]:
        return list(self._spots)

    def get_spot(self, spot_id: str) -> ParkingSpot:
        for spot in self._spots:
            if spot.id == spot_id:
                return spot
        raise SpotNotFoundError(spot_id)

    async def refresh(self, lat: float, lng: float) -> list[ParkingSpot]:
        """Run one aggregation cycle around (lat, lng) and return the full collection.

        Never raises for provider trouble: a provider that fails simply
        contributes no spots this cycle.
        """
        providers: list[tuple[str, Callable[..., ParkingSpot]]] = [
            ("osm", normalize_osm_spot),
            ("places", normalize_google_place),
        ]
        results = await asyncio.gather(
            self.osm_client.fetch(lat, lng, self.osm_radius_m),
            self.places_client.fetch(lat, lng, self.places_radius_m),
            return_exceptions=True,
        )

        incoming: list[ParkingSpot] = []
        for (name, normalize), result in zip(providers, results):
            if isinstance(result, Exception):
                logger.error("Provider %s failed unexpectedly: %r", name, result)
                continue
            if isinstance(result, BaseException):
                raise result
            logger.info(
                "Provider %s: %s, %d records%s",
                name, result.outcome.value, len(result.records),
                " (cached)" if result.from_cache else "",
            )
            incoming.extend(normalize(record) for record in result.records)

        with self._lock:
            before = len(self._spots)
            self._spots = tuple(merge_spots(self._spots, incoming))
            merged = self.spots
        logger.info("Merged %d new spots, %d total", len(merged) - before, len(merged))
        return merged

    def add_spot(self, lat: float, lng: float, name: str | None = None) -> ParkingSpot:
        spot = ParkingSpot(
            id=f"local_{uuid.uuid4().hex[:12]}",
            lat=lat,
            lng=lng,
            status=SpotStatus.FREE,
            reported_at=utcnow(),
            name=name,
        )
        with self._lock:
            self._spots = self._spots + (spot,)
        logger.info("Crowdsourced spot %s added at (%.5f, %.5f)", spot.id, lat, lng)
        return spot

    def report_status(self, spot_id: str, status: SpotStatus) -> ParkingSpot:
        with self._lock:
            current = self.get_spot(spot_id)
            updated = current.model_copy(update={"status": status, "reported_at": utcnow()})
            self._spots = tuple(updated if s.id == spot_id else s for s in self._spots)
        logger.info("Spot %s reported %s", spot_id, status.value)
        return updated
