"""Google Places text search for parking.

The provider is cost-bearing: it stays disabled without an API key and its
answers are cached longer than Overpass answers. Failures are never cached.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from parkspots.cache import QueryCache, cache_key
from parkspots.config import Settings
from parkspots.models import FetchOutcome, FetchResult, GooglePlace

logger = logging.getLogger(__name__)

PLACES_TEXTSEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
PLACES_MAX_RADIUS_M = 2000


@dataclass(frozen=True)
class ParkingNameFilter:
    """Keeps places whose name looks like parking or which are typed as parking.

    The text search already targets parking, but it also returns nearby
    businesses; this trades some recall for precision.
    """

    keywords: tuple[str, ...] = ("parkplatz", "parking", "parkhaus", "park deck")
    types: tuple[str, ...] = ("parking",)

    def __call__(self, place: GooglePlace) -> bool:
        name = place.name.lower()
        if any(k in name for k in self.keywords):
            return True
        return any(t in place.types for t in self.types)


def parse_results(results: list[dict[str, Any]]) -> list[GooglePlace]:
    places: list[GooglePlace] = []
    for raw in results:
        try:
            places.append(GooglePlace.model_validate(raw))
        except ValidationError as exc:
            pid = raw.get("place_id") if isinstance(raw, dict) else None
            logger.debug("dropping malformed place %s: %s", pid, exc.errors()[0]["loc"])
    return places


class GooglePlacesClient:
    def __init__(
        self,
        api_key: str | None,
        timeout_s: float = 10.0,
        cache: QueryCache | None = None,
        name_filter: ParkingNameFilter | None = ParkingNameFilter(),
        query: str = "Parkplatz",
        language: str = "de",
        max_radius_m: int = PLACES_MAX_RADIUS_M,
        url: str = PLACES_TEXTSEARCH_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or None
        self.timeout_s = timeout_s
        self.cache = cache if cache is not None else QueryCache(ttl_s=10 * 60)
        self.name_filter = name_filter
        self.query = query
        self.language = language
        self.max_radius_m = max_radius_m
        self.url = url
        self._http = http_client
        if not self.api_key:
            logger.info("No Google Maps API key configured; Places search disabled")

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> GooglePlacesClient:
        name_filter = None
        if settings.places_name_filter_enabled:
            name_filter = ParkingNameFilter(
                keywords=tuple(k.lower() for k in settings.places_name_keywords),
                types=settings.places_parking_types,
            )
        return cls(
            api_key=settings.google_maps_api_key,
            timeout_s=settings.places_timeout_s,
            cache=QueryCache(ttl_s=settings.places_cache_ttl_s),
            name_filter=name_filter,
            query=settings.places_query,
            language=settings.places_language,
            max_radius_m=settings.places_max_radius_m,
            url=settings.places_url,
            http_client=http_client,
        )

    @property
    def enabled(self) -> bool:
        return self.api_key is not None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                yield client

    async def fetch(self, lat: float, lng: float, radius: int = 2000) -> FetchResult:
        if not self.enabled:
            return FetchResult(outcome=FetchOutcome.DISABLED)

        radius = min(radius, self.max_radius_m)
        key = cache_key(lat, lng, radius, namespace="google_")
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Places cache hit for %s", key)
            outcome = FetchOutcome.SUCCESS if cached else FetchOutcome.EMPTY_UPSTREAM
            return FetchResult(outcome=outcome, records=cached, from_cache=True)

        params = {
            "query": self.query,
            "location": f"{lat},{lng}",
            "radius": str(radius),
            "language": self.language,
            "key": self.api_key,
        }
        try:
            async with self._session() as client:
                # httpx timeouts apply per phase; wait_for bounds the whole request
                response = await asyncio.wait_for(
                    client.get(self.url, params=params, timeout=self.timeout_s),
                    self.timeout_s,
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.warning("Google Places request timed out")
            return FetchResult(outcome=FetchOutcome.TIMEOUT, endpoint=self.url)
        except httpx.HTTPStatusError as exc:
            logger.error("Google Places returned HTTP %d", exc.response.status_code)
            return FetchResult(outcome=FetchOutcome.UPSTREAM_ERROR, endpoint=self.url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.error("Error fetching Google Places parking spots: %s", exc)
            return FetchResult(outcome=FetchOutcome.UPSTREAM_ERROR, endpoint=self.url)

        status = data.get("status") if isinstance(data, dict) else None
        if status not in ("OK", "ZERO_RESULTS"):
            logger.warning("Google Places API status: %s", status)
            return FetchResult(outcome=FetchOutcome.UPSTREAM_ERROR, endpoint=self.url)

        results = data.get("results") or []
        if not results:
            self.cache.put(key, [])
            return FetchResult(outcome=FetchOutcome.EMPTY_UPSTREAM, endpoint=self.url)

        places = parse_results(results)
        if self.name_filter is not None:
            places = [p for p in places if self.name_filter(p)]

        self.cache.put(key, places)
        logger.info("Places: %d of %d results kept near (%.4f, %.4f)", len(places), len(results), lat, lng)
        return FetchResult(outcome=FetchOutcome.SUCCESS, records=places, endpoint=self.url)

    async def fetch_provider_spots(self, lat: float, lng: float, radius: int = 2000) -> list[GooglePlace]:
        result = await self.fetch(lat, lng, radius)
        return result.records
