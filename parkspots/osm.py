"""OpenStreetMap parking nodes via the Overpass API.

Endpoints are tried in priority order. A busy endpoint (503/504), a timeout
or a broken connection moves on to the next one; any other error status
stops the loop. Successful answers, including empty ones, are cached for the
freshness window so an area known to have no parking is not re-queried.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from parkspots.cache import QueryCache, cache_key
from parkspots.config import Settings
from parkspots.models import FetchOutcome, FetchResult, OSMParkingNode

logger = logging.getLogger(__name__)

OVERPASS_QUERY = """
[out:json][timeout:10];
(
  node["amenity"="parking"](around:{radius},{lat},{lng});
);
out body;
"""


@dataclass(frozen=True)
class FallbackPolicy:
    """Which failures move on to the next Overpass endpoint."""

    busy_statuses: frozenset[int] = field(default_factory=lambda: frozenset({503, 504}))
    advance_on_timeout: bool = True
    advance_on_transport_error: bool = True

    def advance_on_status(self, status_code: int) -> bool:
        return status_code in self.busy_statuses


def build_query(lat: float, lng: float, radius: int) -> str:
    return OVERPASS_QUERY.format(radius=radius, lat=lat, lng=lng)


def parse_elements(elements: list[dict[str, Any]]) -> list[OSMParkingNode]:
    """Map Overpass elements to parking nodes, dropping those without coordinates."""
    nodes: list[OSMParkingNode] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        center = element.get("center") or {}
        lat = element.get("lat", center.get("lat"))
        lon = element.get("lon", center.get("lon"))
        if lat is None or lon is None or element.get("id") is None:
            logger.debug("dropping OSM element without coordinates: %s", element.get("id"))
            continue
        try:
            nodes.append(
                OSMParkingNode(
                    id=f"osm_{element['id']}",
                    lat=lat,
                    lon=lon,
                    tags=element.get("tags") or {},
                )
            )
        except ValidationError as exc:
            logger.debug("dropping malformed OSM element %s: %s", element.get("id"), exc)
    return nodes


class OverpassClient:
    def __init__(
        self,
        endpoints: list[str],
        timeout_s: float = 15.0,
        cache: QueryCache | None = None,
        policy: FallbackPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoints = list(endpoints)
        self.timeout_s = timeout_s
        self.cache = cache if cache is not None else QueryCache(ttl_s=5 * 60)
        self.policy = policy or FallbackPolicy()
        self._http = http_client

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> OverpassClient:
        return cls(
            endpoints=settings.overpass_endpoints,
            timeout_s=settings.overpass_timeout_s,
            cache=QueryCache(ttl_s=settings.osm_cache_ttl_s),
            http_client=http_client,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                yield client

    async def fetch(self, lat: float, lng: float, radius: int = 500) -> FetchResult:
        key = cache_key(lat, lng, radius)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("OSM cache hit for %s", key)
            outcome = FetchOutcome.SUCCESS if cached else FetchOutcome.EMPTY_UPSTREAM
            return FetchResult(outcome=outcome, records=cached, from_cache=True)

        query = build_query(lat, lng, radius)
        last_outcome = FetchOutcome.UPSTREAM_ERROR

        async with self._session() as client:
            for endpoint in self.endpoints:
                try:
                    # httpx timeouts apply per phase; wait_for bounds the whole attempt
                    response = await asyncio.wait_for(
                        client.post(
                            endpoint,
                            data={"data": query},
                            headers={"Content-Type": "application/x-www-form-urlencoded; charset=UTF-8"},
                            timeout=self.timeout_s,
                        ),
                        self.timeout_s,
                    )
                except (httpx.TimeoutException, asyncio.TimeoutError):
                    logger.warning("Overpass endpoint %s timed out, trying next", endpoint)
                    last_outcome = FetchOutcome.TIMEOUT
                    if self.policy.advance_on_timeout:
                        continue
                    break
                except (httpx.HTTPError, httpx.InvalidURL) as exc:
                    logger.warning("Overpass endpoint %s failed: %s", endpoint, exc)
                    last_outcome = FetchOutcome.UPSTREAM_ERROR
                    if self.policy.advance_on_transport_error:
                        continue
                    break

                if response.status_code != 200:
                    last_outcome = FetchOutcome.UPSTREAM_ERROR
                    if self.policy.advance_on_status(response.status_code):
                        logger.warning(
                            "Overpass endpoint %s busy (HTTP %d), trying next",
                            endpoint, response.status_code,
                        )
                        continue
                    logger.error(
                        "Overpass endpoint %s returned HTTP %d", endpoint, response.status_code,
                    )
                    return FetchResult(outcome=FetchOutcome.UPSTREAM_ERROR, endpoint=endpoint)

                try:
                    payload = response.json()
                except ValueError as exc:
                    logger.warning("Overpass endpoint %s returned invalid JSON: %s", endpoint, exc)
                    last_outcome = FetchOutcome.UPSTREAM_ERROR
                    if self.policy.advance_on_transport_error:
                        continue
                    break

                elements = payload.get("elements") if isinstance(payload, dict) else None
                if not elements:
                    self.cache.put(key, [])
                    logger.info("OSM: no parking near (%.4f, %.4f) r=%d", lat, lng, radius)
                    return FetchResult(outcome=FetchOutcome.EMPTY_UPSTREAM, endpoint=endpoint)

                nodes = parse_elements(elements)
                self.cache.put(key, nodes)
                logger.info(
                    "OSM: %d parking nodes near (%.4f, %.4f) from %s",
                    len(nodes), lat, lng, endpoint,
                )
                outcome = FetchOutcome.SUCCESS if nodes else FetchOutcome.EMPTY_UPSTREAM
                return FetchResult(outcome=outcome, records=nodes, endpoint=endpoint)

        logger.error("All Overpass endpoints failed for (%.4f, %.4f) r=%d", lat, lng, radius)
        return FetchResult(outcome=last_outcome)

    async def fetch_provider_spots(self, lat: float, lng: float, radius: int = 500) -> list[OSMParkingNode]:
        result = await self.fetch(lat, lng, radius)
        return result.records
