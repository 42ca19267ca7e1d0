import asyncio
import sys
import threading

import httpx
import pytest

from conftest import google_place, overpass_node
from parkspots.aggregator import SpotAggregator, SpotNotFoundError, merge_spots
from parkspots.cache import QueryCache
from parkspots.config import Settings
from parkspots.google_places import GooglePlacesClient
from parkspots.models import FetchOutcome, FetchResult, GooglePlace, OSMParkingNode, ParkingSpot, SpotStatus
from parkspots.osm import OverpassClient


class FakeProvider:
    def __init__(self, result=None, error=None):
        self.result = result or FetchResult(outcome=FetchOutcome.EMPTY_UPSTREAM)
        self.error = error
        self.calls = []

    async def fetch(self, lat, lng, radius):
        self.calls.append((lat, lng, radius))
        if self.error is not None:
            raise self.error
        return self.result


def osm_result(*nodes):
    return FetchResult(outcome=FetchOutcome.SUCCESS, records=list(nodes))


def test_merge_keeps_first_seen():
    existing = [ParkingSpot(id="osm_1", lat=1.0, lng=1.0, status=SpotStatus.OCCUPIED, name="mine")]
    incoming = [
        ParkingSpot(id="osm_1", lat=2.0, lng=2.0, name="theirs"),
        ParkingSpot(id="osm_2", lat=3.0, lng=3.0),
        ParkingSpot(id="osm_2", lat=4.0, lng=4.0),
    ]
    merged = merge_spots(existing, incoming)
    assert [s.id for s in merged] == ["osm_1", "osm_2"]
    assert merged[0] is existing[0]
    assert merged[1].lat == 3.0


@pytest.mark.asyncio
async def test_refresh_uses_provider_radii():
    osm, places = FakeProvider(), FakeProvider()
    agg = SpotAggregator(osm, places, osm_radius_m=500, places_radius_m=2000)

    await agg.refresh(47.3769, 8.5417)

    assert osm.calls == [(47.3769, 8.5417, 500)]
    assert places.calls == [(47.3769, 8.5417, 2000)]


@pytest.mark.asyncio
async def test_failing_provider_does_not_block_the_other():
    place = GooglePlace.model_validate(google_place("p5", "Parking", 1.0, 2.0))
    agg = SpotAggregator(
        FakeProvider(error=RuntimeError("boom")),
        FakeProvider(FetchResult(outcome=FetchOutcome.SUCCESS, records=[place])),
    )
    spots = await agg.refresh(1.0, 2.0)
    assert [s.id for s in spots] == ["google_p5"]

    agg = SpotAggregator(
        FakeProvider(osm_result(OSMParkingNode(id="osm_5", lat=1.0, lon=2.0))),
        FakeProvider(error=httpx.ConnectError("down")),
    )
    spots = await agg.refresh(1.0, 2.0)
    assert [s.id for s in spots] == ["osm_5"]


@pytest.mark.asyncio
async def test_both_providers_empty_keeps_crowdsourced_spots():
    agg = SpotAggregator(
        FakeProvider(FetchResult(outcome=FetchOutcome.TIMEOUT)),
        FakeProvider(FetchResult(outcome=FetchOutcome.DISABLED)),
    )
    local = agg.add_spot(47.0, 8.0, name="Hinterhof")

    spots = await agg.refresh(47.0, 8.0)

    assert spots == [local]
    assert local.id.startswith("local_")
    assert local.status == SpotStatus.FREE


@pytest.mark.asyncio
async def test_status_report_survives_later_refresh():
    node = OSMParkingNode(id="osm_42", lat=47.377, lon=8.542, tags={"amenity": "parking"})
    agg = SpotAggregator(FakeProvider(osm_result(node)), FakeProvider())

    await agg.refresh(47.3769, 8.5417)
    before = agg.get_spot("osm_42").reported_at
    updated = agg.report_status("osm_42", SpotStatus.OCCUPIED)
    spots = await agg.refresh(47.3769, 8.5417)

    assert updated.status == SpotStatus.OCCUPIED
    assert updated.reported_at >= before
    assert [s.id for s in spots] == ["osm_42"]
    assert spots[0].status == SpotStatus.OCCUPIED


def test_report_status_unknown_id():
    agg = SpotAggregator(FakeProvider(), FakeProvider())
    with pytest.raises(SpotNotFoundError):
        agg.report_status("nope", SpotStatus.FREE)


def test_initial_spots_are_deduplicated():
    agg = SpotAggregator(
        FakeProvider(),
        FakeProvider(),
        spots=[ParkingSpot(id="a", lat=0.0, lng=0.0), ParkingSpot(id="a", lat=1.0, lng=1.0)],
    )
    assert len(agg.spots) == 1


def test_from_settings_wires_both_clients():
    agg = SpotAggregator.from_settings(Settings(google_maps_api_key="k", osm_radius_m=300))
    assert isinstance(agg.osm_client, OverpassClient)
    assert isinstance(agg.places_client, GooglePlacesClient)
    assert agg.osm_radius_m == 300
    assert agg.places_radius_m == 2000


@pytest.mark.asyncio
async def test_zurich_end_to_end(transport_factory, clock):
    def handler(request):
        if "overpass" in request.url.host:
            return httpx.Response(200, json={"elements": [overpass_node(42, 47.377, 8.542, amenity="parking")]})
        return httpx.Response(200, json={
            "status": "OK",
            "results": [google_place("p1", "Parkhaus Altstadt", 47.378, 8.543, rating=4.2)],
        })

    transport = transport_factory(handler)
    http = transport.client()
    agg = SpotAggregator(
        OverpassClient(
            endpoints=["https://overpass.example/api/interpreter"],
            cache=QueryCache(ttl_s=300, clock=clock),
            http_client=http,
        ),
        GooglePlacesClient(api_key="k", cache=QueryCache(ttl_s=600, clock=clock), http_client=http),
    )

    spots = await agg.refresh(47.3769, 8.5417)
    by_id = {s.id: s for s in spots}

    assert set(by_id) == {"osm_42", "google_p1"}
    assert all(s.status == SpotStatus.FREE for s in spots)
    assert by_id["osm_42"].name == "Parkplatz 000042"
    assert by_id["google_p1"].name == "Parkhaus Altstadt"
    assert by_id["google_p1"].rating == 4.2

    await agg.refresh(47.3769, 8.5417)
    assert len(transport.requests) == 2
    assert len(agg.spots) == 2


class GatedProvider(FakeProvider):
    """Holds every fetch until ``release`` is set."""

    def __init__(self, result=None):
        super().__init__(result)
        self.release = asyncio.Event()
        self.waiting = asyncio.Event()

    async def fetch(self, lat, lng, radius):
        self.waiting.set()
        await self.release.wait()
        return await super().fetch(lat, lng, radius)


@pytest.mark.asyncio
async def test_user_changes_during_refresh_survive_the_merge():
    existing = ParkingSpot(id="osm_1", lat=47.0, lng=8.0)
    osm = GatedProvider(osm_result(
        OSMParkingNode(id="osm_1", lat=47.0, lon=8.0),
        OSMParkingNode(id="osm_2", lat=47.1, lon=8.1),
    ))
    agg = SpotAggregator(osm, FakeProvider(), spots=[existing])

    task = asyncio.create_task(agg.refresh(47.0, 8.0))
    await osm.waiting.wait()
    local = agg.add_spot(47.05, 8.05)
    agg.report_status("osm_1", SpotStatus.OCCUPIED)
    osm.release.set()
    spots = await task

    by_id = {s.id: s for s in spots}
    assert set(by_id) == {"osm_1", "osm_2", local.id}
    assert by_id["osm_1"].status == SpotStatus.OCCUPIED


@pytest.mark.asyncio
async def test_overlapping_refreshes_keep_both_batches():
    first = GatedProvider(osm_result(OSMParkingNode(id="osm_a", lat=47.0, lon=8.0)))
    second = FakeProvider(osm_result(OSMParkingNode(id="osm_b", lat=46.0, lon=7.0)))

    class Router:
        async def fetch(self, lat, lng, radius):
            provider = first if lat == 47.0 else second
            return await provider.fetch(lat, lng, radius)

    agg = SpotAggregator(Router(), FakeProvider())

    slow = asyncio.create_task(agg.refresh(47.0, 8.0))
    await first.waiting.wait()
    fast = await agg.refresh(46.0, 7.0)
    first.release.set()
    final = await slow

    assert [s.id for s in fast] == ["osm_b"]
    assert sorted(s.id for s in final) == ["osm_a", "osm_b"]
    assert [s.id for s in agg.spots] == ["osm_b", "osm_a"]


def test_concurrent_mutations_from_threads_are_not_lost():
    agg = SpotAggregator(FakeProvider(), FakeProvider())
    target = agg.add_spot(47.0, 8.0)
    per_thread, writers = 300, 4

    def add_many():
        for _ in range(per_thread):
            agg.add_spot(47.0, 8.0)

    def report_many():
        for i in range(per_thread):
            agg.report_status(target.id, SpotStatus.OCCUPIED if i % 2 else SpotStatus.FREE)

    old_interval = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    try:
        threads = [threading.Thread(target=add_many) for _ in range(writers)]
        threads.append(threading.Thread(target=report_many))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    finally:
        sys.setswitchinterval(old_interval)

    spots = agg.spots
    assert len(spots) == 1 + per_thread * writers
    assert len({s.id for s in spots}) == len(spots)
    assert agg.get_spot(target.id).status == SpotStatus.OCCUPIED
