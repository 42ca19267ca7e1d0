"""
Pytest configuration for parkspots tests.

Provider clients get an httpx client backed by ``MockTransport`` so no test
ever reaches a real endpoint.
"""
import os

import httpx
import pytest

os.environ["GOOGLE_MAPS_API_KEY"] = ""


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingTransport:
    """Scripted transport: ``handler(request)`` builds each response."""

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport_factory():
    return RecordingTransport


def overpass_node(node_id, lat, lon, **tags):
    return {"type": "node", "id": node_id, "lat": lat, "lon": lon, "tags": tags}


def google_place(place_id, name, lat, lng, **extra):
    place = {"place_id": place_id, "name": name, "geometry": {"location": {"lat": lat, "lng": lng}}}
    place.update(extra)
    return place
