import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from parkspots.aggregator import SpotAggregator, SpotNotFoundError
from parkspots.config import settings
from parkspots.models import (
    LocationQuery,
    NearbyQuery,
    NewSpot,
    ParkingSpot,
    SpotStatus,
    StatusReport,
    StatusSummary,
)
from parkspots.services import filter_by_status, find_nearby, summarize_status

logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(name)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Parking Spots API", version="0.1.0")

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide spot collection, shared by all requests
aggregator = SpotAggregator.from_settings(settings)


def get_aggregator() -> SpotAggregator:
    return aggregator


@app.get("/health")
def health(agg: SpotAggregator = Depends(get_aggregator)):
    return {
        "status": "ok",
        "spots_loaded": len(agg.spots),
        "places_enabled": getattr(agg.places_client, "enabled", False),
    }


@app.get("/spots", response_model=list[ParkingSpot])
def list_spots(
    status: Optional[SpotStatus] = None,
    agg: SpotAggregator = Depends(get_aggregator),
) -> list[ParkingSpot]:
    return filter_by_status(agg.spots, status)


@app.get("/spots/summary", response_model=StatusSummary)
def spots_summary(agg: SpotAggregator = Depends(get_aggregator)) -> StatusSummary:
    return summarize_status(agg.spots)


@app.post("/spots/refresh", response_model=list[ParkingSpot])
async def refresh_spots(
    query: LocationQuery,
    agg: SpotAggregator = Depends(get_aggregator),
) -> list[ParkingSpot]:
    """
    Pull parking spots around a location from OpenStreetMap and Google Places.

    - **lat, lng**: User location; the configured default location is used when omitted
    """
    lat, lng = settings.default_location
    if query.lat is not None and query.lng is not None:
        lat, lng = query.lat, query.lng
    return await agg.refresh(lat, lng)


@app.post("/spots/nearby", response_model=list[dict])
def get_nearby_spots(
    query: NearbyQuery,
    agg: SpotAggregator = Depends(get_aggregator),
) -> list[dict]:
    """
    Find the nearest known parking spots to the given coordinates.

    - **lat, lng**: Center point coordinates (required)
    - **k**: Maximum number of spots to return (default: 5)
    - **radius_m**: Optional maximum distance in meters
    - **status**: Optional `free` / `occupied` filter
    """
    return find_nearby(
        agg.spots,
        lat=query.lat,
        lng=query.lng,
        k=query.k,
        radius_m=query.radius_m,
        status=query.status,
    )


@app.post("/spots", response_model=ParkingSpot, status_code=201)
async def add_spot(body: NewSpot, agg: SpotAggregator = Depends(get_aggregator)) -> ParkingSpot:
    return agg.add_spot(lat=body.lat, lng=body.lng, name=body.name)


@app.post("/spots/{spot_id}/status", response_model=ParkingSpot)
async def report_status(
    spot_id: str,
    body: StatusReport,
    agg: SpotAggregator = Depends(get_aggregator),
) -> ParkingSpot:
    try:
        return agg.report_status(spot_id, body.status)
    except SpotNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown parking spot: {spot_id}")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
