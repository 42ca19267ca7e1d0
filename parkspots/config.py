import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _google_api_key() -> str | None:
    return os.getenv("GOOGLE_MAPS_API_KEY", "").strip() or None


class Settings(BaseModel):
    # Places text search is skipped entirely when no key is configured.
    google_maps_api_key: str | None = Field(default_factory=_google_api_key)

    # Tried in this order; 503/504 and timeouts move on to the next one.
    overpass_endpoints: list[str] = [
        "https://overpass-api.de/api/interpreter",
        "https://overpass.kumi.systems/api/interpreter",
        "https://overpass.openstreetmap.fr/api/interpreter",
    ]
    overpass_timeout_s: float = 15.0
    osm_cache_ttl_s: float = 5 * 60
    osm_radius_m: int = 500

    places_url: str = "https://maps.googleapis.com/maps/api/place/textsearch/json"
    places_timeout_s: float = 10.0
    # Longer than OSM because every Places request is billed.
    places_cache_ttl_s: float = 10 * 60
    places_radius_m: int = 2000
    places_max_radius_m: int = 2000
    places_query: str = "Parkplatz"
    places_language: str = "de"

    places_name_filter_enabled: bool = True
    places_name_keywords: tuple[str, ...] = ("parkplatz", "parking", "parkhaus", "park deck")
    places_parking_types: tuple[str, ...] = ("parking",)

    # Zurich, used when the caller has no location fix.
    default_location: tuple[float, float] = (47.3769, 8.5417)

    log_level: str = "INFO"

    @property
    def places_enabled(self) -> bool:
        return bool(self.google_maps_api_key)


settings = Settings()
