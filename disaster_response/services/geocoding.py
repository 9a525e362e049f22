import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..cache import hashed_key
from ..schemas import GeocodingResult

logger = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org"
USER_AGENT = "DisasterResponsePlatform/1.0"
GEOCODE_TTL = 86400


class _Place(BaseModel):
    lat: float
    lon: float
    display_name: str


class _ReversePlace(BaseModel):
    display_name: str


_PLACES = TypeAdapter(List[_Place])


def geocode_cache_key(location_name: str) -> str:
    return hashed_key("geocoding", location_name.strip().lower())


class GeocodingService:
    """OpenStreetMap Nominatim lookups. Free, no API key required."""

    def __init__(self, cache, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache = cache
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=NOMINATIM_URL,
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )

    async def geocode(self, location_name: str) -> Optional[GeocodingResult]:
        async def produce():
            result = await self._search(location_name)
            return result.model_dump(mode="json") if result else None

        payload = await self.cache.remember(geocode_cache_key(location_name), GEOCODE_TTL, produce)
        if payload is None:
            logger.warning("Failed to geocode location %r", location_name)
            return None
        return GeocodingResult.model_validate(payload)

    async def _search(self, location_name: str) -> Optional[GeocodingResult]:
        params = {"q": location_name, "format": "json", "limit": 1, "addressdetails": 1}
        try:
            async with self._client() as client:
                response = await client.get("/search", params=params)
                response.raise_for_status()
                places = _PLACES.validate_json(response.content)
            if not places:
                return None
            place = places[0]
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.error("Nominatim search error for %r: %s", location_name, exc)
            return None

        return GeocodingResult(
            location_name=location_name,
            lat=place.lat,
            lng=place.lon,
            formatted_address=place.display_name,
        )

    async def reverse_geocode(self, lat: float, lng: float) -> Optional[str]:
        return await self.cache.remember(
            f"reverse_geocoding:{lat},{lng}", GEOCODE_TTL, lambda: self._reverse(lat, lng)
        )

    async def _reverse(self, lat: float, lng: float) -> Optional[str]:
        params = {"lat": lat, "lon": lng, "format": "json", "addressdetails": 1}
        try:
            async with self._client() as client:
                response = await client.get("/reverse", params=params)
                response.raise_for_status()
                place = _ReversePlace.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.error("Nominatim reverse error for %s,%s: %s", lat, lng, exc)
            return None
        return place.display_name
