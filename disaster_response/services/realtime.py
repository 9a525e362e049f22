"""Real-time aggregation of external feeds and the poller that publishes it.

Each of the six sources is fetched independently and cached unfiltered under
``realtime_<source>``. Disaster filtering happens after the fact, so one cache
entry serves every subscriber.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, TypeAdapter

from ..pubsub import DISASTER_REALTIME_UPDATE, REALTIME_UPDATE, Event, topic_for
from ..schemas import (Disaster, EmergencyAlert, RealTimeSnapshot, Report, Resource,
                       SocialMediaPost, WeatherAlert, utcnow)
from .social import DEFAULT_KEYWORDS

logger = logging.getLogger(__name__)

NWS_ALERTS_URL = "https://api.weather.gov/alerts/active"
FEMA_DECLARATIONS_URL = "https://www.fema.gov/api/open/v1/DisasterDeclarationsSummaries"
REDCROSS_SHELTERS_URL = (
    "https://maps.redcross.org/website/maps/arcgis/rest/services/Public/RedCrossShelters/MapServer/0/query"
)
USER_AGENT = "DisasterResponsePlatform/1.0"

RECENT_REPORTS = 50
FEMA_PAGE_SIZE = 50

# Lists whose items carry a disaster correlation id, and the field holding it
CORRELATED = {
    "disasters": "id",
    "social_media": "disaster_id",
    "resources": "disaster_id",
    "reports": "disaster_id",
}


# --- 1. UPSTREAM WIRE SHAPES ---

class _NwsProperties(BaseModel):
    event: str
    severity: Optional[str] = None
    areaDesc: Optional[str] = None
    description: Optional[str] = None
    effective: Optional[str] = None
    expires: Optional[str] = None


class _NwsFeature(BaseModel):
    id: str
    properties: _NwsProperties
    geometry: Optional[Dict[str, Any]] = None


class _NwsCollection(BaseModel):
    features: List[_NwsFeature] = []


class _FemaDeclaration(BaseModel):
    disasterNumber: int
    incidentType: str
    state: str
    designatedArea: Optional[str] = None
    declarationDate: Optional[str] = None


class _FemaResponse(BaseModel):
    DisasterDeclarationsSummaries: List[_FemaDeclaration] = []


class _ArcgisFeature(BaseModel):
    attributes: Dict[str, Any]
    geometry: Optional[Dict[str, Any]] = None


class _ArcgisResponse(BaseModel):
    features: List[_ArcgisFeature] = []


# --- 2. SOURCES ---

class Source:
    def __init__(self, name: str, cache_key: str, ttl: int, item_type):
        self.name = name
        self.cache_key = cache_key
        self.ttl = ttl
        self.adapter = TypeAdapter(List[item_type])


SOURCES = {
    "disasters": Source("disasters", "realtime_disasters", 120, Disaster),
    "social_media": Source("social_media", "realtime_social", 60, SocialMediaPost),
    "weather": Source("weather", "realtime_weather", 300, WeatherAlert),
    "emergency_alerts": Source("emergency_alerts", "realtime_emergency", 600, EmergencyAlert),
    "resources": Source("resources", "realtime_resources", 900, Resource),
    "reports": Source("reports", "realtime_reports", 30, Report),
}


def disaster_title(content: str) -> str:
    lowered = content.lower()
    for keyword in DEFAULT_KEYWORDS:
        if keyword in lowered:
            return f"{keyword.capitalize()} Emergency"
    return "Emergency Situation"


def disaster_tags(content: str) -> List[str]:
    lowered = content.lower()
    return [keyword for keyword in DEFAULT_KEYWORDS if keyword in lowered]


def filter_items(items: list, disaster_id: str, field: str) -> list:
    def correlated(item):
        value = item.get(field) if isinstance(item, dict) else getattr(item, field)
        return value == disaster_id
    return [item for item in items if correlated(item)]


def filter_snapshot(snapshot: RealTimeSnapshot, disaster_id: str) -> RealTimeSnapshot:
    """Keep only entries correlated to ``disaster_id``. Weather and FEMA alerts pass through."""
    return snapshot.model_copy(update={
        name: filter_items(getattr(snapshot, name), disaster_id, field)
        for name, field in CORRELATED.items()
    })


def build_realtime_events(snapshot: RealTimeSnapshot, topics: Iterable[str]) -> List[Event]:
    payload = snapshot.model_dump(mode="json")
    events = [Event(REALTIME_UPDATE, payload)]

    disaster_ids = {disaster.id for disaster in snapshot.disasters} | set(topics)
    for disaster_id in sorted(disaster_ids):
        scoped = dict(payload)
        for name, field in CORRELATED.items():
            scoped[name] = filter_items(payload[name], disaster_id, field)
        events.append(Event(
            DISASTER_REALTIME_UPDATE,
            {"disaster_id": disaster_id, **scoped},
            topic=topic_for(disaster_id),
        ))
    return events


class RealTimeDataService:
    def __init__(self, cache, social, store, timeout: float = 5.0, fema_lookback_days: int = 365,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache = cache
        self.social = social
        self.store = store
        self.timeout = timeout
        self.fema_lookback_days = fema_lookback_days
        self.transport = transport
        self._fetchers: Dict[str, Callable] = {
            "disasters": self._fetch_disasters,
            "social_media": self._fetch_social,
            "weather": self._fetch_weather,
            "emergency_alerts": self._fetch_emergency,
            "resources": self._fetch_resources,
            "reports": self._fetch_reports,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport,
                                 headers={"User-Agent": USER_AGENT})

    async def _source(self, name: str) -> list:
        source = SOURCES[name]

        async def produce():
            items = await self._fetchers[name]()
            return source.adapter.dump_python(items, mode="json")

        payload = await self.cache.remember(source.cache_key, source.ttl, produce)
        return source.adapter.validate_python(payload)

    async def _fetch_weather(self) -> List[WeatherAlert]:
        async with self._client() as client:
            response = await client.get(NWS_ALERTS_URL, headers={"Accept": "application/geo+json"})
            response.raise_for_status()
            collection = _NwsCollection.model_validate(response.json())

        return [
            WeatherAlert(
                id=feature.id,
                type=feature.properties.event,
                severity=feature.properties.severity,
                area=feature.properties.areaDesc,
                description=feature.properties.description,
                effective=feature.properties.effective,
                expires=feature.properties.expires,
                coordinates=(feature.geometry or {}).get("coordinates") or [],
            )
            for feature in collection.features
        ]

    async def _fetch_emergency(self) -> List[EmergencyAlert]:
        since = (utcnow() - timedelta(days=self.fema_lookback_days)).strftime("%Y-%m-%d")
        params = {
            "$filter": f"declarationDate gt '{since}'",
            "$orderby": "declarationDate desc",
            "$top": FEMA_PAGE_SIZE,
        }
        async with self._client() as client:
            response = await client.get(FEMA_DECLARATIONS_URL, params=params)
            response.raise_for_status()
            result = _FemaResponse.model_validate(response.json())

        return [
            EmergencyAlert(
                id=str(item.disasterNumber),
                type=item.incidentType,
                state=item.state,
                county=item.designatedArea,
                declaration_date=item.declarationDate,
                title=f"{item.incidentType} in {item.state}",
                description=f"Federal disaster declaration for {item.incidentType} in {item.state}",
            )
            for item in result.DisasterDeclarationsSummaries
        ]

    async def _fetch_resources(self) -> List[Resource]:
        params = {"f": "json", "where": "1=1", "outFields": "*", "returnGeometry": "true"}
        async with self._client() as client:
            response = await client.get(REDCROSS_SHELTERS_URL, params=params)
            response.raise_for_status()
            result = _ArcgisResponse.model_validate(response.json())

        now = utcnow()
        shelters = []
        for feature in result.features:
            attributes = feature.attributes
            geometry = feature.geometry or {}
            shelters.append(Resource(
                id=f"redcross-{attributes.get('OBJECTID')}",
                # Shelters are not tied to a tracked disaster
                disaster_id="general",
                name=attributes.get("ShelterName") or "Red Cross Shelter",
                location_name=attributes.get("Address") or "Unknown Location",
                location={"lat": geometry.get("y") or 0, "lng": geometry.get("x") or 0},
                type="shelter",
                capacity=attributes.get("Capacity") or None,
                available=True,
                created_at=now,
            ))
        return shelters

    async def _fetch_social(self) -> List[SocialMediaPost]:
        posts = await self.social.search_disaster_posts(DEFAULT_KEYWORDS, 20)
        official = await self.social.get_official_updates()
        return [*posts, *official]

    async def _fetch_reports(self) -> List[Report]:
        result = await self.store.call("list_reports", 1, RECENT_REPORTS)
        reports, _ = result.value
        return reports

    async def _fetch_disasters(self) -> List[Disaster]:
        disasters: List[Disaster] = []

        try:
            posts = await self.social.search_disaster_posts(DEFAULT_KEYWORDS, 20)
            disasters.extend(
                Disaster(
                    id=f"bluesky-{post.id}",
                    title=disaster_title(post.content),
                    location_name="Unknown Location",
                    description=post.content,
                    tags=disaster_tags(post.content),
                    owner_id=post.user,
                    created_at=post.timestamp,
                    updated_at=post.timestamp,
                )
                for post in posts
            )
        except Exception as exc:
            logger.warning("Failed to derive disasters from social posts: %s", exc)

        try:
            for alert in await self._source("emergency_alerts"):
                stamp = alert.declaration_date or utcnow()
                disasters.append(Disaster(
                    id=f"fema-{alert.id}",
                    title=alert.title,
                    location_name=alert.county or alert.state,
                    description=alert.description,
                    tags=["fema", alert.type.lower()],
                    owner_id="fema",
                    created_at=stamp,
                    updated_at=stamp,
                ))
        except Exception as exc:
            logger.warning("Failed to derive disasters from FEMA declarations: %s", exc)

        try:
            for alert in await self._source("weather"):
                disasters.append(Disaster(
                    id=f"weather-{alert.id}",
                    title=f"{alert.type} Alert",
                    location_name=alert.area or "Unknown Location",
                    description=alert.description or f"Weather alert: {alert.type}",
                    tags=["weather", alert.type.lower(), "alert"],
                    owner_id="weather_service",
                    created_at=alert.effective or utcnow(),
                    updated_at=alert.expires or utcnow(),
                ))
        except Exception as exc:
            logger.warning("Failed to derive disasters from weather alerts: %s", exc)

        return disasters

    async def get_source(self, name: str, disaster_id: Optional[str] = None) -> list:
        """One source on its own. Failures yield an empty list."""
        try:
            items = await self._source(name)
        except Exception as exc:
            logger.warning("Real-time source %s failed: %s", name, exc)
            return []
        if disaster_id and name in CORRELATED:
            return filter_items(items, disaster_id, CORRELATED[name])
        return items

    async def get_snapshot(self, disaster_id: Optional[str] = None) -> RealTimeSnapshot:
        sources = list(SOURCES.values())
        results = await asyncio.gather(*(self._source(source.name) for source in sources), return_exceptions=True)

        lists = {}
        for source, result in zip(sources, results):
            if isinstance(result, Exception):
                logger.warning("Real-time source %s failed: %s", source.name, result)
                result = []
            elif isinstance(result, BaseException):
                # Cancellation and interpreter exits are not source failures
                raise result
            lists[source.name] = result

        snapshot = RealTimeSnapshot(**lists)
        if disaster_id:
            return filter_snapshot(snapshot, disaster_id)
        return snapshot


# --- 3. POLLING ---

class RealTimePoller:
    """Fetches a snapshot on a fixed interval and publishes it to the event bus.

    Ticks never overlap: a tick requested while one is in flight is skipped.
    """

    def __init__(self, service: RealTimeDataService, bus, topics: Callable[[], Iterable[str]],
                 interval_seconds: float = 30.0):
        self.service = service
        self.bus = bus
        self.topics = topics
        self.interval_seconds = interval_seconds
        self.last_update = None
        self.last_error: Optional[str] = None
        self.ticks = 0
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def tick(self) -> bool:
        if self._lock.locked():
            logger.info("Real-time poll already in progress, skipping")
            return False

        async with self._lock:
            try:
                snapshot = await self.service.get_snapshot()
                for event in build_realtime_events(snapshot, self.topics()):
                    self.bus.publish(event.name, event.data, topic=event.topic)
                self.last_update = utcnow()
                self.last_error = None
            except Exception as exc:
                logger.exception("Real-time poll failed")
                self.last_error = str(exc)
            finally:
                self.ticks += 1
        return True

    async def run_forever(self):
        logger.info("Real-time polling every %.0fs", self.interval_seconds)
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)
