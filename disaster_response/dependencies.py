from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Header, Request

from .ai_core.service import GeminiService
from .cache import DatabaseCache, MemoryCache
from .config import Settings
from .database import build_session_factory
from .pubsub import ConnectionManager, EventBus
from .repository import DataStore, MemoryRepository, SqlRepository
from .services.geocoding import GeocodingService
from .services.realtime import RealTimeDataService, RealTimePoller
from .services.social import BlueskyService


@dataclass
class Services:
    settings: Settings
    session_factory: object
    cache: object
    store: DataStore
    ai: GeminiService
    geocoder: GeocodingService
    social: BlueskyService
    realtime: RealTimeDataService
    poller: RealTimePoller
    manager: ConnectionManager
    bus: EventBus


def build_services(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None,
                   ai_model=None, ai_vision_model=None) -> Services:
    timeout = settings.http_timeout_seconds

    if settings.use_database:
        connect_args = {"connect_timeout": int(timeout)} if settings.database_url.startswith("postgresql") else {}
        session_factory = build_session_factory(settings.database_url, connect_args=connect_args)
        cache = DatabaseCache(session_factory)
        primary = SqlRepository(session_factory)
    else:
        session_factory = None
        cache = MemoryCache()
        primary = None
    store = DataStore(primary, MemoryRepository())

    ai = GeminiService(
        cache,
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        vision_model_name=settings.gemini_vision_model,
        timeout=timeout,
        transport=transport,
        model=ai_model,
        vision_model=ai_vision_model,
    )
    social = BlueskyService(
        cache,
        identifier=settings.bluesky_identifier,
        password=settings.bluesky_password,
        timeout=timeout,
        transport=transport,
    )
    realtime = RealTimeDataService(
        cache, social, store,
        timeout=timeout,
        fema_lookback_days=settings.fema_lookback_days,
        transport=transport,
    )
    manager = ConnectionManager()
    bus = EventBus(manager)
    poller = RealTimePoller(
        realtime, bus, manager.subscribed_disasters,
        interval_seconds=settings.realtime_poll_interval_seconds,
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        cache=cache,
        store=store,
        ai=ai,
        geocoder=GeocodingService(cache, timeout=timeout, transport=transport),
        social=social,
        realtime=realtime,
        poller=poller,
        manager=manager,
        bus=bus,
    )


# Request dependencies

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Stand-in for real authentication
    return x_user_id or "anonymous"
