import asyncio
from datetime import datetime, timezone

import httpx

from disaster_response.cache import MemoryCache
from disaster_response.pubsub import DISASTER_REALTIME_UPDATE, REALTIME_UPDATE
from disaster_response.repository import DataStore, MemoryRepository
from disaster_response.schemas import Disaster, RealTimeSnapshot, SocialMediaPost
from disaster_response.services.realtime import (RealTimeDataService, RealTimePoller,
                                                 build_realtime_events, filter_snapshot)
from disaster_response.services.social import BlueskyService

NWS_ALERTS = {
    "features": [
        {
            "id": "https://api.weather.gov/alerts/urn:oid:1",
            "properties": {
                "event": "Flood Warning",
                "severity": "Severe",
                "areaDesc": "Kings, NY",
                "description": "River flooding expected",
                "effective": "2024-05-01T10:00:00-04:00",
                "expires": "2024-05-01T18:00:00-04:00",
            },
            "geometry": None,
        }
    ]
}


def partial_outage(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "api.weather.gov":
        return httpx.Response(200, json=NWS_ALERTS)
    if host == "www.fema.gov":
        return httpx.Response(500, text="upstream error")
    raise httpx.ConnectError("connection refused", request=request)


def make_service(handler=partial_outage):
    transport = httpx.MockTransport(handler)
    cache = MemoryCache()
    social = BlueskyService(cache, transport=transport)
    store = DataStore(None, MemoryRepository())
    return RealTimeDataService(cache, social, store, transport=transport)


def _stamp():
    return datetime(2024, 5, 1, tzinfo=timezone.utc)


def _post(post_id, disaster_id):
    return SocialMediaPost(id=post_id, user="someone", content="help", timestamp=_stamp(), disaster_id=disaster_id)


def _disaster(disaster_id):
    return Disaster(
        id=disaster_id, title="Flood", location_name="Somewhere", description="Water",
        owner_id="tester", created_at=_stamp(), updated_at=_stamp(),
    )


def test_snapshot_survives_failing_sources():
    snapshot = asyncio.run(make_service().get_snapshot())

    assert [alert.type for alert in snapshot.weather] == ["Flood Warning"]
    assert snapshot.emergency_alerts == []
    assert snapshot.resources == []
    # Bluesky is not configured, so the social feed is mock posts
    assert len(snapshot.social_media) > 0
    assert {report.id for report in snapshot.reports} == {"report-1", "report-2", "report-3"}
    assert "weather-https://api.weather.gov/alerts/urn:oid:1" in {d.id for d in snapshot.disasters}


def test_snapshot_filtered_by_disaster():
    snapshot = asyncio.run(make_service().get_snapshot("disaster-1"))

    assert snapshot.social_media
    assert all(post.disaster_id == "disaster-1" for post in snapshot.social_media)
    assert {report.id for report in snapshot.reports} == {"report-1", "report-2"}
    assert snapshot.disasters == []
    # Weather alerts are not correlated to disasters and pass through
    assert len(snapshot.weather) == 1


def test_sources_are_cached_between_snapshots():
    calls = []

    def counting(request):
        calls.append(request.url.host)
        return partial_outage(request)

    service = make_service(counting)

    async def scenario():
        await service.get_source("weather")
        await service.get_source("weather")

    asyncio.run(scenario())
    assert calls.count("api.weather.gov") == 1


def test_get_source_returns_empty_list_on_failure():
    assert asyncio.run(make_service().get_source("emergency_alerts")) == []


def test_filter_snapshot_keeps_only_matching_entries():
    snapshot = RealTimeSnapshot(
        disasters=[_disaster("disaster-1"), _disaster("disaster-2")],
        social_media=[_post("a", "disaster-1"), _post("b", "general")],
    )

    filtered = filter_snapshot(snapshot, "disaster-2")
    assert [d.id for d in filtered.disasters] == ["disaster-2"]
    assert filtered.social_media == []


def test_build_realtime_events_scopes_per_disaster():
    snapshot = RealTimeSnapshot(
        disasters=[_disaster("disaster-1")],
        social_media=[_post("a", "disaster-1"), _post("b", "disaster-2")],
    )

    events = build_realtime_events(snapshot, topics=["disaster-2"])

    assert events[0].name == REALTIME_UPDATE
    assert events[0].topic is None
    assert len(events[0].data["social_media"]) == 2

    scoped = {event.data["disaster_id"]: event for event in events[1:]}
    assert set(scoped) == {"disaster-1", "disaster-2"}
    for disaster_id, event in scoped.items():
        assert event.name == DISASTER_REALTIME_UPDATE
        assert event.topic == f"disaster-{disaster_id}"
        assert [post["id"] for post in event.data["social_media"]] == (["a"] if disaster_id == "disaster-1" else ["b"])
    assert scoped["disaster-2"].data["disasters"] == []


class RecordingBus:
    def __init__(self):
        self.events = []

    def publish(self, name, data, topic=None):
        self.events.append((name, topic))


class SlowService:
    def __init__(self):
        self.calls = 0
        self.release = None

    async def get_snapshot(self, disaster_id=None):
        self.calls += 1
        await self.release.wait()
        return RealTimeSnapshot()


def test_poller_skips_overlapping_ticks():
    service = SlowService()
    bus = RecordingBus()
    poller = RealTimePoller(service, bus, lambda: [], interval_seconds=30)

    async def scenario():
        service.release = asyncio.Event()
        first = asyncio.create_task(poller.tick())
        await asyncio.sleep(0)
        busy = poller.busy
        overlapping = await poller.tick()
        service.release.set()
        return busy, overlapping, await first

    busy, overlapping, completed = asyncio.run(scenario())
    assert busy is True
    assert overlapping is False
    assert completed is True
    assert service.calls == 1
    assert poller.ticks == 1
    assert poller.last_update is not None
    assert bus.events == [(REALTIME_UPDATE, None)]


def test_poller_records_failures():
    class BrokenService:
        async def get_snapshot(self, disaster_id=None):
            raise RuntimeError("boom")

    bus = RecordingBus()
    poller = RealTimePoller(BrokenService(), bus, lambda: [])

    assert asyncio.run(poller.tick()) is True
    assert poller.last_error == "boom"
    assert poller.ticks == 1
    assert bus.events == []
