import asyncio

import httpx

from disaster_response.cache import MemoryCache
from disaster_response.services.geocoding import GeocodingService
from disaster_response.services.social import BlueskyService, classify_priority, extract_disaster_id

POST_VIEW = {
    "uri": "at://did:plc:abc/app.bsky.feed.post/1",
    "author": {"handle": "rescuer.bsky.social"},
    "record": {"text": "SOS flooding near the bridge, disaster-7 crews needed"},
    "indexedAt": "2024-05-01T12:00:00Z",
    "likeCount": 4,
    "repostCount": 2,
}


def test_extract_disaster_id():
    assert extract_disaster_id("Update on disaster-42: roads closed") == "disaster-42"
    assert extract_disaster_id("No correlation here") == "general"


def test_keyword_priority():
    assert classify_priority("SOS we are trapped") == "urgent"
    assert classify_priority("Severe damage downtown") == "high"
    assert classify_priority("Storm warning tonight") == "medium"
    assert classify_priority("Nice weather") == "low"


def test_search_without_credentials_returns_mock_posts():
    service = BlueskyService(MemoryCache())
    posts = asyncio.run(service.search_disaster_posts(["flood"], 2))

    assert service.configured is False
    assert len(posts) == 2
    assert all(post.id.startswith("mock-") for post in posts)
    assert "flood" in posts[0].content


def test_search_logs_in_and_maps_posts():
    seen = []

    def bluesky(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, request.headers.get("Authorization")))
        if request.url.path.endswith("createSession"):
            return httpx.Response(200, json={"accessJwt": "token-1", "did": "did:plc:abc"})
        return httpx.Response(200, json={"posts": [POST_VIEW]})

    service = BlueskyService(MemoryCache(), identifier="me.bsky.social", password="secret",
                             transport=httpx.MockTransport(bluesky))

    async def scenario():
        first = await service.search_disaster_posts(["flood"], 10)
        second = await service.search_disaster_posts(["flood"], 10)
        return first, second

    first, second = asyncio.run(scenario())

    assert [post.id for post in first] == [POST_VIEW["uri"]]
    post = first[0]
    assert post.user == "rescuer.bsky.social"
    assert post.disaster_id == "disaster-7"
    assert post.priority == "urgent"
    assert post.engagement.likes == 4
    assert second == first
    assert seen == [
        ("/xrpc/com.atproto.server.createSession", None),
        ("/xrpc/app.bsky.feed.searchPosts", "Bearer token-1"),
    ]


def test_failed_login_falls_back_to_mock_posts():
    service = BlueskyService(MemoryCache(), identifier="me", password="wrong",
                             transport=httpx.MockTransport(lambda request: httpx.Response(401)))
    posts = asyncio.run(service.search_disaster_posts(["fire"], 5))
    assert posts and all(post.id.startswith("mock-") for post in posts)


def test_official_updates_skip_failing_handles():
    def bluesky(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("createSession"):
            return httpx.Response(200, json={"accessJwt": "token-1", "did": "did:plc:abc"})
        if request.url.params["actor"] == "broken.bsky.social":
            return httpx.Response(500)
        return httpx.Response(200, json={"feed": [{"post": POST_VIEW}]})

    service = BlueskyService(MemoryCache(), identifier="me", password="secret",
                             transport=httpx.MockTransport(bluesky))
    posts = asyncio.run(service.get_official_updates(["broken.bsky.social", "fema.bsky.social"], 10))

    assert [post.user for post in posts] == ["rescuer.bsky.social"]


def test_post_message_requires_credentials():
    service = BlueskyService(MemoryCache())
    assert asyncio.run(service.post_message("hello")) is False


def test_geocode_hits_nominatim_once():
    requests = []

    def nominatim(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[{"lat": "40.7128", "lon": "-74.0060", "display_name": "New York, USA"}])

    service = GeocodingService(MemoryCache(), transport=httpx.MockTransport(nominatim))

    async def scenario():
        first = await service.geocode("New York")
        second = await service.geocode("  new york ")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.lat == 40.7128
    assert first.lng == -74.0060
    assert first.formatted_address == "New York, USA"
    assert second.lat == first.lat
    assert len(requests) == 1
    assert requests[0].headers["User-Agent"] == "DisasterResponsePlatform/1.0"
    assert requests[0].url.params["q"] == "New York"


def test_geocode_returns_none_for_unknown_place():
    service = GeocodingService(MemoryCache(), transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])))
    assert asyncio.run(service.geocode("Atlantis")) is None


def test_geocode_returns_none_for_error_object():
    reply = httpx.Response(200, json={"error": "Unable to geocode"})
    service = GeocodingService(MemoryCache(), transport=httpx.MockTransport(lambda request: reply))
    assert asyncio.run(service.geocode("Nowhere")) is None


def test_reverse_geocode():
    service = GeocodingService(
        MemoryCache(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"display_name": "Brooklyn, NY"})),
    )
    assert asyncio.run(service.reverse_geocode(40.65, -73.95)) == "Brooklyn, NY"
