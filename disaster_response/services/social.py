import logging
import re
import uuid
from datetime import datetime, timedelta
from math import ceil
from typing import List, Optional, Sequence

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..exceptions import UpstreamError
from ..schemas import Engagement, SocialMediaPost, utcnow

logger = logging.getLogger(__name__)

BLUESKY_URL = "https://bsky.social"

SEARCH_TTL = 300
OFFICIAL_TTL = 300
TRENDING_TTL = 600
MAX_OFFICIAL_HANDLES = 5

DEFAULT_KEYWORDS = ["disaster", "emergency", "flood", "fire", "earthquake", "hurricane", "tornado"]
DEFAULT_OFFICIAL_HANDLES = [
    "fema.bsky.social",
    "redcross.bsky.social",
    "weather.gov.bsky.social",
    "emergency.bsky.social",
]
TRENDING_TOPICS = [
    "disaster", "emergency", "flood", "fire", "earthquake",
    "hurricane", "tornado", "evacuation", "relief", "SOS",
]

_DISASTER_ID = re.compile(r"disaster-\d+")

_POSTS = TypeAdapter(List[SocialMediaPost])


# Wire shapes for the XRPC responses we read

class _Session(BaseModel):
    accessJwt: str
    did: str


class _Author(BaseModel):
    handle: str


class _Record(BaseModel):
    text: str = ""


class _PostView(BaseModel):
    uri: str
    author: _Author
    record: _Record
    indexedAt: datetime
    likeCount: int = 0
    repostCount: int = 0
    replyCount: int = 0


class _SearchResult(BaseModel):
    posts: List[_PostView] = []


class _FeedItem(BaseModel):
    post: Optional[_PostView] = None


class _AuthorFeed(BaseModel):
    feed: List[_FeedItem] = []


def extract_disaster_id(text: str) -> str:
    match = _DISASTER_ID.search(text)
    return match.group(0) if match else "general"


def classify_priority(text: str) -> str:
    lowered = text.lower()
    if any(word in lowered for word in ("urgent", "sos", "emergency")):
        return "urgent"
    if any(word in lowered for word in ("critical", "severe", "danger")):
        return "high"
    if any(word in lowered for word in ("warning", "alert", "caution")):
        return "medium"
    return "low"


def to_social_post(view: _PostView) -> SocialMediaPost:
    return SocialMediaPost(
        id=view.uri,
        platform="bluesky",
        user=view.author.handle,
        content=view.record.text,
        timestamp=view.indexedAt,
        disaster_id=extract_disaster_id(view.record.text),
        priority=classify_priority(view.record.text),
        engagement=Engagement(likes=view.likeCount, reposts=view.repostCount, replies=view.replyCount),
    )


def mock_posts(keywords: Sequence[str], limit: int) -> List[SocialMediaPost]:
    """Stand-in posts used whenever Bluesky is unavailable."""
    topic = keywords[0] if keywords else "disaster"
    stamp = uuid.uuid4().hex[:8]
    now = utcnow()
    posts = [
        SocialMediaPost(
            id=f"mock-{stamp}-1",
            platform="bluesky",
            user="emergency_services.bsky.social",
            content=f"URGENT: {topic} situation reported in downtown area. Evacuation orders issued. #emergency #{topic}",
            timestamp=now - timedelta(minutes=5),
            disaster_id="disaster-1",
            priority="urgent",
        ),
        SocialMediaPost(
            id=f"mock-{stamp}-2",
            platform="bluesky",
            user="citizen_reporter.bsky.social",
            content=f"Heavy {topic} damage visible in residential area. Need immediate assistance! #{topic} #help",
            timestamp=now - timedelta(minutes=15),
            disaster_id="disaster-1",
            priority="high",
        ),
        SocialMediaPost(
            id=f"mock-{stamp}-3",
            platform="bluesky",
            user="relief_worker.bsky.social",
            content=f"Red Cross shelter now open for {topic} victims. Food and medical assistance available. #relief",
            timestamp=now - timedelta(minutes=30),
            disaster_id="disaster-1",
            priority="medium",
        ),
    ]
    return posts[:limit]


class BlueskyService:
    def __init__(self, cache, identifier: Optional[str] = None, password: Optional[str] = None,
                 timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache = cache
        self.identifier = identifier or ""
        self.password = password or ""
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.identifier and self.password)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=BLUESKY_URL, timeout=self.timeout, transport=self.transport)

    async def _login(self, client: httpx.AsyncClient) -> _Session:
        if not self.configured:
            raise UpstreamError("bluesky", "credentials not configured")
        response = await client.post(
            "/xrpc/com.atproto.server.createSession",
            json={"identifier": self.identifier, "password": self.password},
        )
        if response.status_code != 200:
            raise UpstreamError("bluesky", f"login failed with HTTP {response.status_code}")
        session = _Session.model_validate(response.json())
        client.headers["Authorization"] = f"Bearer {session.accessJwt}"
        return session

    async def search_disaster_posts(self, keywords: Optional[Sequence[str]] = None,
                                    limit: int = 20) -> List[SocialMediaPost]:
        keywords = list(keywords or DEFAULT_KEYWORDS)
        query = " OR ".join(keywords)

        async def produce():
            async with self._client() as client:
                await self._login(client)
                response = await client.get("/xrpc/app.bsky.feed.searchPosts", params={"q": query, "limit": limit})
                response.raise_for_status()
                result = _SearchResult.model_validate(response.json())
            posts = [to_social_post(view) for view in result.posts]
            logger.info("Bluesky search for %r returned %d posts", query, len(posts))
            return _POSTS.dump_python(posts, mode="json")

        try:
            payload = await self.cache.remember(f"bluesky_search:{','.join(keywords)}:{limit}", SEARCH_TTL, produce)
        except UpstreamError as exc:
            logger.warning("Bluesky unavailable, using mock posts: %s", exc)
            return mock_posts(keywords, limit)
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.error("Error searching Bluesky posts: %s", exc)
            return mock_posts(keywords, limit)
        return _POSTS.validate_python(payload)

    async def get_official_updates(self, handles: Optional[Sequence[str]] = None,
                                   limit: int = 20) -> List[SocialMediaPost]:
        handles = list(handles or DEFAULT_OFFICIAL_HANDLES)
        per_handle = ceil(limit / len(handles))

        async def produce():
            posts: List[SocialMediaPost] = []
            async with self._client() as client:
                await self._login(client)
                for handle in handles[:MAX_OFFICIAL_HANDLES]:
                    try:
                        response = await client.get(
                            "/xrpc/app.bsky.feed.getAuthorFeed",
                            params={"actor": handle, "limit": per_handle},
                        )
                        response.raise_for_status()
                        feed = _AuthorFeed.model_validate(response.json())
                    except (httpx.HTTPError, ValueError, ValidationError) as exc:
                        logger.warning("Error fetching posts for %s: %s", handle, exc)
                        continue
                    posts.extend(to_social_post(item.post) for item in feed.feed if item.post)
            return _POSTS.dump_python(posts[:limit], mode="json")

        try:
            payload = await self.cache.remember(f"bluesky_official:{','.join(handles)}:{limit}", OFFICIAL_TTL, produce)
        except (UpstreamError, httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.warning("Bluesky official updates unavailable, using mock posts: %s", exc)
            return mock_posts(["emergency", "disaster"], limit)
        return _POSTS.validate_python(payload)

    async def get_trending_topics(self) -> List[str]:
        async def produce():
            # No trending endpoint on Bluesky; a curated keyword list stands in
            return list(TRENDING_TOPICS)

        return await self.cache.remember("bluesky_trending_topics", TRENDING_TTL, produce)

    async def post_message(self, text: str) -> bool:
        try:
            async with self._client() as client:
                session = await self._login(client)
                response = await client.post(
                    "/xrpc/com.atproto.repo.createRecord",
                    json={
                        "repo": session.did,
                        "collection": "app.bsky.feed.post",
                        "record": {
                            "$type": "app.bsky.feed.post",
                            "text": text,
                            "createdAt": utcnow().isoformat().replace("+00:00", "Z"),
                        },
                    },
                )
                response.raise_for_status()
        except (UpstreamError, httpx.HTTPError, ValueError, ValidationError) as exc:
            logger.error("Error posting message to Bluesky: %s", exc)
            return False

        logger.info("Message posted to Bluesky")
        return True