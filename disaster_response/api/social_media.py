import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import TypeAdapter

from .. import fixtures, schemas
from ..dependencies import Services, get_services
from ..exceptions import CacheError
from ..pubsub import SOCIAL_MEDIA_UPDATED
from ..services.social import DEFAULT_KEYWORDS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["social-media"])

FEED_TTL = 300
URGENT_KEYWORDS = ["urgent", "SOS", "emergency", "help"]

_POSTS = TypeAdapter(List[schemas.SocialMediaPost])

Posts = schemas.ApiResponse[List[schemas.SocialMediaPost]]


def split_keywords(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_KEYWORDS)
    return [keyword.strip() for keyword in raw.split(",") if keyword.strip()]


@router.get("/api/social-media", response_model=Posts, response_model_exclude_none=True)
async def social_media_feed(
    disaster_id: Optional[str] = None,
    platform: str = "bluesky",
    limit: int = Query(20, ge=1, le=100),
    keywords: Optional[str] = None,
    services: Services = Depends(get_services),
):
    if not disaster_id:
        raise HTTPException(status_code=400, detail="Disaster ID is required")

    key = f"social_media:{disaster_id}:{platform}:{limit}"
    cached = await services.cache.get(key)
    if cached is not None:
        logger.info("Social media posts for %s retrieved from cache", disaster_id)
        return Posts(data=_POSTS.validate_python(cached), source="cache")

    if services.social.configured:
        posts = await services.social.search_disaster_posts(split_keywords(keywords), limit)
        source = "bluesky"
    else:
        posts = fixtures.social_posts_for(disaster_id, limit)
        source = "mock"

    try:
        await services.cache.set(key, _POSTS.dump_python(posts, mode="json"), FEED_TTL)
    except CacheError:
        logger.warning("Failed to cache social media posts for %s", disaster_id)

    services.bus.publish_to_disaster(SOCIAL_MEDIA_UPDATED, _POSTS.dump_python(posts, mode="json"), disaster_id)
    logger.info("Social media posts fetched for %s: %d from %s", disaster_id, len(posts), source)
    return Posts(data=posts, source=source)


@router.get("/api/social-media/urgent", response_model=Posts, response_model_exclude_none=True)
async def urgent_posts(disaster_id: Optional[str] = None, services: Services = Depends(get_services)):
    if not disaster_id:
        raise HTTPException(status_code=400, detail="Disaster ID is required")

    if services.social.configured:
        posts = await services.social.search_disaster_posts(URGENT_KEYWORDS, 50)
        posts = [post for post in posts if post.priority in ("urgent", "high")]
        source = "bluesky"
    else:
        posts = fixtures.urgent_social_posts_for(disaster_id)
        source = "mock"
    return Posts(data=posts, source=source, count=len(posts))


@router.get("/api/social-media/search", response_model=Posts, response_model_exclude_none=True)
async def search_posts(
    keywords: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    posts = await services.social.search_disaster_posts(split_keywords(keywords), limit)
    return Posts(data=posts, count=len(posts))


@router.get("/api/social-media/official", response_model=Posts, response_model_exclude_none=True)
async def official_posts(
    handles: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    handle_list = [handle.strip() for handle in (handles or "").split(",") if handle.strip()]
    posts = await services.social.get_official_updates(handle_list, limit)
    return Posts(data=posts, count=len(posts))


@router.get("/api/social-media/trending", response_model=schemas.ApiResponse[List[str]],
            response_model_exclude_none=True)
async def trending_topics(services: Services = Depends(get_services)):
    topics = await services.social.get_trending_topics()
    return schemas.ApiResponse[List[str]](data=topics, count=len(topics))


@router.post("/api/social-media/post", response_model=schemas.ApiResponse, response_model_exclude_none=True)
async def post_message(body: schemas.SocialPostRequest, services: Services = Depends(get_services)):
    if not await services.social.post_message(body.text):
        raise HTTPException(status_code=500, detail="Failed to post message")
    return schemas.ApiResponse(message="Message posted successfully")


@router.get("/api/official-updates", response_model=schemas.ApiResponse[List[schemas.OfficialUpdate]],
            response_model_exclude_none=True)
async def official_updates(disaster_id: Optional[str] = None):
    if not disaster_id:
        raise HTTPException(status_code=400, detail="Disaster ID is required")
    return schemas.ApiResponse[List[schemas.OfficialUpdate]](
        data=fixtures.official_updates_for(disaster_id),
        message="Official updates retrieved successfully.",
    )
