import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends

from .. import schemas
from ..dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/realtime", tags=["realtime"])


@router.get("", response_model=schemas.ApiResponse[schemas.RealTimeSnapshot], response_model_exclude_none=True)
async def realtime_snapshot(disaster_id: Optional[str] = None, services: Services = Depends(get_services)):
    snapshot = await services.realtime.get_snapshot(disaster_id)
    return schemas.ApiResponse[schemas.RealTimeSnapshot](data=snapshot)


@router.get("/disasters", response_model=schemas.ApiResponse[List[schemas.Disaster]],
            response_model_exclude_none=True)
async def realtime_disasters(disaster_id: Optional[str] = None, services: Services = Depends(get_services)):
    items = await services.realtime.get_source("disasters", disaster_id)
    return schemas.ApiResponse[List[schemas.Disaster]](data=items, count=len(items))


@router.get("/social-media", response_model=schemas.ApiResponse[List[schemas.SocialMediaPost]],
            response_model_exclude_none=True)
async def realtime_social_media(disaster_id: Optional[str] = None, services: Services = Depends(get_services)):
    items = await services.realtime.get_source("social_media", disaster_id)
    return schemas.ApiResponse[List[schemas.SocialMediaPost]](data=items, count=len(items))


@router.get("/weather", response_model=schemas.ApiResponse[List[schemas.WeatherAlert]],
            response_model_exclude_none=True)
async def realtime_weather(services: Services = Depends(get_services)):
    items = await services.realtime.get_source("weather")
    return schemas.ApiResponse[List[schemas.WeatherAlert]](data=items, count=len(items))


@router.get("/emergency-alerts", response_model=schemas.ApiResponse[List[schemas.EmergencyAlert]],
            response_model_exclude_none=True)
async def realtime_emergency_alerts(services: Services = Depends(get_services)):
    items = await services.realtime.get_source("emergency_alerts")
    return schemas.ApiResponse[List[schemas.EmergencyAlert]](data=items, count=len(items))


@router.get("/resources", response_model=schemas.ApiResponse[List[schemas.Resource]],
            response_model_exclude_none=True)
async def realtime_resources(disaster_id: Optional[str] = None, services: Services = Depends(get_services)):
    items = await services.realtime.get_source("resources", disaster_id)
    return schemas.ApiResponse[List[schemas.Resource]](data=items, count=len(items))


@router.get("/status")
async def realtime_status(services: Services = Depends(get_services)):
    settings = services.settings
    poller = services.poller
    return {
        "success": True,
        "data": {
            "polling_enabled": settings.realtime_polling_enabled,
            "polling_interval_seconds": poller.interval_seconds,
            "last_update": poller.last_update.isoformat() if poller.last_update else None,
            "last_error": poller.last_error,
            "ticks": poller.ticks,
            "in_progress": poller.busy,
            "subscribed_disasters": sorted(services.manager.subscribed_disasters()),
            "sources": {
                "bluesky": services.social.configured,
                "weather": True,
                "fema": True,
                "redcross": True,
                "reports": services.store.mode,
            },
        },
    }


@router.post("/poll")
async def force_poll(background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    """Run one poll now, unless one is already in flight."""
    if services.poller.busy:
        return {"success": True, "data": {"started": False}, "message": "A poll is already in progress"}

    background_tasks.add_task(services.poller.tick)
    return {"success": True, "data": {"started": True}, "message": "Poll started"}
