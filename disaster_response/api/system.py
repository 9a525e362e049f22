from fastapi import APIRouter, Depends

from .. import schemas
from ..dependencies import Services, get_services
from ..schemas import utcnow

router = APIRouter()

SERVICE_NAME = "Disaster Response Coordination Platform"
VERSION = "1.0.0"


@router.get("/health")
async def health(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "status": "OK",
        "timestamp": utcnow().isoformat(),
        "service": SERVICE_NAME,
        "version": VERSION,
        "environment": settings.environment,
        "features": {
            "data_backend": services.store.mode,
            "gemini": services.ai.enabled,
            "bluesky": services.social.configured,
            "realtime_polling": settings.realtime_polling_enabled,
        },
    }


@router.get("/api/cache/stats", response_model=schemas.ApiResponse[schemas.CacheStats], response_model_exclude_none=True)
async def cache_stats(services: Services = Depends(get_services)):
    stats = await services.cache.stats()
    return schemas.ApiResponse[schemas.CacheStats](data=schemas.CacheStats(**stats))
