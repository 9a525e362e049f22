from fastapi import APIRouter

from . import disasters, integrations, realtime, reports, resources, social_media, system, ws

router = APIRouter()

router.include_router(system.router)
router.include_router(disasters.router)
router.include_router(reports.router)
router.include_router(resources.router)
router.include_router(social_media.router)
router.include_router(integrations.router)
router.include_router(realtime.router)
router.include_router(ws.router)
