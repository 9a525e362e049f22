"""Geocoding, AI verification and mock login endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/geocode", response_model=schemas.ApiResponse[schemas.GeocodingResult],
             response_model_exclude_none=True, tags=["geocoding"])
async def geocode(body: schemas.GeocodeRequest, services: Services = Depends(get_services)):
    result = await services.geocoder.geocode(body.location_name)
    if result is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return schemas.ApiResponse[schemas.GeocodingResult](data=result)


@router.get("/geocode/reverse", response_model=schemas.ApiResponse[str],
            response_model_exclude_none=True, tags=["geocoding"])
async def reverse_geocode(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    services: Services = Depends(get_services),
):
    name = await services.geocoder.reverse_geocode(lat, lng)
    if name is None:
        raise HTTPException(status_code=404, detail="Location not found")
    return schemas.ApiResponse[str](data=name)


@router.post("/verify/image", response_model=schemas.ApiResponse[schemas.ImageVerificationResult],
             response_model_exclude_none=True, tags=["verification"])
async def verify_image(body: schemas.ImageVerificationRequest, services: Services = Depends(get_services)):
    result = await services.ai.verify_image(body.image_url, body.disaster_context)
    return schemas.ApiResponse[schemas.ImageVerificationResult](data=result)


@router.post("/verify/priority", response_model=schemas.ApiResponse[schemas.PriorityResult],
             response_model_exclude_none=True, tags=["verification"])
async def classify_priority(body: schemas.PriorityRequest, services: Services = Depends(get_services)):
    priority = await services.ai.classify_priority(body.content)
    return schemas.ApiResponse[schemas.PriorityResult](data=schemas.PriorityResult(priority=priority))


@router.post("/auth/login", response_model=schemas.ApiResponse[schemas.LoginResult],
             response_model_exclude_none=True, tags=["auth"])
async def login(body: schemas.LoginRequest):
    # Any credentials are accepted; there is no user store
    user = schemas.User(id="user-123", username=body.username, role="contributor")
    logger.info("Mock login for %s", body.username)
    return schemas.ApiResponse[schemas.LoginResult](
        data=schemas.LoginResult(token=f"mock-jwt-token-for-{body.username}", user=user),
        message="Login successful.",
    )
