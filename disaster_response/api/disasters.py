import logging
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..dependencies import Services, get_services, get_user_id
from ..pubsub import DISASTER_UPDATED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/disasters", tags=["disasters"])

UNKNOWN_LOCATION = "Unknown Location"


def with_mode(message: str, mock: bool) -> str:
    return f"{message} (mock mode)" if mock else message


async def resolve_location(services: Services, description: str,
                           location_name: Optional[str]) -> Tuple[str, Optional[schemas.Point]]:
    """Name and coordinates for a disaster, from the given name or the description."""
    if not location_name:
        extracted = await services.ai.extract_location(description)
        if extracted is None:
            return UNKNOWN_LOCATION, None
        location_name = extracted.location_name

    geocoded = await services.geocoder.geocode(location_name)
    if geocoded is None:
        return location_name, None
    return location_name, schemas.Point(lat=geocoded.lat, lng=geocoded.lng)


@router.post("", status_code=201, response_model=schemas.ApiResponse[schemas.Disaster],
             response_model_exclude_none=True)
async def create_disaster(
    body: schemas.DisasterCreate,
    services: Services = Depends(get_services),
    user_id: str = Depends(get_user_id),
):
    location_name, location = await resolve_location(services, body.description, body.location_name)

    result = await services.store.call(
        "create_disaster",
        title=body.title,
        description=body.description,
        location_name=location_name,
        location=location,
        tags=body.tags,
        owner_id=user_id,
        audit_entry=schemas.AuditEntry(action="create", user_id=user_id),
    )
    disaster = result.value
    logger.info("Disaster created: %s (%s)", disaster.id, disaster.title)

    services.bus.publish(DISASTER_UPDATED, disaster.model_dump(mode="json"))
    return schemas.ApiResponse[schemas.Disaster](
        data=disaster,
        message=with_mode("Disaster created successfully", result.mock),
    )


@router.get("", response_model=schemas.PaginatedResponse[schemas.Disaster], response_model_exclude_none=True)
async def list_disasters(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    tag: Optional[str] = None,
    search: Optional[str] = None,
    owner_id: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = Query(10000, gt=0),
    services: Services = Depends(get_services),
):
    result = await services.store.call(
        "list_disasters", page, limit,
        tag=tag, search=search, owner_id=owner_id, lat=lat, lng=lng, radius=radius,
    )
    disasters, total = result.value
    return schemas.PaginatedResponse[schemas.Disaster](
        data=disasters,
        pagination=schemas.paginate(page, limit, total),
        message="Disasters retrieved (mock mode)" if result.mock else None,
    )


@router.get("/{disaster_id}", response_model=schemas.ApiResponse[schemas.Disaster], response_model_exclude_none=True)
async def get_disaster(disaster_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("get_disaster", disaster_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Disaster not found")
    return schemas.ApiResponse[schemas.Disaster](data=result.value)


@router.put("/{disaster_id}", response_model=schemas.ApiResponse[schemas.Disaster], response_model_exclude_none=True)
async def update_disaster(
    disaster_id: str,
    body: schemas.DisasterUpdate,
    services: Services = Depends(get_services),
    user_id: str = Depends(get_user_id),
):
    existing = await services.store.call("get_disaster", disaster_id)
    if existing.value is None:
        raise HTTPException(status_code=404, detail="Disaster not found")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "location_name" in changes or "description" in changes:
        description = changes.get("description", existing.value.description)
        location_name, location = await resolve_location(services, description, changes.get("location_name"))
        changes["location_name"] = location_name
        changes["location"] = location

    audit = schemas.AuditEntry(
        action="update",
        user_id=user_id,
        details=body.model_dump(exclude_unset=True),
    )
    result = await services.store.call("update_disaster", disaster_id, changes, audit)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Disaster not found")

    services.bus.publish(DISASTER_UPDATED, result.value.model_dump(mode="json"))
    return schemas.ApiResponse[schemas.Disaster](
        data=result.value,
        message=with_mode("Disaster updated successfully", result.mock),
    )


@router.delete("/{disaster_id}", response_model=schemas.ApiResponse, response_model_exclude_none=True)
async def delete_disaster(disaster_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("delete_disaster", disaster_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Disaster not found")

    services.bus.publish(DISASTER_UPDATED, {"id": disaster_id, "action": "deleted"})
    return schemas.ApiResponse(message=with_mode("Disaster deleted successfully", result.mock))


@router.get("/{disaster_id}/statistics", response_model=schemas.ApiResponse[schemas.DisasterStatistics],
            response_model_exclude_none=True)
async def disaster_statistics(disaster_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("disaster_statistics", disaster_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Disaster not found")
    return schemas.ApiResponse[schemas.DisasterStatistics](data=result.value)
