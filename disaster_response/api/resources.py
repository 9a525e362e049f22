import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..dependencies import Services, get_services
from ..pubsub import RESOURCE_DELETED, RESOURCES_UPDATED
from .disasters import with_mode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/resources", tags=["resources"])

NEARBY_LIMIT = 50


async def geocode_point(services: Services, location_name: str) -> Optional[schemas.Point]:
    geocoded = await services.geocoder.geocode(location_name)
    if geocoded is None:
        return None
    return schemas.Point(lat=geocoded.lat, lng=geocoded.lng)


@router.post("", status_code=201, response_model=schemas.ApiResponse[schemas.Resource],
             response_model_exclude_none=True)
async def create_resource(body: schemas.ResourceCreate, services: Services = Depends(get_services)):
    location = await geocode_point(services, body.location_name)

    result = await services.store.call(
        "create_resource",
        disaster_id=body.disaster_id,
        name=body.name,
        location_name=body.location_name,
        location=location,
        type=body.type,
        capacity=body.capacity,
    )
    resource = result.value
    logger.info("Resource created: %s (%s)", resource.id, resource.type)

    services.bus.publish_to_disaster(RESOURCES_UPDATED, [resource.model_dump(mode="json")], resource.disaster_id)
    return schemas.ApiResponse[schemas.Resource](
        data=resource,
        message=with_mode("Resource created successfully", result.mock),
    )


@router.get("", response_model=schemas.PaginatedResponse[schemas.Resource], response_model_exclude_none=True)
async def list_resources(
    disaster_id: Optional[str] = None,
    type: Optional[schemas.ResourceType] = None,
    available: Optional[bool] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = Query(10000, gt=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    result = await services.store.call(
        "list_resources", page, limit,
        disaster_id=disaster_id, type=type, available=available, lat=lat, lng=lng, radius=radius,
    )
    resources, total = result.value
    return schemas.PaginatedResponse[schemas.Resource](
        data=resources,
        pagination=schemas.paginate(page, limit, total),
        message="Resources retrieved (mock mode)" if result.mock else None,
    )


@router.get("/nearby", response_model=schemas.ApiResponse[List[schemas.Resource]],
            response_model_exclude_none=True)
async def nearby_resources(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = Query(10000, gt=0),
    type: Optional[schemas.ResourceType] = None,
    disaster_id: Optional[str] = None,
    services: Services = Depends(get_services),
):
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="Latitude and longitude are required")

    result = await services.store.call(
        "nearby_resources", lat, lng, radius, type=type, disaster_id=disaster_id, limit=NEARBY_LIMIT,
    )
    return schemas.ApiResponse[List[schemas.Resource]](data=result.value, count=len(result.value))


@router.get("/{resource_id}", response_model=schemas.ApiResponse[schemas.Resource], response_model_exclude_none=True)
async def get_resource(resource_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("get_resource", resource_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return schemas.ApiResponse[schemas.Resource](data=result.value)


@router.put("/{resource_id}", response_model=schemas.ApiResponse[schemas.Resource], response_model_exclude_none=True)
async def update_resource(
    resource_id: str,
    body: schemas.ResourceUpdate,
    services: Services = Depends(get_services),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "location_name" in changes:
        changes["location"] = await geocode_point(services, changes["location_name"])

    result = await services.store.call("update_resource", resource_id, changes)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    resource = result.value
    services.bus.publish_to_disaster(RESOURCES_UPDATED, [resource.model_dump(mode="json")], resource.disaster_id)
    return schemas.ApiResponse[schemas.Resource](
        data=resource,
        message=with_mode("Resource updated successfully", result.mock),
    )


@router.delete("/{resource_id}", response_model=schemas.ApiResponse, response_model_exclude_none=True)
async def delete_resource(resource_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("delete_resource", resource_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    services.bus.publish_to_disaster(RESOURCE_DELETED, {"id": resource_id}, result.value.disaster_id)
    return schemas.ApiResponse(message=with_mode("Resource deleted successfully", result.mock))
