import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import schemas
from ..dependencies import Services, get_services, get_user_id
from ..pubsub import REPORT_CREATED, REPORT_DELETED, REPORT_VERIFIED
from .disasters import with_mode

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


async def verify_report_image(services: Services, image_url: str, content: str) -> Optional[str]:
    """verified/rejected from the image check, or None when no check could run."""
    if not services.ai.enabled:
        return None
    verdict = await services.ai.verify_image(image_url, content)
    status = "verified" if verdict.is_authentic else "rejected"
    logger.info("Image verification for %s: %s (confidence %s)", image_url, status, verdict.confidence)
    return status


@router.post("", status_code=201, response_model=schemas.ApiResponse[schemas.Report], response_model_exclude_none=True)
async def create_report(
    body: schemas.ReportCreate,
    services: Services = Depends(get_services),
    user_id: str = Depends(get_user_id),
):
    status = "pending"
    if body.image_url:
        status = await verify_report_image(services, body.image_url, body.content) or "pending"

    result = await services.store.call(
        "create_report",
        disaster_id=body.disaster_id,
        user_id=user_id,
        content=body.content,
        image_url=body.image_url,
        verification_status=status,
    )
    report = result.value
    logger.info("Report created: %s for %s", report.id, report.disaster_id)

    services.bus.publish_to_disaster(REPORT_CREATED, report.model_dump(mode="json"), report.disaster_id)
    return schemas.ApiResponse[schemas.Report](
        data=report,
        message=with_mode("Report created successfully", result.mock),
    )


@router.get("", response_model=schemas.PaginatedResponse[schemas.Report], response_model_exclude_none=True)
async def list_reports(
    disaster_id: Optional[str] = None,
    user_id: Optional[str] = None,
    verification_status: Optional[schemas.VerificationStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    result = await services.store.call(
        "list_reports", page, limit,
        disaster_id=disaster_id, user_id=user_id, verification_status=verification_status,
    )
    reports, total = result.value
    return schemas.PaginatedResponse[schemas.Report](
        data=reports,
        pagination=schemas.paginate(page, limit, total),
        message="Reports retrieved (mock mode)" if result.mock else None,
    )


@router.get("/{report_id}", response_model=schemas.ApiResponse[schemas.Report], response_model_exclude_none=True)
async def get_report(report_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("get_report", report_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return schemas.ApiResponse[schemas.Report](data=result.value)


@router.put("/{report_id}/verify", response_model=schemas.ApiResponse[schemas.Report],
            response_model_exclude_none=True)
async def verify_report(
    report_id: str,
    body: schemas.ReportVerify,
    services: Services = Depends(get_services),
    user_id: str = Depends(get_user_id),
):
    existing = await services.store.call("get_report", report_id)
    if existing.value is None:
        raise HTTPException(status_code=404, detail="Report not found")

    status = body.verification_status
    if status == "pending" and body.image_url:
        try:
            status = await verify_report_image(services, body.image_url, existing.value.content) or "pending"
        except Exception as exc:
            logger.warning("Image verification failed for report %s: %s", report_id, exc)
            status = "rejected"

    result = await services.store.call("set_report_status", report_id, status)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Report not found")
    logger.info("Report %s marked %s by %s", report_id, status, user_id)

    services.bus.publish_to_disaster(REPORT_VERIFIED, result.value.model_dump(mode="json"), result.value.disaster_id)
    return schemas.ApiResponse[schemas.Report](
        data=result.value,
        message=with_mode("Report verification updated successfully", result.mock),
    )


@router.delete("/{report_id}", response_model=schemas.ApiResponse, response_model_exclude_none=True)
async def delete_report(report_id: str, services: Services = Depends(get_services)):
    result = await services.store.call("delete_report", report_id)
    if result.value is None:
        raise HTTPException(status_code=404, detail="Report not found")

    services.bus.publish_to_disaster(REPORT_DELETED, {"id": report_id}, result.value.disaster_id)
    return schemas.ApiResponse(message=with_mode("Report deleted successfully", result.mock))
