import time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_current_actor, get_db
from app.schemas.base_schema import BloodType
from app.schemas.request_schema import (
    BloodRequestCreate,
    BloodRequestRejection,
    BloodRequestResponse,
    BloodRequestUpdate,
    ExpirySweepResult,
    FulfillmentCreate,
    FulfillmentResult,
    RequestStatus,
    Urgency,
)
from app.services.request_service import BloodRequestService
from app.utils.exceptions import HANDLED_ERRORS
from app.utils.logging_config import get_logger, log_performance_metric
from app.utils.pagination import PaginatedResponse, PaginationParams, get_pagination_params

logger = get_logger(__name__)

router = APIRouter(prefix="/requests", tags=["blood requests"])


@router.post("/", response_model=BloodRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_blood_request(
    request_data: BloodRequestCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    logger.info(
        "Blood request creation started",
        extra={
            "extra_fields": {
                "event_type": "blood_request_creation_attempt",
                "blood_type": request_data.blood_type.value,
                "quantity": request_data.quantity,
                "urgency": request_data.urgency.value,
            }
        },
    )

    try:
        blood_request = await BloodRequestService(db).create_request(request_data, actor_id)
        return BloodRequestResponse.model_validate(blood_request)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(
            "Blood request creation failed due to unexpected error",
            extra={"extra_fields": {"event_type": "blood_request_creation_error", "error": str(e)}},
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Blood request creation failed",
        )


@router.get("/", response_model=PaginatedResponse[BloodRequestResponse])
async def list_blood_requests(
    request_status: Optional[RequestStatus] = Query(None, alias="status"),
    blood_type: Optional[BloodType] = Query(None),
    urgency: Optional[Urgency] = Query(None),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
):
    """The fulfillment queue, most pressing requests first."""
    try:
        return await BloodRequestService(db).list_requests(
            pagination,
            status=request_status,
            blood_type=blood_type.value if blood_type else None,
            urgency=urgency,
        )

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to list blood requests: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list blood requests",
        )


@router.post("/expire-overdue", response_model=ExpirySweepResult)
async def expire_overdue_requests(
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    start_time = time.time()
    try:
        expired_ids = await BloodRequestService(db).expire_overdue()

        duration = time.time() - start_time
        if duration > 2.0:
            log_performance_metric(
                operation="expire_overdue_requests",
                duration_seconds=duration,
                additional_metrics={"expired_count": len(expired_ids)},
            )
        return ExpirySweepResult(expired_count=len(expired_ids), expired_ids=expired_ids)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Overdue request sweep failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to expire overdue requests",
        )


@router.get("/{request_id}", response_model=BloodRequestResponse)
async def get_blood_request(request_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        blood_request = await BloodRequestService(db).get_request(request_id)
        return BloodRequestResponse.model_validate(blood_request)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load blood request",
        )


@router.patch("/{request_id}", response_model=BloodRequestResponse)
async def update_blood_request(
    request_id: UUID,
    update_data: BloodRequestUpdate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        blood_request = await BloodRequestService(db).update_request(request_id, update_data)
        return BloodRequestResponse.model_validate(blood_request)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to update blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update blood request",
        )


@router.post("/{request_id}/approve", response_model=BloodRequestResponse)
async def approve_blood_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        blood_request = await BloodRequestService(db).approve_request(request_id, actor_id)
        return BloodRequestResponse.model_validate(blood_request)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to approve blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to approve blood request",
        )


@router.post("/{request_id}/reject", response_model=BloodRequestResponse)
async def reject_blood_request(
    request_id: UUID,
    rejection: BloodRequestRejection,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        blood_request = await BloodRequestService(db).reject_request(
            request_id, actor_id, rejection.reason
        )
        return BloodRequestResponse.model_validate(blood_request)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to reject blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject blood request",
        )


@router.post("/{request_id}/fulfill", response_model=FulfillmentResult)
async def fulfill_blood_request(
    request_id: UUID,
    fulfillment: FulfillmentCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    """Allocate units from approved donations and debit the ledger."""
    start_time = time.time()
    try:
        blood_request = await BloodRequestService(db).fulfill(
            request_id, fulfillment.donation_ids, fulfillment.units, actor_id=actor_id
        )

        duration = time.time() - start_time
        if duration > 2.0:
            log_performance_metric(
                operation="blood_request_fulfillment",
                duration_seconds=duration,
                additional_metrics={"donation_count": len(fulfillment.donation_ids)},
            )

        return FulfillmentResult(
            request=BloodRequestResponse.model_validate(blood_request),
            units_provided=blood_request.units_provided,
            fulfillment_percentage=blood_request.fulfillment_percentage,
        )

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to fulfill blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fulfill blood request",
        )


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_blood_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    """Delete a blood request that is still pending review"""
    logger.info(
        "Blood request deletion started",
        extra={
            "extra_fields": {
                "event_type": "blood_request_deletion_attempt",
                "request_id": str(request_id),
            }
        },
    )

    try:
        await BloodRequestService(db).delete_request(request_id, actor_id)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to delete blood request {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete blood request",
        )
