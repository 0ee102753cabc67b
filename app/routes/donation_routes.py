from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_current_actor, get_db
from app.schemas.base_schema import BloodType
from app.schemas.donation_schema import (
    DonationCreate,
    DonationRejection,
    DonationResponse,
    DonationStatus,
    ScreeningUpdate,
)
from app.services.donation_service import DonationService
from app.utils.exceptions import HANDLED_ERRORS
from app.utils.logging_config import get_logger
from app.utils.pagination import PaginatedResponse, PaginationParams, get_pagination_params

logger = get_logger(__name__)

router = APIRouter(prefix="/donations", tags=["donations"])


@router.post("/", response_model=DonationResponse, status_code=status.HTTP_201_CREATED)
async def register_donation(
    donation_data: DonationCreate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        donation = await DonationService(db).create_donation(donation_data)
        return DonationResponse.model_validate(donation)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to register donation: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register donation",
        )


@router.get("/", response_model=PaginatedResponse[DonationResponse])
async def list_donations(
    donation_status: Optional[DonationStatus] = Query(None, alias="status"),
    blood_type: Optional[BloodType] = Query(None),
    donor_id: Optional[UUID] = Query(None),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await DonationService(db).list_donations(
            pagination,
            status=donation_status,
            blood_type=blood_type.value if blood_type else None,
            donor_id=donor_id,
        )

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to list donations: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list donations",
        )


@router.get("/{donation_id}", response_model=DonationResponse)
async def get_donation(donation_id: UUID, db: AsyncSession = Depends(get_db)):
    try:
        donation = await DonationService(db).get_donation(donation_id)
        return DonationResponse.model_validate(donation)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to load donation {donation_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load donation",
        )


@router.patch("/{donation_id}/screening", response_model=DonationResponse)
async def record_screening(
    donation_id: UUID,
    screening: ScreeningUpdate,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    """Record hemoglobin and test results. A clear screen approves the donation."""
    try:
        donation = await DonationService(db).record_screening(donation_id, screening, actor_id)
        return DonationResponse.model_validate(donation)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to record screening for {donation_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record screening",
        )


@router.post("/{donation_id}/approve", response_model=DonationResponse)
async def approve_donation(
    donation_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        donation = await DonationService(db).approve_donation(donation_id, actor_id)
        return DonationResponse.model_validate(donation)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to approve donation {donation_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to approve donation",
        )


@router.post("/{donation_id}/reject", response_model=DonationResponse)
async def reject_donation(
    donation_id: UUID,
    rejection: DonationRejection,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        donation = await DonationService(db).reject_donation(
            donation_id, actor_id, rejection.reason
        )
        return DonationResponse.model_validate(donation)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to reject donation {donation_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject donation",
        )


@router.delete("/{donation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_donation(
    donation_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor_id: UUID = Depends(get_current_actor),
):
    try:
        await DonationService(db).delete_donation(donation_id, actor_id)

    except HANDLED_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to delete donation {donation_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete donation",
        )
