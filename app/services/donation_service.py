from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.config import settings
from app.models.donation_model import Donation
from app.schemas.donation_schema import (
    DonationCreate,
    DonationResponse,
    DonationStatus,
    ScreeningUpdate,
)
from app.schemas.stock_schema import ReferenceKind
from app.services.stock_service import StockLedgerService
from app.utils.blood_rules import derive_donation_status, validate_blood_type
from app.utils.clock import utcnow
from app.utils.exceptions import InvalidState, NotFound
from app.utils.logging_config import get_logger, log_audit_event
from app.utils.pagination import PaginatedResponse, PaginationParams

logger = get_logger(__name__)


class DonationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_donation(self, data: DonationCreate) -> Donation:
        pending = await self.db.execute(
            select(Donation.id).where(
                and_(
                    Donation.donor_id == data.donor_id,
                    Donation.status == DonationStatus.PENDING,
                )
            )
        )
        if pending.first() is not None:
            raise InvalidState("Donor already has a pending donation awaiting review")

        donation_date = data.donation_date or utcnow()
        donation = Donation(
            **data.model_dump(exclude={"donation_date"}),
            donation_date=donation_date,
            expiry_date=donation_date + timedelta(days=settings.DONATION_SHELF_LIFE_DAYS),
            status=DonationStatus.PENDING,
        )
        self.db.add(donation)
        await self.db.commit()

        log_audit_event(
            action="create",
            resource_type="donation",
            resource_id=str(donation.id),
            new_values={
                "donor_id": str(donation.donor_id),
                "blood_type": donation.blood_type,
                "quantity_ml": donation.quantity_ml,
            },
        )
        return donation

    async def get_donation(self, donation_id: UUID, for_update: bool = False) -> Donation:
        query = (
            select(Donation)
            .where(Donation.id == donation_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        donation = result.scalar_one_or_none()
        if donation is None:
            raise NotFound("Donation not found")
        return donation

    async def list_donations(
        self,
        pagination: PaginationParams,
        status: Optional[DonationStatus] = None,
        blood_type: Optional[str] = None,
        donor_id: Optional[UUID] = None,
    ) -> PaginatedResponse[DonationResponse]:
        conditions = []
        if status is not None:
            conditions.append(Donation.status == status)
        if blood_type is not None:
            conditions.append(Donation.blood_type == validate_blood_type(blood_type))
        if donor_id is not None:
            conditions.append(Donation.donor_id == donor_id)

        count_query = select(func.count(Donation.id))
        query = select(Donation)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total_items = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(Donation.donation_date.desc())
            .offset(pagination.offset)
            .limit(pagination.page_size)
        )
        items = [DonationResponse.model_validate(d) for d in result.scalars().all()]
        return PaginatedResponse[DonationResponse].build(items, total_items, pagination)

    async def record_screening(
        self, donation_id: UUID, data: ScreeningUpdate, actor_id: UUID
    ) -> Donation:
        """Store screening results; a clear screen approves the donation."""
        donation = await self.get_donation(donation_id, for_update=True)
        if donation.status != DonationStatus.PENDING:
            raise InvalidState(
                f"Screening can only be recorded for pending donations (status: {donation.status.value})"
            )

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(donation, field, value)

        now = utcnow()
        new_status = derive_donation_status(
            donation.status, donation.expiry_date, donation.hemoglobin, donation.is_test_clear, now
        )
        if new_status == DonationStatus.APPROVED:
            return await self._approve(donation, actor_id)

        if new_status == DonationStatus.EXPIRED:
            donation.status = DonationStatus.EXPIRED
            await self.db.commit()
            self._audit_transition(donation, DonationStatus.PENDING, actor_id)
            return donation

        await self.db.commit()
        return donation

    async def approve_donation(self, donation_id: UUID, actor_id: UUID) -> Donation:
        donation = await self.get_donation(donation_id, for_update=True)
        if donation.status != DonationStatus.PENDING:
            raise InvalidState(
                f"Only pending donations can be approved (status: {donation.status.value})"
            )
        if donation.is_expired(utcnow()):
            raise InvalidState("Donation is past its expiry date")
        return await self._approve(donation, actor_id)

    async def reject_donation(
        self, donation_id: UUID, actor_id: UUID, reason: str
    ) -> Donation:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")

        donation = await self.get_donation(donation_id, for_update=True)
        if donation.status != DonationStatus.PENDING:
            raise InvalidState(
                f"Only pending donations can be rejected (status: {donation.status.value})"
            )

        donation.status = DonationStatus.REJECTED
        donation.rejection_reason = reason.strip()
        await self.db.commit()

        self._audit_transition(donation, DonationStatus.PENDING, actor_id)
        return donation

    async def delete_donation(self, donation_id: UUID, actor_id: UUID) -> None:
        donation = await self.get_donation(donation_id, for_update=True)
        if donation.status != DonationStatus.PENDING:
            raise InvalidState(
                f"Only pending donations can be deleted (status: {donation.status.value})"
            )

        await self.db.delete(donation)
        await self.db.commit()

        log_audit_event(
            action="delete",
            resource_type="donation",
            resource_id=str(donation_id),
            old_values={"status": DonationStatus.PENDING.value},
            user_id=str(actor_id),
        )

    # --- Internals ---

    async def _approve(self, donation: Donation, actor_id: UUID) -> Donation:
        """
        Commit the approval, then credit one unit to the ledger.

        The approval stands even when the credit fails; the failure is logged
        for manual reconciliation.
        """
        previous = donation.status
        donation.status = DonationStatus.APPROVED
        donation.approved_by_id = actor_id
        donation.approved_at = utcnow()
        await self.db.commit()
        self._audit_transition(donation, previous, actor_id)

        try:
            await StockLedgerService(self.db).credit(
                donation.blood_type,
                1,
                reference_id=donation.id,
                reference_kind=ReferenceKind.DONATION,
                actor_id=actor_id,
                note=f"Approved donation {donation.id}",
            )
        except Exception as e:
            await self.db.rollback()
            await self.db.refresh(donation)
            logger.error(
                f"Stock credit failed for approved donation {donation.id}: {e}",
                extra={
                    "extra_fields": {
                        "donation_id": str(donation.id),
                        "blood_type": donation.blood_type,
                        "error_type": type(e).__name__,
                    }
                },
                exc_info=True,
            )
        return donation

    def _audit_transition(
        self, donation: Donation, previous: DonationStatus, actor_id: Optional[UUID]
    ) -> None:
        log_audit_event(
            action="status_change",
            resource_type="donation",
            resource_id=str(donation.id),
            old_values={"status": DonationStatus(previous).value},
            new_values={"status": donation.status.value},
            user_id=str(actor_id) if actor_id else None,
        )
