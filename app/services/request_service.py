from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.donation_model import Donation
from app.models.request_model import BloodRequest, FulfillmentEntry
from app.schemas.donation_schema import DonationStatus
from app.schemas.request_schema import (
    BloodRequestCreate,
    BloodRequestResponse,
    BloodRequestUpdate,
    RequestStatus,
    Urgency,
)
from app.schemas.stock_schema import ReferenceKind
from app.services.stock_service import StockLedgerService
from app.utils.blood_rules import validate_blood_type, validate_quantity
from app.utils.clock import utcnow
from app.utils.exceptions import (
    InvalidReference,
    InvalidState,
    LedgerError,
    NotFound,
    OverAllocation,
)
from app.utils.logging_config import get_logger, log_audit_event
from app.utils.pagination import PaginatedResponse, PaginationParams

logger = get_logger(__name__)

OPEN_STATUSES = (
    RequestStatus.PENDING,
    RequestStatus.APPROVED,
    RequestStatus.PARTIALLY_FULFILLED,
)


class BloodRequestService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_request(
        self, data: BloodRequestCreate, requester_id: UUID
    ) -> BloodRequest:
        now = utcnow()
        if data.required_by <= now:
            raise ValueError("required_by must be in the future")

        blood_type = validate_blood_type(data.blood_type)
        await self._refresh_open_requests(now)
        existing = await self.db.execute(
            select(BloodRequest.id).where(
                and_(
                    BloodRequest.requester_id == requester_id,
                    BloodRequest.blood_type == blood_type,
                    BloodRequest.status.in_(OPEN_STATUSES),
                )
            )
        )
        if existing.first() is not None:
            raise InvalidState(f"An active {blood_type} request already exists for this requester")

        blood_request = BloodRequest(
            **data.model_dump(),
            requester_id=requester_id,
            status=RequestStatus.PENDING,
            units_provided=0,
            fulfillment_entries=[],
        )
        blood_request.refresh_derived_state(now)

        self.db.add(blood_request)
        await self.db.commit()

        log_audit_event(
            action="create",
            resource_type="blood_request",
            resource_id=str(blood_request.id),
            new_values={
                "blood_type": blood_request.blood_type,
                "quantity": blood_request.quantity,
                "urgency": blood_request.urgency.value,
                "priority": blood_request.priority,
            },
            user_id=str(requester_id),
        )
        return blood_request

    async def get_request(self, request_id: UUID) -> BloodRequest:
        """Load a request with its status and priority brought up to date."""
        blood_request = await self._fetch(request_id)
        await self._sync_derived_state(blood_request, utcnow())
        return blood_request

    async def list_requests(
        self,
        pagination: PaginationParams,
        status: Optional[RequestStatus] = None,
        blood_type: Optional[str] = None,
        urgency: Optional[Urgency] = None,
    ) -> PaginatedResponse[BloodRequestResponse]:
        """Queue order: highest priority first, oldest first within a priority."""
        await self._refresh_open_requests(utcnow())

        conditions = []
        if status is not None:
            conditions.append(BloodRequest.status == status)
        if blood_type is not None:
            conditions.append(BloodRequest.blood_type == validate_blood_type(blood_type))
        if urgency is not None:
            conditions.append(BloodRequest.urgency == urgency)

        count_query = select(func.count(BloodRequest.id))
        query = select(BloodRequest)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total_items = (await self.db.execute(count_query)).scalar() or 0

        result = await self.db.execute(
            query.order_by(BloodRequest.priority.desc(), BloodRequest.created_at.asc())
            .offset(pagination.offset)
            .limit(pagination.page_size)
        )
        items = [
            BloodRequestResponse.model_validate(blood_request)
            for blood_request in result.scalars().all()
        ]
        return PaginatedResponse[BloodRequestResponse].build(items, total_items, pagination)

    async def update_request(
        self, request_id: UUID, data: BloodRequestUpdate
    ) -> BloodRequest:
        now = utcnow()
        blood_request = await self._load_open_request(request_id, now)

        changes = data.model_dump(exclude_unset=True)
        if changes.get("required_by") is not None and changes["required_by"] <= now:
            raise ValueError("required_by must be in the future")

        old_values = {field: getattr(blood_request, field) for field in changes}
        for field, value in changes.items():
            if value is not None or field in ("notes", "admin_notes"):
                setattr(blood_request, field, value)

        blood_request.refresh_derived_state(now)
        await self.db.commit()

        log_audit_event(
            action="update",
            resource_type="blood_request",
            resource_id=str(blood_request.id),
            old_values={k: str(v) for k, v in old_values.items()},
            new_values={k: str(v) for k, v in changes.items()},
        )
        return blood_request

    async def approve_request(self, request_id: UUID, actor_id: UUID) -> BloodRequest:
        now = utcnow()
        blood_request = await self._load_open_request(request_id, now)
        if blood_request.status != RequestStatus.PENDING:
            raise InvalidState(
                f"Only pending requests can be approved (status: {blood_request.status.value})"
            )

        blood_request.status = RequestStatus.APPROVED
        blood_request.approved_by_id = actor_id
        blood_request.approved_at = now
        blood_request.refresh_derived_state(now)
        await self.db.commit()

        self._audit_transition(blood_request, RequestStatus.PENDING, actor_id)
        return blood_request

    async def reject_request(
        self, request_id: UUID, actor_id: UUID, reason: str
    ) -> BloodRequest:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")

        now = utcnow()
        blood_request = await self._load_open_request(request_id, now)
        previous = blood_request.status

        blood_request.status = RequestStatus.REJECTED
        blood_request.rejected_by_id = actor_id
        blood_request.rejection_reason = reason.strip()
        blood_request.refresh_derived_state(now)
        await self.db.commit()

        self._audit_transition(blood_request, previous, actor_id)
        return blood_request

    async def delete_request(self, request_id: UUID, actor_id: UUID) -> None:
        """Remove a request that has not been reviewed yet."""
        blood_request = await self._load_open_request(request_id, utcnow())
        if blood_request.status != RequestStatus.PENDING:
            raise InvalidState(
                f"Only pending requests can be deleted (status: {blood_request.status.value})"
            )

        await self.db.delete(blood_request)
        await self.db.commit()

        log_audit_event(
            action="delete",
            resource_type="blood_request",
            resource_id=str(request_id),
            old_values={"status": RequestStatus.PENDING.value},
            user_id=str(actor_id),
        )

    async def fulfill(
        self,
        request_id: UUID,
        donation_ids: List[UUID],
        units: List[int],
        actor_id: Optional[UUID] = None,
    ) -> BloodRequest:
        """
        Allocate units from approved donations to a request.

        The ledger debit, the fulfillment entries and the request's derived
        state are written in one transaction. Any failure (unknown or
        mismatched donations, over-allocation, insufficient stock) rolls the
        whole operation back.
        """
        if not donation_ids or len(donation_ids) != len(units):
            raise InvalidReference("donation_ids and units must be non-empty and the same length")
        if len(set(donation_ids)) != len(donation_ids):
            raise InvalidReference("Each donation may appear only once per fulfillment")
        for unit in units:
            validate_quantity(unit, "units")

        now = utcnow()
        blood_request = await self._load_open_request(request_id, now)
        previous = blood_request.status

        try:
            if blood_request.status not in RequestStatus.fulfillable():
                raise InvalidState(
                    f"Request must be approved before fulfillment (status: {blood_request.status.value})"
                )

            await self._check_donations(blood_request, donation_ids, now)

            requested_units = sum(units)
            if requested_units > blood_request.remaining_quantity:
                raise OverAllocation(
                    blood_request.quantity, blood_request.units_provided, requested_units
                )

            await StockLedgerService(self.db).debit(
                blood_request.blood_type,
                requested_units,
                reference_id=blood_request.id,
                reference_kind=ReferenceKind.BLOOD_REQUEST,
                actor_id=actor_id,
                note=f"Fulfillment of request {blood_request.id}",
                commit=False,
            )

            for donation_id, unit in zip(donation_ids, units):
                blood_request.fulfillment_entries.append(
                    FulfillmentEntry(donation_id=donation_id, units=unit, provided_at=now)
                )
            blood_request.units_provided += requested_units
            blood_request.refresh_derived_state(now)

            await self.db.flush()
            await self.db.commit()
        except LedgerError as e:
            await self.db.rollback()
            logger.warning(
                f"Fulfillment of request {request_id} aborted: {e.message}",
                extra={"extra_fields": {"request_id": str(request_id), "error": type(e).__name__}},
            )
            raise

        logger.info(
            f"Request {blood_request.id} fulfilled with {sum(units)} units",
            extra={
                "extra_fields": {
                    "request_id": str(blood_request.id),
                    "units_provided": blood_request.units_provided,
                    "status": blood_request.status.value,
                }
            },
        )
        self._audit_transition(blood_request, previous, actor_id)
        return blood_request

    async def expire_overdue(self, now: Optional[datetime] = None) -> List[UUID]:
        """Move every open request past its deadline to expired."""
        now = now or utcnow()
        result = await self.db.execute(
            select(BloodRequest)
            .where(
                and_(
                    BloodRequest.status.in_(OPEN_STATUSES),
                    BloodRequest.required_by < now,
                )
            )
            .with_for_update()
        )

        expired_ids = []
        for blood_request in result.scalars().all():
            blood_request.refresh_derived_state(now)
            if blood_request.status == RequestStatus.EXPIRED:
                expired_ids.append(blood_request.id)

        await self.db.commit()

        if expired_ids:
            logger.info(
                f"Expired {len(expired_ids)} overdue blood requests",
                extra={"extra_fields": {"expired_count": len(expired_ids)}},
            )
        return expired_ids

    # --- Internals ---

    async def _fetch(self, request_id: UUID, for_update: bool = False) -> BloodRequest:
        query = (
            select(BloodRequest)
            .where(BloodRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        blood_request = result.scalar_one_or_none()
        if blood_request is None:
            raise NotFound("Blood request not found")
        return blood_request

    async def _sync_derived_state(self, blood_request: BloodRequest, now: datetime) -> None:
        """Persist status and priority drift caused by the passage of time."""
        previous_status = blood_request.status
        previous_priority = blood_request.priority
        blood_request.refresh_derived_state(now)

        if (
            blood_request.status == previous_status
            and blood_request.priority == previous_priority
        ):
            return

        await self.db.commit()
        if blood_request.status != previous_status:
            self._audit_transition(blood_request, previous_status, None)

    async def _refresh_open_requests(self, now: datetime) -> None:
        """Bring every open request's priority and status up to date before queue reads."""
        result = await self.db.execute(
            select(BloodRequest)
            .where(BloodRequest.status.in_(OPEN_STATUSES))
            .with_for_update()
        )

        transitions = []
        changed = False
        for blood_request in result.scalars().all():
            previous_status = blood_request.status
            previous_priority = blood_request.priority
            blood_request.refresh_derived_state(now)
            if blood_request.status != previous_status:
                transitions.append((blood_request, previous_status))
                changed = True
            elif blood_request.priority != previous_priority:
                changed = True

        if not changed:
            return

        await self.db.commit()
        for blood_request, previous_status in transitions:
            self._audit_transition(blood_request, previous_status, None)

    async def _load_open_request(self, request_id: UUID, now: datetime) -> BloodRequest:
        """
        Lock the request and bring its derived state up to date.

        A request found past its deadline is persisted as expired before
        InvalidState is raised, so the expiry sticks even though the
        requested operation is refused.
        """
        blood_request = await self._fetch(request_id, for_update=True)
        previous = blood_request.status
        blood_request.refresh_derived_state(now)

        if blood_request.status == RequestStatus.EXPIRED and previous != RequestStatus.EXPIRED:
            await self.db.commit()
            self._audit_transition(blood_request, previous, None)

        if blood_request.is_terminal:
            raise InvalidState(
                f"Request is already {blood_request.status.value}"
            )
        return blood_request

    async def _check_donations(
        self, blood_request: BloodRequest, donation_ids: List[UUID], now: datetime
    ) -> None:
        result = await self.db.execute(select(Donation).where(Donation.id.in_(donation_ids)))
        donations = {donation.id: donation for donation in result.scalars().all()}

        for donation_id in donation_ids:
            donation = donations.get(donation_id)
            if donation is None:
                raise InvalidReference(f"Donation {donation_id} not found")
            if donation.blood_type != blood_request.blood_type:
                raise InvalidReference(
                    f"Donation {donation_id} is {donation.blood_type}, "
                    f"request needs {blood_request.blood_type}"
                )
            if donation.status != DonationStatus.APPROVED or donation.is_expired(now):
                raise InvalidReference(f"Donation {donation_id} is not available for use")

    def _audit_transition(
        self,
        blood_request: BloodRequest,
        previous: RequestStatus,
        actor_id: Optional[UUID],
    ) -> None:
        log_audit_event(
            action="status_change",
            resource_type="blood_request",
            resource_id=str(blood_request.id),
            old_values={"status": RequestStatus(previous).value},
            new_values={
                "status": blood_request.status.value,
                "units_provided": blood_request.units_provided,
                "priority": blood_request.priority,
            },
            user_id=str(actor_id) if actor_id else None,
        )
