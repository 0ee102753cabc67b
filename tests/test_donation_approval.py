"""
Donation coordinator tests: registration, screening auto-approval, manual
approval crediting the ledger, rejection and credit failure handling.
"""

from uuid import uuid4

import pytest

from app.schemas.donation_schema import (
    DonationCreate,
    DonationStatus,
    ScreeningResult,
    ScreeningUpdate,
)
from app.schemas.stock_schema import MovementAction, ReferenceKind
from app.services.donation_service import DonationService
from app.services.stock_service import StockLedgerService
from app.utils.exceptions import InvalidState, NotFound
from app.utils.pagination import PaginationParams
from tests.conftest import TestDataFactory


@pytest.fixture
def donation_service(db_session) -> DonationService:
    return DonationService(db_session)


@pytest.fixture
def ledger_service(db_session) -> StockLedgerService:
    return StockLedgerService(db_session)


async def register(donation_service, blood_type="A+", days_ago=0):
    return await donation_service.create_donation(
        DonationCreate(**TestDataFactory.donation_data(blood_type, days_ago=days_ago))
    )


CLEAR_SCREEN = ScreeningUpdate(
    hemoglobin=14.2,
    hiv=ScreeningResult.NEGATIVE,
    hepatitis_b=ScreeningResult.NEGATIVE,
    hepatitis_c=ScreeningResult.NEGATIVE,
    syphilis=ScreeningResult.NEGATIVE,
)


class TestRegistration:
    async def test_new_donation_is_pending_with_shelf_life(self, donation_service):
        donation = await register(donation_service)

        assert donation.status == DonationStatus.PENDING
        assert donation.hiv == ScreeningResult.PENDING
        assert (donation.expiry_date - donation.donation_date).days == 35

    async def test_get_unknown_donation(self, donation_service):
        with pytest.raises(NotFound):
            await donation_service.get_donation(uuid4())

    async def test_list_filters_by_blood_type(self, donation_service):
        await register(donation_service, "A+")
        await register(donation_service, "B-")

        page = await donation_service.list_donations(
            PaginationParams(page=1, page_size=10), blood_type="B-"
        )

        assert page.total_items == 1
        assert page.items[0].blood_type == "B-"


class TestApproval:
    async def test_approval_credits_one_unit(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "A+")

        approved = await donation_service.approve_donation(donation.id, actor_id)

        assert approved.status == DonationStatus.APPROVED
        assert approved.approved_by_id == actor_id
        assert approved.approved_at is not None

        ledger = await ledger_service.get_ledger("A+")
        assert ledger.available_units == 1
        assert ledger.total_units == 1

        history = await ledger_service.get_history("A+", PaginationParams(page=1, page_size=5))
        credit = history.items[0]
        assert credit.action == MovementAction.CREDIT
        assert credit.reference_id == donation.id
        assert credit.reference_kind == ReferenceKind.DONATION

    async def test_second_approval_does_not_credit_again(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "O-")
        await donation_service.approve_donation(donation.id, actor_id)

        with pytest.raises(InvalidState):
            await donation_service.approve_donation(donation.id, actor_id)

        assert (await ledger_service.get_ledger("O-")).available_units == 1

    async def test_expired_donation_cannot_be_approved(self, donation_service, actor_id):
        donation = await register(donation_service, days_ago=40)

        with pytest.raises(InvalidState):
            await donation_service.approve_donation(donation.id, actor_id)

    async def test_clear_screening_auto_approves(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "B+")

        screened = await donation_service.record_screening(donation.id, CLEAR_SCREEN, actor_id)

        assert screened.status == DonationStatus.APPROVED
        assert screened.hemoglobin == 14.2
        assert (await ledger_service.get_ledger("B+")).available_units == 1

    async def test_clear_screen_on_expired_donation_does_not_credit(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "O+", days_ago=40)

        screened = await donation_service.record_screening(donation.id, CLEAR_SCREEN, actor_id)

        assert screened.status == DonationStatus.EXPIRED
        assert screened.approved_at is None
        assert await ledger_service.get_ledger("O+") is None

        with pytest.raises(InvalidState):
            await donation_service.approve_donation(donation.id, actor_id)

    async def test_positive_screen_stays_pending(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "B+")
        screening = CLEAR_SCREEN.model_copy(update={"hiv": ScreeningResult.POSITIVE})

        screened = await donation_service.record_screening(donation.id, screening, actor_id)

        assert screened.status == DonationStatus.PENDING
        assert screened.hiv == ScreeningResult.POSITIVE
        assert await ledger_service.get_ledger("B+") is None

    async def test_credit_failure_keeps_approval(
        self, donation_service, ledger_service, actor_id, monkeypatch
    ):
        async def failing_credit(self, *args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(StockLedgerService, "credit", failing_credit)
        donation = await register(donation_service, "AB-")
        donation_id = donation.id

        approved = await donation_service.approve_donation(donation_id, actor_id)

        assert approved.status == DonationStatus.APPROVED
        reloaded = await donation_service.get_donation(donation_id)
        assert reloaded.status == DonationStatus.APPROVED
        assert await ledger_service.get_ledger("AB-") is None


class TestRejection:
    async def test_reject_pending_donation(self, donation_service, actor_id):
        donation = await register(donation_service)

        rejected = await donation_service.reject_donation(
            donation.id, actor_id, "Low hemoglobin"
        )

        assert rejected.status == DonationStatus.REJECTED
        assert rejected.rejection_reason == "Low hemoglobin"

    async def test_reject_requires_reason(self, donation_service, actor_id):
        donation = await register(donation_service)

        with pytest.raises(ValueError):
            await donation_service.reject_donation(donation.id, actor_id, "")

    async def test_rejected_donation_cannot_be_approved(self, donation_service, actor_id):
        donation = await register(donation_service)
        await donation_service.reject_donation(donation.id, actor_id, "Haemolysed sample")

        with pytest.raises(InvalidState):
            await donation_service.approve_donation(donation.id, actor_id)


class TestDuplicatesAndDeletion:
    async def test_donor_with_pending_donation_is_refused(self, donation_service, actor_id):
        payload = TestDataFactory.donation_data("A+")
        first = await donation_service.create_donation(DonationCreate(**payload))

        with pytest.raises(InvalidState):
            await donation_service.create_donation(DonationCreate(**payload))

        await donation_service.reject_donation(first.id, actor_id, "Lipaemic sample")
        second = await donation_service.create_donation(DonationCreate(**payload))
        assert second.status == DonationStatus.PENDING

    async def test_delete_pending_donation(self, donation_service, actor_id):
        donation = await register(donation_service)
        donation_id = donation.id

        await donation_service.delete_donation(donation_id, actor_id)

        with pytest.raises(NotFound):
            await donation_service.get_donation(donation_id)

    async def test_approved_donation_cannot_be_deleted(
        self, donation_service, ledger_service, actor_id
    ):
        donation = await register(donation_service, "B-")
        await donation_service.approve_donation(donation.id, actor_id)

        with pytest.raises(InvalidState):
            await donation_service.delete_donation(donation.id, actor_id)

        assert (await ledger_service.get_ledger("B-")).available_units == 1
