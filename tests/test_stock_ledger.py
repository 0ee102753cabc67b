"""
Stock ledger service tests: lazy creation, credit/debit/expire/adjust
arithmetic, movement history, alert lifecycle and threshold handling.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from app.models.stock_model import BloodStock, StockMovement
from app.schemas.stock_schema import AlertKind, MovementAction, ReferenceKind, StockStatus
from app.services.stock_service import StockLedgerService
from app.utils.exceptions import InsufficientStock, NotFound
from app.utils.pagination import PaginationParams


@pytest.fixture
def ledger_service(db_session) -> StockLedgerService:
    return StockLedgerService(db_session)


class TestLedgerCreation:
    async def test_ledger_created_lazily_with_defaults(self, ledger_service):
        ledger = await ledger_service.get_or_create_ledger("A+")

        assert ledger.blood_type == "A+"
        assert ledger.available_units == 0
        assert ledger.total_units == 0
        assert ledger.minimum_threshold == 10
        assert ledger.critical_threshold == 5
        assert ledger.status == StockStatus.CRITICAL
        assert ledger.utilization_rate == 0

    async def test_initialize_all_is_idempotent(self, ledger_service, db_session):
        first = await ledger_service.initialize_all()
        second = await ledger_service.initialize_all()

        assert [s.blood_type for s in first] == [s.blood_type for s in second]
        count = (await db_session.execute(select(func.count(BloodStock.id)))).scalar()
        assert count == 8

    async def test_list_ledgers_initializes_missing_types(self, ledger_service):
        await ledger_service.credit("B-", 3)

        ledgers = await ledger_service.list_ledgers()

        assert len(ledgers) == 8
        by_type = {ledger.blood_type: ledger for ledger in ledgers}
        assert by_type["B-"].available_units == 3

    async def test_unknown_blood_type_rejected(self, ledger_service):
        with pytest.raises(ValueError):
            await ledger_service.credit("C+", 1)


class TestCreditAndDebit:
    async def test_credit_then_debits_track_balances_and_alerts(self, ledger_service):
        ledger = await ledger_service.credit("O+", 12)
        assert ledger.available_units == 12
        assert ledger.total_units == 12
        assert ledger.status == StockStatus.ADEQUATE
        assert ledger.last_donation_at is not None

        ledger = await ledger_service.debit("O+", 5)
        assert ledger.available_units == 7
        assert ledger.used_units == 5
        assert ledger.status == StockStatus.LOW

        active = await ledger_service.list_active_alerts("O+")
        assert len(active) == 1
        alert, current_stock = active[0]
        assert alert.kind == AlertKind.LOW
        assert alert.message == "Low stock alert: Only 7 units of O+ blood remaining"
        assert current_stock == 7

        ledger = await ledger_service.debit("O+", 3)
        assert ledger.available_units == 4
        assert ledger.status == StockStatus.CRITICAL
        assert ledger.utilization_rate == 67

        active = await ledger_service.list_active_alerts("O+")
        assert len(active) == 1
        assert active[0][0].kind == AlertKind.CRITICAL
        assert active[0][0].message == (
            "Critical stock alert: Only 4 units of O+ blood remaining"
        )

    async def test_debit_more_than_available_changes_nothing(self, ledger_service):
        await ledger_service.credit("A-", 3)

        with pytest.raises(InsufficientStock) as exc_info:
            await ledger_service.debit("A-", 4)

        assert exc_info.value.requested == 4
        assert exc_info.value.available == 3
        ledger = await ledger_service.get_ledger("A-")
        assert ledger.available_units == 3
        assert ledger.used_units == 0
        assert ledger.movement_count == 1

    async def test_debit_on_empty_ledger_fails(self, ledger_service):
        with pytest.raises(InsufficientStock):
            await ledger_service.debit("AB-", 1)

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_non_positive_quantities_rejected(self, ledger_service, quantity):
        with pytest.raises(ValueError):
            await ledger_service.credit("O-", quantity)
        with pytest.raises(ValueError):
            await ledger_service.debit("O-", quantity)

    async def test_credit_clears_alerts_only_above_minimum(self, ledger_service):
        await ledger_service.credit("B+", 12)
        await ledger_service.debit("B+", 10)
        assert len(await ledger_service.list_active_alerts("B+")) == 1

        await ledger_service.credit("B+", 5)
        assert len(await ledger_service.list_active_alerts("B+")) == 1

        ledger = await ledger_service.credit("B+", 5)
        assert ledger.available_units == 12
        assert await ledger_service.list_active_alerts("B+") == []

    async def test_total_never_below_available(self, ledger_service):
        ledger = await ledger_service.credit("AB+", 4)
        ledger = await ledger_service.debit("AB+", 2)
        ledger = await ledger_service.credit("AB+", 1)
        assert ledger.total_units >= ledger.available_units
        assert ledger.total_units == 5


class TestExpireAndAdjust:
    async def test_expire_clamps_available_at_zero(self, ledger_service):
        await ledger_service.credit("O-", 3)

        ledger = await ledger_service.expire("O-", 5, note="Fridge failure")

        assert ledger.available_units == 0
        assert ledger.expired_units == 5
        history = await ledger_service.get_history("O-", PaginationParams(page=1, page_size=10))
        latest = history.items[0]
        assert latest.action == MovementAction.EXPIRE
        assert latest.balance_before == 3
        assert latest.balance_after == 0
        assert latest.delta == -3
        assert latest.note == "Fridge failure"

    async def test_adjust_moves_total_by_the_same_delta(self, ledger_service):
        await ledger_service.credit("A+", 10)
        await ledger_service.debit("A+", 4)

        ledger = await ledger_service.adjust("A+", 15)

        assert ledger.available_units == 15
        assert ledger.total_units == 19
        history = await ledger_service.get_history("A+", PaginationParams(page=1, page_size=10))
        assert history.items[0].action == MovementAction.ADJUST
        assert history.items[0].delta == 9

    async def test_adjust_rejects_negative_counts(self, ledger_service):
        with pytest.raises(ValueError):
            await ledger_service.adjust("A+", -1)

    async def test_adjust_to_zero_raises_critical_alert(self, ledger_service):
        await ledger_service.credit("B-", 30)

        ledger = await ledger_service.adjust("B-", 0)

        assert ledger.status == StockStatus.CRITICAL
        active = await ledger_service.list_active_alerts("B-")
        assert [a.kind for a, _ in active] == [AlertKind.CRITICAL]


class TestThresholds:
    async def test_critical_clamped_when_not_below_minimum(self, ledger_service):
        ledger = await ledger_service.update_thresholds(
            "O+", minimum_threshold=8, critical_threshold=8
        )
        assert ledger.minimum_threshold == 8
        assert ledger.critical_threshold == 7

    async def test_threshold_change_reevaluates_alerts(self, ledger_service):
        await ledger_service.credit("A-", 15)
        assert await ledger_service.list_active_alerts("A-") == []

        ledger = await ledger_service.update_thresholds("A-", minimum_threshold=20)

        assert ledger.status == StockStatus.LOW
        active = await ledger_service.list_active_alerts("A-")
        assert len(active) == 1
        assert active[0][0].kind == AlertKind.LOW

    async def test_update_stock_applies_thresholds_before_adjusting(self, ledger_service):
        ledger = await ledger_service.update_stock(
            "AB+", available_units=4, minimum_threshold=3, critical_threshold=1
        )

        assert ledger.available_units == 4
        assert ledger.status == StockStatus.ADEQUATE
        assert await ledger_service.list_active_alerts("AB+") == []


class TestAlertsAndHistory:
    async def test_acknowledge_alert(self, ledger_service):
        await ledger_service.credit("O+", 12)
        await ledger_service.debit("O+", 10)
        alert, _ = (await ledger_service.list_active_alerts())[0]
        actor = uuid4()

        acknowledged = await ledger_service.acknowledge_alert(alert.id, actor)

        assert acknowledged.is_active is False
        assert acknowledged.acknowledged_by_id == actor
        assert acknowledged.acknowledged_at is not None
        assert await ledger_service.list_active_alerts() == []

    async def test_acknowledge_unknown_alert(self, ledger_service):
        with pytest.raises(NotFound):
            await ledger_service.acknowledge_alert(uuid4(), uuid4())

    async def test_movements_are_sequenced_and_consistent(self, ledger_service, db_session):
        reference = uuid4()
        await ledger_service.credit("A+", 6, reference_id=reference)
        await ledger_service.debit(
            "A+", 2, reference_id=uuid4(), reference_kind=ReferenceKind.BLOOD_REQUEST
        )
        await ledger_service.expire("A+", 1)
        await ledger_service.adjust("A+", 10)

        result = await db_session.execute(
            select(StockMovement)
            .where(StockMovement.blood_type == "A+")
            .order_by(StockMovement.sequence)
        )
        movements = result.scalars().all()

        assert [m.sequence for m in movements] == [1, 2, 3, 4]
        assert [m.action for m in movements] == [
            MovementAction.CREDIT,
            MovementAction.DEBIT,
            MovementAction.EXPIRE,
            MovementAction.ADJUST,
        ]
        for previous, current in zip(movements, movements[1:]):
            assert current.balance_before == previous.balance_after
        for movement in movements:
            assert movement.delta == movement.balance_after - movement.balance_before
        assert movements[0].reference_id == reference
        assert movements[0].reference_kind == ReferenceKind.DONATION

    async def test_history_is_paginated_newest_first(self, ledger_service):
        for _ in range(5):
            await ledger_service.credit("O-", 1)

        page = await ledger_service.get_history("O-", PaginationParams(page=1, page_size=2))

        assert page.total_items == 5
        assert page.total_pages == 3
        assert page.has_next is True
        assert page.has_prev is False
        assert [item.sequence for item in page.items] == [5, 4]

        last = await ledger_service.get_history("O-", PaginationParams(page=3, page_size=2))
        assert [item.sequence for item in last.items] == [1]
        assert last.has_next is False


class TestConcurrentWriters:
    async def test_stale_ledger_write_is_rejected(self, session_factory):
        async with session_factory() as first, session_factory() as second:
            await StockLedgerService(first).credit("O+", 5)
            stale = await StockLedgerService(second).get_ledger("O+")
            stale_version = stale.version

            await StockLedgerService(first).debit("O+", 3)

            # Second writer still believes 5 units are available
            stale.available_units -= 4
            stale.used_units += 4
            with pytest.raises(StaleDataError):
                await second.flush()
            await second.rollback()

        async with session_factory() as check:
            ledger = await StockLedgerService(check).get_ledger("O+")
            assert ledger.available_units == 2
            assert ledger.used_units == 3
            assert ledger.version > stale_version

    async def test_debit_after_concurrent_debit_sees_fresh_balance(self, session_factory):
        async with session_factory() as first, session_factory() as second:
            await StockLedgerService(first).credit("A-", 5)
            await StockLedgerService(second).get_ledger("A-")

            await StockLedgerService(first).debit("A-", 3)

            with pytest.raises(InsufficientStock) as exc_info:
                await StockLedgerService(second).debit("A-", 4)
            assert exc_info.value.available == 2

        async with session_factory() as check:
            ledger = await StockLedgerService(check).get_ledger("A-")
            assert ledger.available_units == 2
