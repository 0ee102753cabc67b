from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.config import settings
from app.models.stock_model import BloodStock, StockAlert, StockMovement
from app.schemas.base_schema import BloodType
from app.schemas.stock_schema import (
    AlertKind,
    MovementAction,
    ReferenceKind,
    StockMovementResponse,
    StockStatus,
)
from app.utils.blood_rules import normalize_thresholds, validate_blood_type, validate_quantity
from app.utils.clock import utcnow
from app.utils.exceptions import InsufficientStock, NotFound
from app.utils.logging_config import get_logger, log_audit_event
from app.utils.pagination import PaginatedResponse, PaginationParams

logger = get_logger(__name__)


class StockLedgerService:
    """
    Mutations and reads for the per blood type stock ledgers.

    Every mutating operation follows the same unit of work: lock and load the
    ledger row, change the counters in memory, append exactly one movement,
    normalize the row invariants, re-evaluate alerts where required and flush.
    The ``version`` column makes a concurrent writer that read the same row
    fail with ``StaleDataError`` instead of over-drawing stock.

    Pass ``commit=False`` when the caller owns the transaction (fulfillment
    debits the ledger and updates the request atomically).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Loading ---

    async def get_ledger(
        self, blood_type: str, for_update: bool = False
    ) -> Optional[BloodStock]:
        blood_type = validate_blood_type(blood_type)
        query = (
            select(BloodStock)
            .where(BloodStock.blood_type == blood_type)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_ledger(
        self, blood_type: str, for_update: bool = False
    ) -> BloodStock:
        """Ledgers are created lazily on first access with default thresholds."""
        ledger = await self.get_ledger(blood_type, for_update=for_update)
        if ledger is not None:
            return ledger

        minimum, critical = (
            settings.DEFAULT_MINIMUM_THRESHOLD,
            settings.DEFAULT_CRITICAL_THRESHOLD,
        )
        ledger = BloodStock(
            blood_type=blood_type,
            total_units=0,
            available_units=0,
            reserved_units=0,
            used_units=0,
            expired_units=0,
            movement_count=0,
            minimum_threshold=minimum,
            critical_threshold=critical,
            alerts=[],
        )
        ledger.normalize()
        self.db.add(ledger)
        await self.db.flush()
        logger.info(f"Created stock ledger for {ledger.blood_type}")
        return ledger

    async def initialize_all(self) -> List[BloodStock]:
        """Idempotently make sure all eight ledgers exist."""
        ledgers = [
            await self.get_or_create_ledger(blood_type)
            for blood_type in BloodType.get_values()
        ]
        await self.db.commit()
        return ledgers

    async def list_ledgers(self) -> List[BloodStock]:
        result = await self.db.execute(select(BloodStock.blood_type))
        existing = set(result.scalars().all())
        if len(existing) < len(BloodType.get_values()):
            return await self.initialize_all()

        result = await self.db.execute(
            select(BloodStock).execution_options(populate_existing=True)
        )
        ledgers = {ledger.blood_type: ledger for ledger in result.scalars().all()}
        return [ledgers[blood_type] for blood_type in BloodType.get_values()]

    # --- Mutations ---

    async def credit(
        self,
        blood_type: str,
        quantity: int,
        reference_id: Optional[UUID] = None,
        reference_kind: Optional[ReferenceKind] = ReferenceKind.DONATION,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> BloodStock:
        """Add units. Always succeeds; clears low/critical alerts once stock is healthy."""
        validate_quantity(quantity)
        ledger = await self.get_or_create_ledger(blood_type, for_update=True)
        now = utcnow()

        before = ledger.available_units
        ledger.available_units += quantity
        ledger.total_units += quantity
        ledger.last_donation_at = now
        self._append_movement(
            ledger,
            MovementAction.CREDIT,
            before,
            reference_id=reference_id,
            reference_kind=reference_kind,
            actor_id=actor_id,
            note=note,
            now=now,
        )

        if ledger.available_units > ledger.minimum_threshold:
            self._deactivate_stock_alerts(ledger)

        await self._persist(ledger, commit=commit, evaluate=False)
        self._audit(ledger, MovementAction.CREDIT, before, actor_id, quantity)
        return ledger

    async def debit(
        self,
        blood_type: str,
        quantity: int,
        reference_id: Optional[UUID] = None,
        reference_kind: Optional[ReferenceKind] = ReferenceKind.BLOOD_REQUEST,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> BloodStock:
        """Issue units. All or nothing: raises InsufficientStock without touching the row."""
        validate_quantity(quantity)
        ledger = await self.get_or_create_ledger(blood_type, for_update=True)

        if quantity > ledger.available_units:
            logger.warning(
                f"Debit of {quantity} refused for {ledger.blood_type}",
                extra={
                    "extra_fields": {
                        "blood_type": ledger.blood_type,
                        "requested": quantity,
                        "available": ledger.available_units,
                    }
                },
            )
            raise InsufficientStock(ledger.blood_type, quantity, ledger.available_units)

        now = utcnow()
        before = ledger.available_units
        ledger.available_units -= quantity
        ledger.used_units += quantity
        ledger.last_request_at = now
        self._append_movement(
            ledger,
            MovementAction.DEBIT,
            before,
            reference_id=reference_id,
            reference_kind=reference_kind,
            actor_id=actor_id,
            note=note,
            now=now,
        )

        await self._persist(ledger, commit=commit)
        self._audit(ledger, MovementAction.DEBIT, before, actor_id, quantity)
        return ledger

    async def expire(
        self,
        blood_type: str,
        quantity: int,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> BloodStock:
        """Write off expired units. Available units are clamped at zero."""
        validate_quantity(quantity)
        ledger = await self.get_or_create_ledger(blood_type, for_update=True)

        before = ledger.available_units
        ledger.available_units = max(0, ledger.available_units - quantity)
        ledger.expired_units += quantity
        self._append_movement(
            ledger,
            MovementAction.EXPIRE,
            before,
            reference_kind=ReferenceKind.MANUAL,
            actor_id=actor_id,
            note=note or "Expired units removed",
        )

        await self._persist(ledger, commit=commit)
        self._audit(ledger, MovementAction.EXPIRE, before, actor_id, quantity)
        return ledger

    async def adjust(
        self,
        blood_type: str,
        new_available_units: int,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> BloodStock:
        """Set available units to an absolute count; total moves by the same delta."""
        if isinstance(new_available_units, bool) or not isinstance(new_available_units, int):
            raise ValueError("available_units must be an integer")
        if new_available_units < 0:
            raise ValueError("available_units cannot be negative")

        ledger = await self.get_or_create_ledger(blood_type, for_update=True)

        before = ledger.available_units
        delta = new_available_units - before
        ledger.available_units = new_available_units
        ledger.total_units += delta
        self._append_movement(
            ledger,
            MovementAction.ADJUST,
            before,
            reference_kind=ReferenceKind.MANUAL,
            actor_id=actor_id,
            note=note or "Manual stock adjustment",
        )

        await self._persist(ledger, commit=commit)
        self._audit(ledger, MovementAction.ADJUST, before, actor_id, delta)
        return ledger

    async def update_thresholds(
        self,
        blood_type: str,
        minimum_threshold: Optional[int] = None,
        critical_threshold: Optional[int] = None,
        actor_id: Optional[UUID] = None,
        commit: bool = True,
    ) -> BloodStock:
        ledger = await self.get_or_create_ledger(blood_type, for_update=True)
        self._apply_thresholds(ledger, minimum_threshold, critical_threshold, actor_id)
        await self._persist(ledger, commit=commit)
        return ledger

    async def update_stock(
        self,
        blood_type: str,
        available_units: Optional[int] = None,
        minimum_threshold: Optional[int] = None,
        critical_threshold: Optional[int] = None,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
    ) -> BloodStock:
        """Thresholds first, then the absolute adjustment, as one unit of work."""
        if available_units is None:
            return await self.update_thresholds(
                blood_type, minimum_threshold, critical_threshold, actor_id=actor_id
            )

        if minimum_threshold is not None or critical_threshold is not None:
            ledger = await self.get_or_create_ledger(blood_type, for_update=True)
            self._apply_thresholds(ledger, minimum_threshold, critical_threshold, actor_id)
            ledger.normalize()
            await self.db.flush()

        return await self.adjust(blood_type, available_units, actor_id=actor_id, note=note)

    def _apply_thresholds(
        self,
        ledger: BloodStock,
        minimum_threshold: Optional[int],
        critical_threshold: Optional[int],
        actor_id: Optional[UUID],
    ) -> None:
        old_values = {
            "minimum_threshold": ledger.minimum_threshold,
            "critical_threshold": ledger.critical_threshold,
        }
        if minimum_threshold is not None:
            ledger.minimum_threshold = minimum_threshold
        if critical_threshold is not None:
            ledger.critical_threshold = critical_threshold
        ledger.minimum_threshold, ledger.critical_threshold = normalize_thresholds(
            ledger.minimum_threshold, ledger.critical_threshold
        )

        log_audit_event(
            action="thresholds_updated",
            resource_type="blood_stock",
            resource_id=ledger.blood_type,
            old_values=old_values,
            new_values={
                "minimum_threshold": ledger.minimum_threshold,
                "critical_threshold": ledger.critical_threshold,
            },
            user_id=str(actor_id) if actor_id else None,
        )

    # --- Alerts ---

    def evaluate_alerts(self, ledger: BloodStock) -> Optional[StockAlert]:
        """
        Replace the ledger's stock alert state.

        Every active low/critical alert is deactivated, then at most one new
        alert matching the current status is raised.
        """
        self._deactivate_stock_alerts(ledger)

        status = ledger.status
        if status == StockStatus.CRITICAL:
            kind = AlertKind.CRITICAL
            message = (
                f"Critical stock alert: Only {ledger.available_units} units of "
                f"{ledger.blood_type} blood remaining"
            )
        elif status == StockStatus.LOW:
            kind = AlertKind.LOW
            message = (
                f"Low stock alert: Only {ledger.available_units} units of "
                f"{ledger.blood_type} blood remaining"
            )
        else:
            return None

        alert = StockAlert(
            blood_type=ledger.blood_type,
            kind=kind,
            message=message,
            is_active=True,
            created_at=utcnow(),
        )
        ledger.alerts.append(alert)
        logger.warning(message, extra={"extra_fields": {"alert_kind": kind.value}})
        return alert

    async def list_active_alerts(
        self, blood_type: Optional[str] = None
    ) -> List[Tuple[StockAlert, int]]:
        """Active alerts newest first, each with the ledger's current stock."""
        query = (
            select(StockAlert, BloodStock.available_units)
            .join(BloodStock, StockAlert.stock_id == BloodStock.id)
            .where(StockAlert.is_active.is_(True))
            .order_by(StockAlert.created_at.desc())
        )
        if blood_type is not None:
            query = query.where(StockAlert.blood_type == validate_blood_type(blood_type))

        result = await self.db.execute(query)
        return [(alert, available) for alert, available in result.all()]

    async def acknowledge_alert(self, alert_id: UUID, actor_id: UUID) -> StockAlert:
        result = await self.db.execute(select(StockAlert).where(StockAlert.id == alert_id))
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFound("Alert not found")

        alert.is_active = False
        alert.acknowledged_by_id = actor_id
        alert.acknowledged_at = utcnow()
        await self.db.commit()

        log_audit_event(
            action="alert_acknowledged",
            resource_type="stock_alert",
            resource_id=str(alert.id),
            new_values={"blood_type": alert.blood_type, "kind": alert.kind.value},
            user_id=str(actor_id),
        )
        return alert

    # --- History ---

    async def get_history(
        self, blood_type: str, pagination: PaginationParams
    ) -> PaginatedResponse[StockMovementResponse]:
        """Movement history, newest first, one page at a time."""
        blood_type = validate_blood_type(blood_type)

        total_result = await self.db.execute(
            select(func.count(StockMovement.id)).where(
                StockMovement.blood_type == blood_type
            )
        )
        total_items = total_result.scalar() or 0

        result = await self.db.execute(
            select(StockMovement)
            .where(StockMovement.blood_type == blood_type)
            .order_by(StockMovement.sequence.desc())
            .offset(pagination.offset)
            .limit(pagination.page_size)
        )
        items = [
            StockMovementResponse.model_validate(movement)
            for movement in result.scalars().all()
        ]
        return PaginatedResponse[StockMovementResponse].build(items, total_items, pagination)

    async def get_recent_movements(
        self, ledger: BloodStock, limit: int = 10
    ) -> List[StockMovement]:
        result = await self.db.execute(
            ledger.movements.select()
            .order_by(StockMovement.sequence.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # --- Internals ---

    def _append_movement(
        self,
        ledger: BloodStock,
        action: MovementAction,
        balance_before: int,
        reference_id: Optional[UUID] = None,
        reference_kind: Optional[ReferenceKind] = None,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        now=None,
    ) -> StockMovement:
        ledger.movement_count += 1
        movement = StockMovement(
            blood_type=ledger.blood_type,
            sequence=ledger.movement_count,
            action=action,
            delta=ledger.available_units - balance_before,
            balance_before=balance_before,
            balance_after=ledger.available_units,
            reference_id=reference_id,
            reference_kind=reference_kind,
            actor_id=actor_id,
            note=note,
            created_at=now or utcnow(),
        )
        ledger.movements.add(movement)
        return movement

    def _deactivate_stock_alerts(self, ledger: BloodStock) -> None:
        for alert in ledger.alerts:
            if alert.is_active and alert.kind in (AlertKind.LOW, AlertKind.CRITICAL):
                alert.is_active = False

    async def _persist(
        self, ledger: BloodStock, commit: bool = True, evaluate: bool = True
    ) -> None:
        ledger.normalize()
        if evaluate:
            self.evaluate_alerts(ledger)
        await self.db.flush()
        if commit:
            await self.db.commit()

    def _audit(
        self,
        ledger: BloodStock,
        action: MovementAction,
        balance_before: int,
        actor_id: Optional[UUID],
        quantity: int,
    ) -> None:
        log_audit_event(
            action=action.value,
            resource_type="blood_stock",
            resource_id=ledger.blood_type,
            old_values={"available_units": balance_before},
            new_values={
                "available_units": ledger.available_units,
                "total_units": ledger.total_units,
                "quantity": quantity,
                "status": ledger.status.value,
            },
            user_id=str(actor_id) if actor_id else None,
        )
