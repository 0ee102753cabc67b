import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, WriteOnlyMapped, mapped_column, relationship, validates

from app.db.base import UUID, Base, enum_values
from app.schemas.stock_schema import AlertKind, MovementAction, ReferenceKind, StockStatus
from app.utils.blood_rules import (
    normalize_thresholds,
    percentage_of,
    stock_status,
    validate_blood_type,
)
from app.utils.clock import utcnow


class BloodStock(Base):
    """Per blood type stock ledger. One row per ABO/Rh group, never deleted."""

    __tablename__ = "blood_stock"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    blood_type: Mapped[str] = mapped_column(String(3), unique=True, nullable=False)

    total_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    available_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    used_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expired_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    minimum_threshold: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    critical_threshold: Mapped[int] = mapped_column(Integer, default=5, nullable=False)

    movement_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_donation_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_request_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    # Optimistic concurrency: a stale read fails the UPDATE instead of
    # silently overwriting a concurrent debit.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Relationships ---
    alerts: Mapped[List["StockAlert"]] = relationship(
        back_populates="stock",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockAlert.created_at",
    )
    movements: WriteOnlyMapped["StockMovement"] = relationship(
        back_populates="stock",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StockMovement.sequence",
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Validation Methods ---
    @validates("blood_type")
    def validate_blood_type(self, key, value):
        return validate_blood_type(value)

    @validates(
        "total_units",
        "available_units",
        "reserved_units",
        "used_units",
        "expired_units",
        "minimum_threshold",
        "critical_threshold",
    )
    def validate_non_negative(self, key, value):
        if value is not None and value < 0:
            raise ValueError(f"{key} cannot be negative")
        return value

    # --- Derived values ---
    @property
    def status(self) -> StockStatus:
        return stock_status(
            self.available_units, self.minimum_threshold, self.critical_threshold
        )

    @property
    def utilization_rate(self) -> int:
        return percentage_of(self.used_units, self.total_units)

    @property
    def expiry_rate(self) -> int:
        return percentage_of(self.expired_units, self.total_units)

    @property
    def active_alerts(self) -> List["StockAlert"]:
        return [alert for alert in self.alerts if alert.is_active]

    def normalize(self) -> None:
        """Restore the row invariants before it is flushed."""
        if self.available_units > self.total_units:
            self.total_units = self.available_units
        self.minimum_threshold, self.critical_threshold = normalize_thresholds(
            self.minimum_threshold, self.critical_threshold
        )
        self.updated_at = utcnow()

    def __str__(self) -> str:
        return f"{self.blood_type} ({self.available_units} available)"

    def __repr__(self) -> str:
        return (
            f"<BloodStock(blood_type={self.blood_type}, available={self.available_units}, "
            f"total={self.total_units}, version={self.version})>"
        )


class StockMovement(Base):
    """Append-only history entry. Rows are inserted once and never updated."""

    __tablename__ = "stock_movements"

    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    stock_id: Mapped[uuid.UUID] = mapped_column(
        UUID, ForeignKey("blood_stock.id", ondelete="CASCADE"), nullable=False
    )
    blood_type: Mapped[str] = mapped_column(String(3), nullable=False)
    # Position in the ledger's history, 1-based and gapless per ledger
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[MovementAction] = mapped_column(
        Enum(
            MovementAction,
            native_enum=False,
            values_callable=enum_values,
            name="movement_action",
        ),
        nullable=False,
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    reference_kind: Mapped[Optional[ReferenceKind]] = mapped_column(
        Enum(
            ReferenceKind,
            native_enum=False,
            values_callable=enum_values,
            name="movement_reference_kind",
        ),
        nullable=True,
    )
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    stock: Mapped["BloodStock"] = relationship(back_populates="movements")

    def __repr__(self) -> str:
        return (
            f"<StockMovement({self.blood_type} #{self.sequence} {self.action} "
            f"{self.balance_before}->{self.balance_after})>"
        )

    __table_args__ = (
        Index("idx_movement_stock_sequence", "stock_id", "sequence", unique=True),
        Index("idx_movement_created", "created_at"),
        Index("idx_movement_reference", "reference_kind", "reference_id"),
    )


class StockAlert(Base):
    __tablename__ = "stock_alerts"

    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    stock_id: Mapped[uuid.UUID] = mapped_column(
        UUID, ForeignKey("blood_stock.id", ondelete="CASCADE"), nullable=False
    )
    blood_type: Mapped[str] = mapped_column(String(3), nullable=False)
    kind: Mapped[AlertKind] = mapped_column(
        Enum(AlertKind, native_enum=False, values_callable=enum_values, name="alert_kind"),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    acknowledged_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    stock: Mapped["BloodStock"] = relationship(back_populates="alerts")

    def __repr__(self) -> str:
        return f"<StockAlert({self.blood_type} {self.kind} active={self.is_active})>"

    __table_args__ = (
        Index("idx_alert_stock_active", "stock_id", "is_active"),
        Index("idx_alert_active_created", "is_active", "created_at"),
    )
