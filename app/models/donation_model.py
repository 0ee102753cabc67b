import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import UUID, Base, enum_values
from app.schemas.donation_schema import DonationStatus, ScreeningResult
from app.utils.blood_rules import screening_clear, validate_blood_type
from app.utils.clock import utcnow


def _screening_column():
    return mapped_column(
        Enum(
            ScreeningResult,
            native_enum=False,
            values_callable=enum_values,
            name="screening_result",
        ),
        default=ScreeningResult.PENDING,
        nullable=False,
    )


class Donation(Base):
    """A single collected donation. Approval credits one ledger unit."""

    __tablename__ = "donations"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(UUID, nullable=False)
    blood_type: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity_ml: Mapped[int] = mapped_column(Integer, default=450, nullable=False)
    donation_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    center: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[DonationStatus] = mapped_column(
        Enum(
            DonationStatus,
            native_enum=False,
            values_callable=enum_values,
            name="donation_status",
        ),
        default=DonationStatus.PENDING,
        nullable=False,
    )

    # --- Screening ---
    hemoglobin: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hiv: Mapped[ScreeningResult] = _screening_column()
    hepatitis_b: Mapped[ScreeningResult] = _screening_column()
    hepatitis_c: Mapped[ScreeningResult] = _screening_column()
    syphilis: Mapped[ScreeningResult] = _screening_column()

    expiry_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    # --- Validation Methods ---
    @validates("blood_type")
    def validate_blood_type(self, key, value):
        return validate_blood_type(value)

    @validates("quantity_ml")
    def validate_quantity_ml(self, key, value):
        if value is not None and not 350 <= value <= 500:
            raise ValueError("Donation quantity must be between 350ml and 500ml")
        return value

    # --- Methods ---
    @property
    def is_test_clear(self) -> bool:
        return screening_clear(self.hiv, self.hepatitis_b, self.hepatitis_c, self.syphilis)

    def is_expired(self, now: datetime) -> bool:
        return self.expiry_date < now

    def __repr__(self) -> str:
        return f"<Donation(id={self.id}, blood_type={self.blood_type}, status={self.status})>"

    __table_args__ = (
        Index("idx_donation_donor_date", "donor_id", "donation_date"),
        Index("idx_donation_type_status", "blood_type", "status"),
        Index("idx_donation_status_expiry", "status", "expiry_date"),
    )
