import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import UUID, Base, enum_values
from app.schemas.request_schema import Gender, RequestStatus, Urgency
from app.utils.blood_rules import (
    compute_priority,
    derive_request_status,
    fulfillment_percentage,
    is_request_overdue,
    validate_blood_type,
)
from app.utils.clock import utcnow


class BloodRequest(Base):
    """A recipient's request for units of one blood type, with its fulfillment."""

    __tablename__ = "blood_requests"

    # --- Columns ---
    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    requester_id: Mapped[uuid.UUID] = mapped_column(UUID, nullable=False)

    blood_type: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, native_enum=False, values_callable=enum_values, name="urgency"),
        default=Urgency.NORMAL,
        nullable=False,
    )
    required_by: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(
            RequestStatus,
            native_enum=False,
            values_callable=enum_values,
            name="request_status",
        ),
        default=RequestStatus.PENDING,
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # --- Fulfillment ---
    units_provided: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # --- Patient / hospital summary ---
    patient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    patient_age: Mapped[int] = mapped_column(Integer, nullable=False)
    patient_gender: Mapped[Gender] = mapped_column(
        Enum(Gender, native_enum=False, values_callable=enum_values, name="gender"),
        nullable=False,
    )
    condition: Mapped[str] = mapped_column(String(200), nullable=False)
    hospital_name: Mapped[str] = mapped_column(String(200), nullable=False)
    hospital_city: Mapped[str] = mapped_column(String(200), nullable=False)
    hospital_contact: Mapped[str] = mapped_column(String(200), nullable=False)
    doctor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # --- Review ---
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Relationships ---
    fulfillment_entries: Mapped[List["FulfillmentEntry"]] = relationship(
        back_populates="blood_request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FulfillmentEntry.provided_at",
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Validation Methods ---
    @validates("blood_type")
    def validate_blood_type(self, key, value):
        return validate_blood_type(value)

    @validates("quantity")
    def validate_quantity(self, key, value):
        """Requests are capped at 10 units at once."""
        if not 1 <= value <= 10:
            raise ValueError("Requested quantity must be between 1 and 10 units")
        return value

    # --- Methods ---
    @property
    def fulfillment_percentage(self) -> int:
        return fulfillment_percentage(self.units_provided, self.quantity)

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.quantity - self.units_provided)

    @property
    def is_terminal(self) -> bool:
        return RequestStatus(self.status) in RequestStatus.terminal()

    def is_expired(self, now: datetime) -> bool:
        return is_request_overdue(self.status, self.required_by, now)

    def refresh_derived_state(self, now: datetime) -> None:
        """Recompute status, fulfilled_at and priority. Call before every persist."""
        new_status = derive_request_status(
            self.status, self.units_provided, self.quantity, self.required_by, now
        )
        if new_status == RequestStatus.FULFILLED and self.fulfilled_at is None:
            self.fulfilled_at = now
        self.status = new_status
        self.priority = compute_priority(self.urgency, self.required_by, now)

    def __repr__(self) -> str:
        return (
            f"<BloodRequest(id={self.id}, blood_type={self.blood_type}, "
            f"status={self.status}, provided={self.units_provided}/{self.quantity})>"
        )

    __table_args__ = (
        Index("idx_request_requester_created", "requester_id", "created_at"),
        Index("idx_request_type_status_urgency", "blood_type", "status", "urgency"),
        Index("idx_request_status_required_by", "status", "required_by"),
        Index("idx_request_priority_created", "priority", "created_at"),
    )


class FulfillmentEntry(Base):
    """Units allocated from one donation to one request. Never edited."""

    __tablename__ = "fulfillment_entries"

    id: Mapped[uuid.UUID] = mapped_column(UUID, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID, ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=False
    )
    donation_id: Mapped[uuid.UUID] = mapped_column(
        UUID, ForeignKey("donations.id", ondelete="RESTRICT"), nullable=False
    )
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    provided_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    blood_request: Mapped["BloodRequest"] = relationship(
        back_populates="fulfillment_entries"
    )

    @validates("units")
    def validate_units(self, key, value):
        if value < 1:
            raise ValueError("Units must be at least 1")
        return value

    __table_args__ = (
        Index("idx_fulfillment_request", "request_id"),
        Index("idx_fulfillment_donation", "donation_id"),
    )
