from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional
from uuid import UUID

from pydantic import Field, StringConstraints, field_validator, model_validator

from app.schemas.base_schema import BaseSchema, BloodType, ResponseSchema
from app.utils.clock import to_naive_utc


class RequestStatus(str, Enum):

    PENDING = "pending"
    APPROVED = "approved"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @classmethod
    def terminal(cls) -> frozenset:
        return frozenset({cls.FULFILLED, cls.REJECTED, cls.EXPIRED})

    @classmethod
    def fulfillable(cls) -> frozenset:
        return frozenset({cls.APPROVED, cls.PARTIALLY_FULFILLED})


class Urgency(str, Enum):

    SCHEDULED = "scheduled"
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"


class Gender(str, Enum):

    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


ShortText = Annotated[str, StringConstraints(min_length=1, max_length=200)]


class BloodRequestCreate(BaseSchema):
    blood_type: BloodType = Field(..., description="Blood type (e.g., A+, B-, O+, AB-)")
    quantity: int = Field(..., ge=1, le=10, description="Units requested (1-10)")
    urgency: Urgency = Field(Urgency.NORMAL)
    required_by: datetime = Field(..., description="Deadline for the transfusion")

    patient_name: ShortText
    patient_age: int = Field(..., ge=0, le=120)
    patient_gender: Gender
    condition: ShortText = Field(..., description="Medical condition or reason")

    hospital_name: ShortText
    hospital_city: ShortText
    hospital_contact: ShortText
    doctor_name: ShortText

    notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None

    @field_validator("required_by")
    @classmethod
    def normalize_required_by(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class BloodRequestUpdate(BaseSchema):
    urgency: Optional[Urgency] = None
    required_by: Optional[datetime] = None
    notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None
    admin_notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None

    @field_validator("required_by")
    @classmethod
    def normalize_required_by(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else v


class BloodRequestRejection(BaseSchema):
    reason: Annotated[str, StringConstraints(min_length=1, max_length=500)] = Field(
        ..., description="Why the request is rejected"
    )


class FulfillmentCreate(BaseSchema):
    donation_ids: List[UUID] = Field(..., min_length=1)
    units: List[int] = Field(..., min_length=1)

    @field_validator("units")
    @classmethod
    def validate_units(cls, v: List[int]) -> List[int]:
        if any(unit < 1 for unit in v):
            raise ValueError("Each unit must be at least 1")
        return v

    @model_validator(mode="after")
    def check_lengths(self):
        if len(self.donation_ids) != len(self.units):
            raise ValueError("donation_ids and units must have the same length")
        return self


# --- Responses ---


class FulfillmentEntryResponse(ResponseSchema):
    id: UUID
    donation_id: UUID
    units: int
    provided_at: datetime


class BloodRequestResponse(ResponseSchema):
    id: UUID
    requester_id: UUID
    blood_type: BloodType
    quantity: int
    urgency: Urgency
    required_by: datetime
    status: RequestStatus
    priority: int

    units_provided: int
    remaining_quantity: int
    fulfilled_at: Optional[datetime] = None
    fulfillment_percentage: int
    fulfillment_entries: List[FulfillmentEntryResponse] = Field(default_factory=list)

    patient_name: str
    patient_age: int
    patient_gender: Gender
    condition: str
    hospital_name: str
    hospital_city: str
    hospital_contact: str
    doctor_name: str
    notes: Optional[str] = None
    admin_notes: Optional[str] = None

    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class FulfillmentResult(ResponseSchema):
    request: BloodRequestResponse
    units_provided: int
    fulfillment_percentage: int


class ExpirySweepResult(ResponseSchema):
    expired_count: int
    expired_ids: List[UUID]
