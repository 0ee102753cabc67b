from datetime import datetime
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID

from pydantic import Field, StringConstraints, field_validator

from app.schemas.base_schema import BaseSchema, BloodType, ResponseSchema
from app.utils.clock import to_naive_utc


class DonationStatus(str, Enum):

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ScreeningResult(str, Enum):

    NEGATIVE = "negative"
    POSITIVE = "positive"
    PENDING = "pending"


class DonationCreate(BaseSchema):
    donor_id: UUID
    blood_type: BloodType
    quantity_ml: int = Field(450, ge=350, le=500, description="Collected volume in ml")
    donation_date: Optional[datetime] = Field(
        None, description="Defaults to the time of registration"
    )
    center: Annotated[str, StringConstraints(min_length=1, max_length=200)]
    notes: Optional[Annotated[str, StringConstraints(max_length=1000)]] = None

    @field_validator("donation_date")
    @classmethod
    def normalize_donation_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v) if v is not None else v


class ScreeningUpdate(BaseSchema):
    hemoglobin: Optional[float] = Field(None, ge=12.5, le=20)
    hiv: Optional[ScreeningResult] = None
    hepatitis_b: Optional[ScreeningResult] = None
    hepatitis_c: Optional[ScreeningResult] = None
    syphilis: Optional[ScreeningResult] = None


class DonationRejection(BaseSchema):
    reason: Annotated[str, StringConstraints(min_length=1, max_length=500)]


class DonationResponse(ResponseSchema):
    id: UUID
    donor_id: UUID
    blood_type: BloodType
    quantity_ml: int
    donation_date: datetime
    center: str
    status: DonationStatus
    hemoglobin: Optional[float] = None
    hiv: ScreeningResult
    hepatitis_b: ScreeningResult
    hepatitis_c: ScreeningResult
    syphilis: ScreeningResult
    expiry_date: datetime
    approved_by_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
