from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import Field, model_validator

from app.schemas.base_schema import BaseSchema, BloodType, ResponseSchema


class StockStatus(str, Enum):

    CRITICAL = "critical"
    LOW = "low"
    ADEQUATE = "adequate"
    GOOD = "good"


class MovementAction(str, Enum):

    CREDIT = "credit"
    DEBIT = "debit"
    EXPIRE = "expire"
    ADJUST = "adjust"


class ReferenceKind(str, Enum):
    """What a movement's reference id points at"""

    DONATION = "donation"
    BLOOD_REQUEST = "blood_request"
    MANUAL = "manual"


class AlertKind(str, Enum):

    LOW = "low"
    CRITICAL = "critical"


# --- Request bodies ---


class StockUpdate(BaseSchema):
    """Manual adjustment and/or threshold change for one ledger"""

    available_units: Optional[int] = Field(
        None, ge=0, description="New absolute number of available units"
    )
    minimum_threshold: Optional[int] = Field(None, ge=0)
    critical_threshold: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, min_length=1, max_length=500)

    @model_validator(mode="after")
    def check_something_to_update(self):
        if (
            self.available_units is None
            and self.minimum_threshold is None
            and self.critical_threshold is None
        ):
            raise ValueError(
                "Provide available_units, minimum_threshold or critical_threshold"
            )
        return self


class ExpiredUnitsRemoval(BaseSchema):
    quantity: int = Field(..., ge=1, description="Number of expired units to remove")
    reason: Optional[str] = Field(None, min_length=1, max_length=500)


# --- Responses ---


class StockMovementResponse(ResponseSchema):
    id: UUID
    blood_type: str
    sequence: int
    action: MovementAction
    delta: int
    balance_before: int
    balance_after: int
    reference_id: Optional[UUID] = None
    reference_kind: Optional[ReferenceKind] = None
    actor_id: Optional[UUID] = None
    note: Optional[str] = None
    created_at: datetime


class StockAlertResponse(ResponseSchema):
    id: UUID
    blood_type: str
    kind: AlertKind
    message: str
    is_active: bool
    created_at: datetime
    acknowledged_by_id: Optional[UUID] = None
    acknowledged_at: Optional[datetime] = None


class ActiveAlertResponse(StockAlertResponse):
    current_stock: int


class ActiveAlertsResponse(ResponseSchema):
    alerts: List[ActiveAlertResponse]
    total_active_alerts: int


class BloodStockResponse(ResponseSchema):
    id: UUID
    blood_type: BloodType
    total_units: int
    available_units: int
    reserved_units: int
    used_units: int
    expired_units: int
    minimum_threshold: int
    critical_threshold: int
    status: StockStatus
    utilization_rate: int
    expiry_rate: int
    last_donation_at: Optional[datetime] = None
    last_request_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class BloodStockDetailResponse(BloodStockResponse):
    alerts: List[StockAlertResponse] = Field(default_factory=list)
    recent_movements: List[StockMovementResponse] = Field(default_factory=list)


class StockOverviewResponse(ResponseSchema):
    stocks: List[BloodStockResponse]
    total_available_units: int
    critical_count: int
    low_count: int
