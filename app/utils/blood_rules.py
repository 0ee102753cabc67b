"""
Pure business rules shared by the ledger, fulfillment and donation services.

Nothing in this module touches the database: every function takes plain
values (and an explicit ``now``) so that status, priority and threshold
derivations can be tested in isolation and are applied deliberately before
each persist.
"""

import math
from datetime import datetime, timedelta
from typing import Optional, Tuple

from app.schemas.base_schema import BloodType
from app.schemas.donation_schema import DonationStatus, ScreeningResult
from app.schemas.request_schema import RequestStatus, Urgency
from app.schemas.stock_schema import StockStatus

URGENCY_WEIGHTS = {
    Urgency.SCHEDULED: 1,
    Urgency.NORMAL: 2,
    Urgency.URGENT: 3,
    Urgency.CRITICAL: 4,
}

ONE_DAY = timedelta(days=1)


def validate_blood_type(value) -> str:
    """Return the canonical blood type string or raise ValueError."""
    if isinstance(value, BloodType):
        return value.value
    if value not in BloodType.get_values():
        raise ValueError(
            f'Blood type must be one of: {", ".join(BloodType.get_values())}'
        )
    return value


def validate_quantity(quantity: int, field: str = "quantity") -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"{field} must be a positive integer")
    return quantity


# --- Stock ---


def stock_status(available: int, minimum: int, critical: int) -> StockStatus:
    if available <= critical:
        return StockStatus.CRITICAL
    if available <= minimum:
        return StockStatus.LOW
    if available > minimum * 2:
        return StockStatus.GOOD
    return StockStatus.ADEQUATE


def normalize_thresholds(minimum: int, critical: int) -> Tuple[int, int]:
    """Keep critical strictly below minimum by pulling critical down."""
    if critical >= minimum:
        critical = max(0, minimum - 1)
    return minimum, critical


def percentage_of(part: int, whole: int) -> int:
    if not whole:
        return 0
    return round(part / whole * 100)


# --- Requests ---


def days_until(required_by: datetime, now: datetime) -> int:
    """Whole days until the deadline, rounded up and never below 1."""
    seconds = (required_by - now).total_seconds()
    return max(1, math.ceil(seconds / ONE_DAY.total_seconds()))


def compute_priority(urgency, required_by: datetime, now: datetime) -> int:
    """Queue sort key: urgency weight times deadline proximity weight."""
    urgency = Urgency(urgency)
    time_weight = max(1, 6 - days_until(required_by, now))
    return URGENCY_WEIGHTS[urgency] * time_weight


def is_request_overdue(status, required_by: datetime, now: datetime) -> bool:
    return required_by < now and RequestStatus(status) != RequestStatus.FULFILLED


def derive_request_status(
    status,
    units_provided: int,
    quantity: int,
    required_by: datetime,
    now: datetime,
) -> RequestStatus:
    """
    Next lifecycle status for a request.

    Expiry is checked first and short-circuits; terminal states never move;
    otherwise fulfillment progress decides between fulfilled and
    partially_fulfilled, leaving pending/approved untouched at zero units.
    """
    status = RequestStatus(status)

    if status in (
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.PARTIALLY_FULFILLED,
    ) and is_request_overdue(status, required_by, now):
        return RequestStatus.EXPIRED

    if status in RequestStatus.terminal():
        return status

    if units_provided >= quantity:
        return RequestStatus.FULFILLED
    if units_provided > 0:
        return RequestStatus.PARTIALLY_FULFILLED
    return status


def fulfillment_percentage(units_provided: int, quantity: int) -> int:
    return percentage_of(units_provided, quantity)


# --- Donations ---


def screening_clear(hiv, hepatitis_b, hepatitis_c, syphilis) -> bool:
    return all(
        ScreeningResult(result) == ScreeningResult.NEGATIVE
        for result in (hiv, hepatitis_b, hepatitis_c, syphilis)
    )


def derive_donation_status(
    status,
    expiry_date: datetime,
    hemoglobin: Optional[float],
    tests_clear: bool,
    now: datetime,
) -> DonationStatus:
    status = DonationStatus(status)
    # A unit past its shelf life is never approved, whatever its screening says
    if status in (DonationStatus.PENDING, DonationStatus.APPROVED) and expiry_date < now:
        return DonationStatus.EXPIRED
    if status == DonationStatus.PENDING and tests_clear and hemoglobin:
        return DonationStatus.APPROVED
    return status
