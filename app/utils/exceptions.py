"""Typed failures raised by the ledger, fulfillment and donation services.

Every failure here is a synchronous business-rule violation caused by the
caller's input; none of them is retried. ``main.py`` renders them as JSON
using the carried ``status_code``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy.orm.exc import StaleDataError


class LedgerError(Exception):
    """Base class for domain failures surfaced to API callers."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "detail": self.message,
            "error": type(self).__name__,
        }
        if self.details:
            payload["context"] = self.details
        return payload


class InsufficientStock(LedgerError):
    """A debit asked for more units than the ledger has available."""

    status_code = 409

    def __init__(self, blood_type: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {blood_type}: requested {requested}, "
            f"available {available}",
            {"blood_type": blood_type, "requested": requested, "available": available},
        )
        self.blood_type = blood_type
        self.requested = requested
        self.available = available


class OverAllocation(LedgerError):
    """A fulfillment would push units provided past the requested quantity."""

    status_code = 409

    def __init__(self, requested_quantity: int, units_provided: int, units_offered: int):
        super().__init__(
            "Total units would exceed requested quantity "
            f"({units_provided} + {units_offered} > {requested_quantity})",
            {
                "requested_quantity": requested_quantity,
                "units_provided": units_provided,
                "units_offered": units_offered,
            },
        )


class InvalidReference(LedgerError):
    """A referenced donation is missing, mismatched or not usable."""

    status_code = 400


class InvalidState(LedgerError):
    """The target record's lifecycle state forbids the operation."""

    status_code = 409


class NotFound(LedgerError):
    status_code = 404


# Rendered by the application's exception handlers; routes re-raise these
# untouched and convert anything else into a 500.
HANDLED_ERRORS = (HTTPException, LedgerError, StaleDataError, ValueError)
