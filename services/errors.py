# services/errors.py
"""
Typed errors raised by the billing services.

Each class carries a machine-readable `code` and the HTTP status the API
answers with; `main.py` installs the single handler that translates them.
"""
from __future__ import annotations
from typing import Any, Optional


class BillingError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgumentError(BillingError):
    code = "invalid-argument"
    status_code = 422


class NotFoundError(BillingError):
    code = "not-found"
    status_code = 404


class AlreadyExistsError(BillingError):
    code = "already-exists"
    status_code = 409


class PermissionDeniedError(BillingError):
    code = "permission-denied"
    status_code = 403


class PreconditionFailedError(BillingError):
    code = "failed-precondition"
    status_code = 412


class MonthLockedError(PreconditionFailedError):
    def __init__(self, month_key: str, message: Optional[str] = None):
        super().__init__(message or f"Month {month_key} is locked", month_key=month_key)
        self.month_key = month_key


class RateNotConfiguredError(PreconditionFailedError):
    def __init__(self, year: int):
        super().__init__(f"No standard rate configured for year {year}", year=year)
        self.year = year
