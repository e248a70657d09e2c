# Overview: Tagged error hierarchy returned by every register-core operation.

"""
Register Core Errors

Every operation either returns a value or raises one of these. Each error
carries a stable ``code`` (for callers and JSON bodies) and the HTTP status
the API routes answer with.

- ValidationError: bad input; correctable by the user, never retried.
- ActiveShiftConflict: another cashier holds the register.
- OfflineError: write refused before touching the store.
- SchemaMismatchError: the store lacks columns a feature needs.
- StoreError: network/server/unexpected store failure.
- NotFoundError / InvalidStateError: missing rows and illegal transitions.
"""

from __future__ import annotations

from datetime import datetime

from .time_utils import to_utc_z


class CashRegisterError(Exception):
    """Base class for all register-core failures."""

    code = "REGISTER_ERROR"
    http_status = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CashRegisterError, ValueError):
    """400-level input problem (bad amount, missing credit/insurance fields)."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(CashRegisterError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(CashRegisterError):
    """Transition not allowed from the record's current state."""

    code = "INVALID_STATE"
    http_status = 409


class ActiveShiftConflict(CashRegisterError):
    """
    Another shift is already open.

    Resolved by waiting for the holder to close or by an administrator
    force-close; never retried automatically.
    """

    code = "ACTIVE_SHIFT_CONFLICT"
    http_status = 409

    def __init__(
        self,
        cashier_id: str | None,
        started_at: datetime | None,
        shift_id: int | None = None,
    ):
        if cashier_id:
            message = f"A shift is already open for cashier {cashier_id}"
            if started_at is not None:
                message += f" since {to_utc_z(started_at)}"
        else:
            message = "A shift is already open"
        super().__init__(
            message,
            cashier_id=cashier_id,
            started_at=to_utc_z(started_at),
            shift_id=shift_id,
        )
        self.cashier_id = cashier_id
        self.started_at = started_at
        self.shift_id = shift_id


class OfflineError(CashRegisterError):
    code = "OFFLINE"
    http_status = 503

    def __init__(self, operation: str | None = None):
        message = "Connection lost. Writes are disabled until connectivity returns."
        super().__init__(message, operation=operation)
        self.operation = operation


class SchemaMismatchError(CashRegisterError):
    """The store has not been migrated for this feature; retrying cannot help."""

    code = "SCHEMA_MISMATCH"
    http_status = 501

    def __init__(self, feature: str, missing_columns: list[str] | None = None, message: str | None = None):
        missing = sorted(missing_columns or [])
        if message is None:
            message = f"Feature unavailable: {feature} requires a database migration"
            if missing:
                message += f" (missing: {', '.join(missing)})"
        super().__init__(message, feature=feature, missing_columns=missing)
        self.feature = feature
        self.missing_columns = missing


class StoreError(CashRegisterError):
    """
    Backing-store failure.

    outcome_unknown is set when the request may have reached the store
    (timeout, dropped connection); the caller must check before resubmitting.
    """

    code = "STORE_ERROR"
    http_status = 502

    def __init__(self, message: str, *, outcome_unknown: bool = False):
        super().__init__(message, outcome_unknown=outcome_unknown)
        self.outcome_unknown = outcome_unknown
