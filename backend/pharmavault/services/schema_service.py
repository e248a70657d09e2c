"""
Credit schema readiness.

Stores migrated before credit sales existed lack the customer/payment
columns on ``transactions``. Writing a credit sale there would fail deep in
the driver with an opaque error; instead the columns are inspected once per
engine and the credit operations refuse up front with SchemaMismatchError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from ..errors import SchemaMismatchError
from ..extensions import db
from ..models.transactions import CREDIT_COLUMNS

logger = logging.getLogger(__name__)

READINESS_READY = "ready"
READINESS_MISSING = "missing"
READINESS_UNKNOWN = "unknown"

CREDIT_FEATURE = "credit_sales"

_cache: dict[str, "SchemaReadiness"] = {}


@dataclass(frozen=True)
class SchemaReadiness:
    status: str
    missing_columns: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.status == READINESS_READY

    def to_dict(self) -> dict:
        return {"status": self.status, "missing_columns": list(self.missing_columns)}


def reset_schema_cache() -> None:
    _cache.clear()


def get_credit_schema_readiness(*, refresh: bool = False) -> SchemaReadiness:
    """Inspect the transactions table for the credit columns (cached per engine)."""
    engine = db.engine
    key = str(engine.url)
    if not refresh and key in _cache:
        return _cache[key]

    try:
        columns = {column["name"] for column in inspect(engine).get_columns("transactions")}
    except SQLAlchemyError:
        logger.exception("Could not inspect transactions table for credit columns")
        # Not cached: the next call may reach the store
        return SchemaReadiness(READINESS_UNKNOWN)

    if not columns:
        readiness = SchemaReadiness(READINESS_MISSING, sorted(CREDIT_COLUMNS))
    else:
        missing = sorted(set(CREDIT_COLUMNS) - columns)
        readiness = SchemaReadiness(READINESS_MISSING if missing else READINESS_READY, missing)

    if readiness.status == READINESS_MISSING:
        logger.warning("Credit sales unavailable; missing columns: %s", ", ".join(readiness.missing_columns))

    _cache[key] = readiness
    return readiness


def require_credit_schema() -> None:
    """
    Raise SchemaMismatchError when the credit columns are known to be missing.

    An ``unknown`` result lets the write proceed; a real mismatch then
    surfaces through store_errors.
    """
    readiness = get_credit_schema_readiness()
    if readiness.status == READINESS_MISSING:
        raise SchemaMismatchError(CREDIT_FEATURE, readiness.missing_columns)
