# Overview: Row locking and translation of store failures into register-core errors.

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import (
    ActiveShiftConflict,
    CashRegisterError,
    InvalidStateError,
    SchemaMismatchError,
    StoreError,
)
from ..extensions import db
from ..models import Shift

logger = logging.getLogger(__name__)

ACTIVE_SHIFT_CONSTRAINT = "uq_shifts_single_active"

_MISSING_COLUMN_MARKERS = ("no such column", "has no column", "does not exist")
_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def is_active_shift_violation(exc: IntegrityError) -> bool:
    """True when the insert lost the race for the single open shift."""
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return ACTIVE_SHIFT_CONSTRAINT in text or "shifts.active_marker" in text


def _conflict_from_holder() -> ActiveShiftConflict:
    holder = db.session.query(Shift).filter(Shift.ended_at.is_(None)).first()
    if holder is None:
        # Holder closed between the failed insert and this read
        return ActiveShiftConflict(None, None)
    return ActiveShiftConflict(holder.cashier_id, holder.started_at, holder.id)


def _outcome_unknown(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


@contextmanager
def store_errors(operation: str, *, feature: str | None = None):
    """
    Roll back and translate SQLAlchemy failures raised inside the block.

    - single-active-shift constraint -> ActiveShiftConflict naming the holder
    - optimistic-lock loss -> InvalidStateError (someone else changed the row)
    - missing column/table -> SchemaMismatchError
    - timeout / dropped connection -> StoreError(outcome_unknown=True)
    - anything else -> StoreError

    Register-core errors pass through untouched. The constraint is
    authoritative: it fires even when the caller's pre-check saw no open shift.
    """
    try:
        yield
    except CashRegisterError:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        logger.info("%s lost an optimistic-lock race: %s", operation, exc)
        raise InvalidStateError(f"{operation}: record was modified concurrently; reload and try again") from exc
    except IntegrityError as exc:
        db.session.rollback()
        if is_active_shift_violation(exc):
            conflict = _conflict_from_holder()
            logger.warning("%s refused by the store: %s", operation, conflict.message)
            raise conflict from exc
        logger.warning("%s violated a store constraint: %s", operation, exc.orig)
        raise StoreError(f"{operation} rejected by the store: constraint violation") from exc
    except (OperationalError, ProgrammingError) as exc:
        db.session.rollback()
        text = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in text for marker in _MISSING_COLUMN_MARKERS):
            logger.error("%s needs a migration: %s", operation, exc.orig)
            raise SchemaMismatchError(feature or operation) from exc
        unknown = _outcome_unknown(exc)
        logger.error("%s failed in the store (outcome_unknown=%s): %s", operation, unknown, exc.orig)
        raise StoreError(f"{operation} failed: database unavailable", outcome_unknown=unknown) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        unknown = _outcome_unknown(exc)
        logger.exception("%s failed in the store", operation)
        raise StoreError(f"{operation} failed", outcome_unknown=unknown) from exc
