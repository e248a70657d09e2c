"""
Shift Lifecycle Service

WHY: A shift (garde) is the period during which one cashier is accountable
for the single register. Every ledger entry belongs to a shift.

DESIGN PRINCIPLES:
- One open shift system-wide at a time
- Open -> Closed only; closed shifts are never reopened or deleted
- Duration is derived on read, never stored

SINGLE ACTIVE SHIFT: start_shift() checks for an open shift first so the
common case gets a friendly ActiveShiftConflict without touching the
constraint. The check is advisory; the unique constraint on
Shift.active_marker decides races between sessions, and its violation is
reported as the same ActiveShiftConflict.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..connectivity import requires_online
from ..errors import ActiveShiftConflict, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Shift
from ..time_utils import utcnow, to_utc_naive
from ..validation import require_text
from .store import lock_for_update, store_errors

logger = logging.getLogger(__name__)


# =============================================================================
# QUERIES
# =============================================================================

def get_active_shift() -> Shift | None:
    """The open shift, if any."""
    return db.session.query(Shift).filter(Shift.ended_at.is_(None)).first()


def get_shift(shift_id: int) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found", shift_id=shift_id)
    return shift


def list_shifts(
    *,
    cashier_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
) -> list[Shift]:
    """Most recent first; start/end filter on started_at."""
    if limit <= 0:
        raise ValidationError("limit must be > 0")

    query = db.session.query(Shift)
    if cashier_id:
        query = query.filter(Shift.cashier_id == cashier_id)
    if start is not None:
        query = query.filter(Shift.started_at >= to_utc_naive(start))
    if end is not None:
        query = query.filter(Shift.started_at <= to_utc_naive(end))
    return query.order_by(Shift.started_at.desc(), Shift.id.desc()).limit(limit).all()


def require_open_shift(shift_id: int, *, for_update: bool = False) -> Shift:
    """
    Load a shift and insist it is still open.

    Raises:
        NotFoundError: unknown shift
        InvalidStateError: shift already closed
    """
    query = db.session.query(Shift).filter_by(id=shift_id)
    if for_update:
        query = lock_for_update(query).populate_existing()
    shift = query.first()

    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found", shift_id=shift_id)
    if not shift.is_active:
        raise InvalidStateError(f"Shift {shift_id} is already closed", shift_id=shift_id)
    return shift


# =============================================================================
# LIFECYCLE
# =============================================================================

@requires_online("start_shift")
def start_shift(cashier_id: str, *, now: datetime | None = None) -> Shift:
    """
    Open a new shift for a cashier.

    Raises:
        ValidationError: blank cashier id
        ActiveShiftConflict: another shift is open (pre-check or constraint)
        OfflineError: connectivity gate is closed
    """
    cashier_id = require_text(cashier_id, "cashier_id")

    existing = get_active_shift()
    if existing is not None:
        logger.warning(
            "Refused shift start for %s: shift %s open for %s",
            cashier_id, existing.id, existing.cashier_id,
        )
        raise ActiveShiftConflict(existing.cashier_id, existing.started_at, existing.id)

    shift = Shift(
        cashier_id=cashier_id,
        started_at=to_utc_naive(now) if now is not None else utcnow(),
        ended_at=None,
        active_marker=True,
        expected_cash=0,
    )

    with store_errors("start_shift"):
        db.session.add(shift)
        db.session.commit()

    logger.info("Shift %s started by %s", shift.id, cashier_id)
    return shift


# =============================================================================
# DURATION
# =============================================================================

def shift_duration(shift: Shift, *, now: datetime | None = None) -> timedelta:
    """now - started_at while open, ended_at - started_at once closed."""
    end = shift.ended_at if shift.ended_at is not None else (to_utc_naive(now) if now else utcnow())
    started = to_utc_naive(shift.started_at)
    return max(timedelta(0), to_utc_naive(end) - started)


def format_duration(duration: timedelta) -> str:
    """HH:MM:SS; hours grow past 24 rather than rolling into days."""
    total = int(duration.total_seconds())
    if total < 0:
        total = 0
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
