"""
Shift Reconciliation Service

WHY: At the end of a shift the cashier counts the drawer. The count is
compared to the cash the ledger says should be there, and the closing
figures are written onto the shift for the audit trail.

RULES:
- expected = cash sales (patient share) - approved cash expenses - cash returns
- difference = counted - expected
- |difference| < 0.01 is BALANCED, negative is SHORTAGE, positive is SURPLUS
- Closing never fails because of the outcome; discrepancies are recorded

This module is read-only over transactions and the only writer of a shift's
closing fields.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..connectivity import requires_online
from ..extensions import db
from ..models import CLOSE_REASON_FORCED_BY_ADMIN, CLOSE_REASON_NORMAL, Shift
from ..money import ZERO, is_balanced, to_amount
from ..time_utils import utcnow, to_utc_naive, to_utc_z
from ..validation import require_non_negative_amount, require_text
from . import ledger_service
from .shift_service import get_shift, require_open_shift
from .store import store_errors

logger = logging.getLogger(__name__)

OUTCOME_BALANCED = "BALANCED"
OUTCOME_SHORTAGE = "SHORTAGE"
OUTCOME_SURPLUS = "SURPLUS"


@dataclass(frozen=True)
class ReconciliationSummary:
    shift_id: int
    cash_total: Decimal
    mobile_money_total: Decimal
    insurance_total: Decimal
    credit_outstanding_total: Decimal
    expense_total: Decimal
    returns_total: Decimal
    expected_cash: Decimal
    net_cash_to_remit: Decimal
    counted_cash: Decimal | None = None
    cash_difference: Decimal | None = None
    outcome: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    close_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "cash_total": self.cash_total,
            "mobile_money_total": self.mobile_money_total,
            "insurance_total": self.insurance_total,
            "credit_outstanding_total": self.credit_outstanding_total,
            "expense_total": self.expense_total,
            "returns_total": self.returns_total,
            "expected_cash": self.expected_cash,
            "net_cash_to_remit": self.net_cash_to_remit,
            "counted_cash": self.counted_cash,
            "cash_difference": self.cash_difference,
            "outcome": self.outcome,
            "closed_at": to_utc_z(self.closed_at),
            "closed_by": self.closed_by,
            "close_reason": self.close_reason,
        }


def classify_difference(difference) -> str:
    difference = to_amount(difference, "cash_difference")
    if is_balanced(difference):
        return OUTCOME_BALANCED
    if difference < ZERO:
        return OUTCOME_SHORTAGE
    return OUTCOME_SURPLUS


def _summarize(shift_id: int) -> ReconciliationSummary:
    transactions = ledger_service.get_shift_transactions(shift_id)

    cash = ledger_service.cash_total(transactions)
    mobile = ledger_service.mobile_money_total(transactions)
    expenses = ledger_service.approved_expense_total(transactions)
    returns = ledger_service.returns_total(transactions)

    return ReconciliationSummary(
        shift_id=shift_id,
        cash_total=cash,
        mobile_money_total=mobile,
        insurance_total=ledger_service.insurance_receivable_total(transactions),
        credit_outstanding_total=sum(ledger_service.credit_outstanding_by_customer(transactions).values(), ZERO),
        expense_total=expenses,
        returns_total=returns,
        expected_cash=ledger_service.expected_cash(transactions),
        net_cash_to_remit=cash + mobile - returns - expenses,
    )


def compute_reconciliation_preview(shift_id: int, counted_cash=None) -> ReconciliationSummary:
    """
    Figures close_shift() would record, without writing anything.

    Works on closed shifts too, which is how a closed shift's report is
    rebuilt.
    """
    shift = get_shift(shift_id)
    summary = _summarize(shift.id)

    if counted_cash is None:
        return summary

    counted = require_non_negative_amount(counted_cash, "counted_cash")
    difference = counted - summary.expected_cash
    return _with_close(summary, counted=counted, difference=difference)


def _with_close(summary: ReconciliationSummary, **values) -> ReconciliationSummary:
    fields = summary.__dict__.copy()
    if "counted" in values:
        fields["counted_cash"] = values.pop("counted")
        fields["cash_difference"] = values.pop("difference")
        fields["outcome"] = classify_difference(fields["cash_difference"])
    fields.update(values)
    return ReconciliationSummary(**fields)


@requires_online("close_shift")
def close_shift(shift_id: int, counted_cash, closed_by: str, *, now: datetime | None = None) -> ReconciliationSummary:
    """
    Close an open shift against the counted drawer.

    Raises:
        ValidationError: negative/invalid count, blank closer
        NotFoundError / InvalidStateError: unknown or already closed shift
        OfflineError / StoreError
    """
    counted = require_non_negative_amount(counted_cash, "counted_cash")
    closed_by = require_text(closed_by, "closed_by")
    ended_at = to_utc_naive(now) if now is not None else utcnow()

    with store_errors("close_shift"):
        shift = require_open_shift(shift_id, for_update=True)
        summary = _summarize(shift.id)
        difference = counted - summary.expected_cash

        shift.ended_at = ended_at
        shift.active_marker = None
        shift.expected_cash = summary.expected_cash
        shift.actual_cash = counted
        shift.cash_difference = difference
        shift.closed_by = closed_by
        shift.close_reason = CLOSE_REASON_NORMAL
        db.session.commit()

    result = _with_close(
        summary,
        counted=counted,
        difference=difference,
        closed_at=ended_at,
        closed_by=closed_by,
        close_reason=CLOSE_REASON_NORMAL,
    )
    log = logger.info if result.outcome == OUTCOME_BALANCED else logger.warning
    log(
        "Shift %s closed by %s: expected=%s counted=%s difference=%s (%s)",
        shift_id, closed_by, summary.expected_cash, counted, difference, result.outcome,
    )
    return result


@requires_online("force_close_shift")
def force_close_shift(shift_id: int, admin_id: str, *, now: datetime | None = None) -> Shift:
    """
    Administrative close of a shift the cashier never closed.

    No count is taken: actual_cash and cash_difference stay NULL and
    close_reason is forced_by_admin. Authorization is the caller's job.
    """
    admin_id = require_text(admin_id, "admin_id")
    ended_at = to_utc_naive(now) if now is not None else utcnow()

    with store_errors("force_close_shift"):
        shift = require_open_shift(shift_id, for_update=True)
        shift.ended_at = ended_at
        shift.active_marker = None
        shift.actual_cash = None
        shift.cash_difference = None
        shift.closed_by = admin_id
        shift.close_reason = CLOSE_REASON_FORCED_BY_ADMIN
        db.session.commit()

    logger.warning("Shift %s (cashier %s) force-closed by %s", shift.id, shift.cashier_id, admin_id)
    return shift
