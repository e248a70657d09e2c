# Overview: Imports a JSON export of the previous store through the transaction normalizer.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from ..connectivity import requires_online
from ..errors import ValidationError
from ..extensions import db
from ..models import CLOSE_REASON_FORCED_BY_ADMIN, CLOSE_REASON_NORMAL, Shift, TransactionRecord
from ..money import to_amount
from ..time_utils import parse_iso_datetime, utcnow
from .payment_methods import resolve_payment_method
from .store import store_errors
from .transaction_normalizer import (
    TYPE_CREDIT_SALE,
    TYPE_RETURN,
    CreditSplit,
    InsuranceSplit,
    normalize_transaction,
)

logger = logging.getLogger(__name__)

_SHIFT_ID_KEYS = ("id", "shift_id", "uuid")
_CLOSE_REASONS = {CLOSE_REASON_NORMAL, CLOSE_REASON_FORCED_BY_ADMIN}


@dataclass
class ImportResult:
    shifts_imported: int = 0
    shifts_skipped: int = 0
    transactions_imported: int = 0
    transactions_skipped: int = 0
    # Legacy ids whose payment method was unrecognized and filed as cash
    method_fallbacks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "shifts_imported": self.shifts_imported,
            "shifts_skipped": self.shifts_skipped,
            "transactions_imported": self.transactions_imported,
            "transactions_skipped": self.transactions_skipped,
            "method_fallbacks": list(self.method_fallbacks),
        }


def load_export(text: str) -> dict[str, Any]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Export is not valid JSON: {exc.msg}")
    if not isinstance(payload, dict):
        raise ValidationError("Export must be a JSON object with 'shifts' and 'transactions'")
    return payload


def _legacy_id(row: dict[str, Any], keys=_SHIFT_ID_KEYS) -> str:
    for key in keys:
        if row.get(key) not in (None, ""):
            return str(row[key])
    raise ValidationError("Every exported row needs an id")


def _optional_amount(value):
    return None if value in (None, "") else to_amount(value)


def _shift_from_row(row: dict[str, Any]) -> Shift:
    cashier_id = row.get("cashier_id") or row.get("user_id") or row.get("cashier")
    started_at = parse_iso_datetime(row.get("started_at") or row.get("start_time"))
    if not cashier_id or started_at is None:
        raise ValidationError(f"Shift {_legacy_id(row)} is missing cashier or start time")

    ended_at = parse_iso_datetime(row.get("ended_at") or row.get("end_time"))
    close_reason = row.get("close_reason")
    if ended_at is not None and close_reason not in _CLOSE_REASONS:
        close_reason = CLOSE_REASON_NORMAL

    return Shift(
        cashier_id=str(cashier_id),
        started_at=started_at,
        ended_at=ended_at,
        active_marker=True if ended_at is None else None,
        expected_cash=_optional_amount(row.get("expected_cash")),
        actual_cash=_optional_amount(row.get("actual_cash")),
        cash_difference=_optional_amount(row.get("cash_difference")),
        closed_by=row.get("closed_by") if ended_at is not None else None,
        close_reason=close_reason if ended_at is not None else None,
        legacy_id=_legacy_id(row),
    )


def _record_from_row(row: dict[str, Any], shift_id: int) -> TransactionRecord:
    tx = normalize_transaction(row)

    record = TransactionRecord(
        shift_id=shift_id,
        amount=tx.amount,
        type=tx.type,
        payment_method=tx.payment_method,
        status=tx.status,
        description=tx.description,
        created_by=tx.created_by or "import",
        created_at=tx.created_at or utcnow(),
        approved_by=tx.approved_by,
        approved_at=tx.approved_at,
        legacy_id=_legacy_id(row, ("id", "uuid")),
    )

    if isinstance(tx.split, InsuranceSplit):
        record.insurer_id = tx.split.insurer_id
        record.insurer_name = tx.split.insurer_name
        record.card_id = tx.split.card_id
        record.coverage_percent = tx.split.coverage_percent
        record.amount_covered_by_insurance = tx.split.amount_covered
        record.insurer_payment_status = tx.split.insurer_payment_status
        record.insurer_paid_by = tx.split.insurer_paid_by
        record.insurer_paid_at = tx.split.insurer_paid_at
    elif isinstance(tx.split, CreditSplit):
        if not tx.split.customer_name:
            raise ValidationError(f"Credit sale {record.legacy_id} has no customer name")
        record.customer_name = tx.split.customer_name
        record.customer_phone = tx.split.customer_phone
        record.payment_status = tx.split.payment_status
        record.paid_by = tx.split.paid_by
        record.paid_at = tx.split.paid_at

    return record


@requires_online("import_legacy_export")
def import_legacy_export(payload: dict[str, Any]) -> ImportResult:
    """
    Import shifts and transactions from an export of the previous store.

    Rows already imported (same legacy id) are skipped, so re-running an
    import is safe. Everything is committed once at the end; a failure
    leaves the store untouched.
    """
    shifts = payload.get("shifts") or []
    transactions = payload.get("transactions") or []
    if not isinstance(shifts, list) or not isinstance(transactions, list):
        raise ValidationError("'shifts' and 'transactions' must be lists")

    result = ImportResult()

    with store_errors("import_legacy_export"):
        shift_ids: dict[str, int] = {
            legacy: local
            for legacy, local in db.session.query(Shift.legacy_id, Shift.id).filter(Shift.legacy_id.isnot(None))
        }
        for row in shifts:
            legacy = _legacy_id(row)
            if legacy in shift_ids:
                result.shifts_skipped += 1
                continue
            shift = _shift_from_row(row)
            db.session.add(shift)
            db.session.flush()
            shift_ids[legacy] = shift.id
            result.shifts_imported += 1

        tx_ids: dict[str, int] = {
            legacy: local
            for legacy, local in db.session.query(TransactionRecord.legacy_id, TransactionRecord.id)
            .filter(TransactionRecord.legacy_id.isnot(None))
        }

        # Originals first so returns can point at them
        ordered = sorted(transactions, key=lambda r: normalize_transaction(r).type == TYPE_RETURN)
        for row in ordered:
            legacy = _legacy_id(row, ("id", "uuid"))
            if legacy in tx_ids:
                result.transactions_skipped += 1
                continue

            shift_legacy = row.get("shift_id") or row.get("garde_id")
            if shift_legacy is None or str(shift_legacy) not in shift_ids:
                raise ValidationError(f"Transaction {legacy} references unknown shift {shift_legacy}")

            record = _record_from_row(row, shift_ids[str(shift_legacy)])
            original_legacy = row.get("original_transaction_id") or row.get("return_of")
            if original_legacy is not None:
                record.original_transaction_id = tx_ids.get(str(original_legacy))

            if resolve_payment_method(row.get("payment_method")).is_fallback and record.type != TYPE_CREDIT_SALE:
                result.method_fallbacks.append(legacy)

            db.session.add(record)
            db.session.flush()
            tx_ids[legacy] = record.id
            result.transactions_imported += 1

        db.session.commit()

    logger.info(
        "Legacy import: %s shifts (%s skipped), %s transactions (%s skipped), %s method fallbacks",
        result.shifts_imported, result.shifts_skipped,
        result.transactions_imported, result.transactions_skipped,
        len(result.method_fallbacks),
    )
    return result
