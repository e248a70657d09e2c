"""
Transaction Ledger Service

WHY: Every movement of money during a shift is a ledger entry: sales
(plain, insured or on credit), expenses, and returns. Shift close and all
reports are computed from these rows, so they are append-only.

DESIGN PRINCIPLES:
- Entries are inserted, never edited; only status flags change
  (expense approval, Returned, credit/insurer Paid)
- A return is a new negative entry plus the Returned flag on the original,
  written in one database transaction
- Every write goes through the connectivity gate and is attempted once
- Reads return canonical ``Transaction`` values from the normalizer

AGGREGATIONS: the *_total functions below are pure functions over an
iterable of Transaction values; they never touch the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import defer

from ..connectivity import requires_online
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import TransactionRecord
from ..money import ZERO, split_by_percentage, to_amount
from ..time_utils import utcnow, to_utc_naive, to_utc_z
from ..validation import (
    MAX_DESCRIPTION_LENGTH,
    optional_text,
    require_positive_amount,
    require_text,
)
from .payment_methods import (
    METHOD_CASH,
    METHOD_CREDIT_DEBT,
    METHOD_MOBILE_MONEY,
    resolve_payment_method,
)
from .schema_service import (
    CREDIT_COLUMNS,
    READINESS_MISSING,
    get_credit_schema_readiness,
    require_credit_schema,
)
from .shift_service import get_active_shift, require_open_shift
from .store import lock_for_update, store_errors
from .transaction_normalizer import (
    PAYMENT_PAID,
    PAYMENT_UNPAID,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_RETURNED,
    TYPE_CREDIT_SALE,
    TYPE_EXPENSE,
    TYPE_RETURN,
    TYPE_SALE,
    CreditSplit,
    InsuranceSplit,
    Transaction,
    customer_key,
    normalize_transaction,
)

logger = logging.getLogger(__name__)

SPLIT_NONE = "none"
SPLIT_INSURANCE = "insurance"
SPLIT_CREDIT = "credit"

# Tenders a cashier can take money in or pay an expense out of
DRAWER_METHODS = [METHOD_CASH, METHOD_MOBILE_MONEY]

# Sales still count toward the drawer after being returned; the return
# entry carries the reversal
_COUNTED_SALE_STATUSES = (STATUS_APPROVED, STATUS_RETURNED)
_RETURNABLE_TYPES = (TYPE_SALE, TYPE_CREDIT_SALE)


def _currency_places() -> int:
    return int(current_app.config.get("CURRENCY_DECIMALS", 0))


def _resolve_actor(value, field: str, fallback: str | None = None) -> str:
    if value is None and fallback is not None:
        return fallback
    return require_text(value, field)


def _strict_method(raw, allowed: list[str]) -> str:
    """Writes only accept recognized labels; the CASH fallback is for old rows."""
    resolution = resolve_payment_method(raw)
    if resolution.is_fallback:
        raise ValidationError(f"Unknown payment method: {raw!r}")
    if resolution.method not in allowed:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(allowed)}",
            payment_method=resolution.method,
        )
    return resolution.method


def _credit_columns_present() -> bool:
    return get_credit_schema_readiness().status != READINESS_MISSING


def _records():
    """TransactionRecord query that leaves out credit columns the store lacks."""
    query = db.session.query(TransactionRecord)
    if not _credit_columns_present():
        query = query.options(*[defer(getattr(TransactionRecord, name)) for name in CREDIT_COLUMNS])
    return query


def _canonical(record: TransactionRecord) -> Transaction:
    return normalize_transaction(record.as_record(with_credit=_credit_columns_present()))


def _load_for_update(transaction_id: int) -> TransactionRecord:
    record = lock_for_update(_records().filter_by(id=transaction_id)).populate_existing().first()
    if record is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    return record


# =============================================================================
# WRITES
# =============================================================================

@requires_online("record_sale")
def record_sale(
    shift_id: int,
    amount,
    method,
    split: Mapping | None = None,
    *,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Transaction:
    """
    Record an approved sale on an open shift.

    Args:
        shift_id: Shift the sale belongs to
        amount: Sale total (> 0)
        method: Tender label; CASH or MOBILE_MONEY, or CREDIT_DEBT with a
            credit split
        split: None, {"type": "insurance", "coverage_percent", "insurer_id",
            "card_id", "insurer_name"?} or {"type": "credit",
            "customer_name", "customer_phone"?}
        created_by: Recording user; defaults to the shift's cashier

    Returns:
        Canonical Transaction (SALE, or CREDIT_SALE for a credit split)

    Raises:
        ValidationError: bad amount, method or split fields
        SchemaMismatchError: credit columns not migrated
        OfflineError / StoreError
    """
    amount = require_positive_amount(amount)
    split = dict(split or {})
    split_type = str(split.get("type") or split.get("kind") or SPLIT_NONE).strip().lower()
    if split_type not in (SPLIT_NONE, SPLIT_INSURANCE, SPLIT_CREDIT):
        raise ValidationError(f"Unknown split type: {split_type}")

    record = TransactionRecord(
        shift_id=shift_id,
        amount=amount,
        status=STATUS_APPROVED,
        created_at=to_utc_naive(now) if now is not None else utcnow(),
    )

    resolution = resolve_payment_method(method)
    is_credit = split_type == SPLIT_CREDIT or (
        split_type == SPLIT_NONE and not resolution.is_fallback and resolution.method == METHOD_CREDIT_DEBT
    )

    if is_credit:
        customer_name = optional_text(split.get("customer_name"), "customer_name", max_length=128)
        if not customer_name:
            raise ValidationError("customer_name is required for a credit sale")
        require_credit_schema()
        record.type = TYPE_CREDIT_SALE
        record.payment_method = METHOD_CREDIT_DEBT
        record.customer_name = customer_name
        record.customer_phone = optional_text(split.get("customer_phone"), "customer_phone", max_length=32)
        record.payment_status = PAYMENT_UNPAID
    else:
        record.type = TYPE_SALE
        record.payment_method = _strict_method(method, DRAWER_METHODS)

    if split_type == SPLIT_INSURANCE:
        insurer_id = optional_text(split.get("insurer_id"), "insurer_id")
        card_id = optional_text(split.get("card_id"), "card_id")
        if not insurer_id or not card_id:
            raise ValidationError("insurer_id and card_id are required for an insured sale")
        if split.get("coverage_percent") is None:
            raise ValidationError("coverage_percent is required for an insured sale")
        covered, _ = split_by_percentage(amount, split["coverage_percent"], _currency_places())
        record.insurer_id = insurer_id
        record.insurer_name = optional_text(split.get("insurer_name"), "insurer_name", max_length=128)
        record.card_id = card_id
        record.coverage_percent = to_amount(split["coverage_percent"], "coverage_percent")
        record.amount_covered_by_insurance = covered
        record.insurer_payment_status = PAYMENT_UNPAID

    record.description = optional_text(split.get("description"), "description", max_length=MAX_DESCRIPTION_LENGTH)

    with store_errors("record_sale", feature="credit_sales" if record.type == TYPE_CREDIT_SALE else None):
        # Locked so a concurrent close cannot summarize without this sale
        shift = require_open_shift(shift_id, for_update=True)
        record.created_by = _resolve_actor(created_by, "created_by", shift.cashier_id)
        db.session.add(record)
        db.session.flush()
        tx = _canonical(record)
        db.session.commit()

    logger.info("Recorded %s %s of %s on shift %s", tx.type, tx.id, tx.amount, shift_id)
    return tx


@requires_online("record_expense")
def record_expense(
    shift_id: int,
    amount,
    description: str,
    method=METHOD_CASH,
    *,
    created_by: str | None = None,
    now: datetime | None = None,
) -> Transaction:
    """Record an expense paid out of the drawer; PENDING until an admin decides."""
    amount = require_positive_amount(amount)
    description = require_text(description, "description", max_length=MAX_DESCRIPTION_LENGTH)
    method = _strict_method(method, DRAWER_METHODS)

    with store_errors("record_expense"):
        shift = require_open_shift(shift_id, for_update=True)
        record = TransactionRecord(
            shift_id=shift.id,
            amount=amount,
            type=TYPE_EXPENSE,
            payment_method=method,
            status=STATUS_PENDING,
            description=description,
            created_by=_resolve_actor(created_by, "created_by", shift.cashier_id),
            created_at=to_utc_naive(now) if now is not None else utcnow(),
        )
        db.session.add(record)
        db.session.flush()
        tx = _canonical(record)
        db.session.commit()

    logger.info("Recorded expense %s of %s on shift %s (pending approval)", tx.id, amount, shift_id)
    return tx


@requires_online("record_return")
def record_return(
    original_transaction_id: int,
    *,
    created_by: str | None = None,
    shift_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Transaction:
    """
    Reverse an approved sale.

    Inserts a RETURN entry with amount = -abs(original.amount) and the
    original's payment method, and flags the original RETURNED. Both
    changes commit together or not at all; the unique constraint on
    original_transaction_id refuses a second reversal.

    The return is booked on ``shift_id`` or, by default, on the open shift.
    """
    if shift_id is None:
        active = get_active_shift()
        if active is None:
            raise InvalidStateError("No open shift to record the return on")
        shift_id = active.id

    with store_errors("record_return"):
        # Shift row first, then the original, the same order close_shift takes
        shift = require_open_shift(shift_id, for_update=True)
        original = _load_for_update(original_transaction_id)
        tx = _canonical(original)

        if tx.type not in _RETURNABLE_TYPES:
            raise InvalidStateError(f"Only sales can be returned (transaction {tx.id} is {tx.type})")
        if tx.status == STATUS_RETURNED:
            raise InvalidStateError(f"Transaction {tx.id} has already been returned")
        if tx.status != STATUS_APPROVED:
            raise InvalidStateError(f"Transaction {tx.id} is {tx.status} and cannot be returned")

        reversal = TransactionRecord(
            shift_id=shift.id,
            amount=-abs(tx.amount),
            type=TYPE_RETURN,
            payment_method=tx.payment_method,
            status=STATUS_APPROVED,
            description=optional_text(reason, "reason", max_length=MAX_DESCRIPTION_LENGTH)
            or f"Return of transaction {tx.id}",
            original_transaction_id=tx.id,
            created_by=_resolve_actor(created_by, "created_by", shift.cashier_id),
            created_at=to_utc_naive(now) if now is not None else utcnow(),
        )

        original.status = STATUS_RETURNED
        db.session.add(reversal)
        db.session.flush()
        result = _canonical(reversal)
        db.session.commit()

    logger.info("Recorded return %s reversing transaction %s on shift %s", result.id, tx.id, shift_id)
    return result


def _decide_expense(transaction_id: int, admin_id: str, new_status: str, now: datetime | None) -> Transaction:
    admin_id = require_text(admin_id, "admin_id")

    with store_errors(f"{new_status.lower()}_expense"):
        record = _load_for_update(transaction_id)
        tx = _canonical(record)

        if tx.type != TYPE_EXPENSE:
            raise InvalidStateError(f"Transaction {tx.id} is a {tx.type}, not an expense")
        if tx.status != STATUS_PENDING:
            raise InvalidStateError(f"Expense {tx.id} is already {tx.status}")

        record.status = new_status
        record.approved_by = admin_id
        record.approved_at = to_utc_naive(now) if now is not None else utcnow()
        db.session.flush()
        decided = _canonical(record)
        db.session.commit()

    logger.info("Expense %s %s by %s", transaction_id, new_status.lower(), admin_id)
    return decided


@requires_online("approve_expense")
def approve_expense(transaction_id: int, admin_id: str, *, now: datetime | None = None) -> Transaction:
    """PENDING -> APPROVED. Terminal."""
    return _decide_expense(transaction_id, admin_id, STATUS_APPROVED, now)


@requires_online("reject_expense")
def reject_expense(transaction_id: int, admin_id: str, *, now: datetime | None = None) -> Transaction:
    """PENDING -> REJECTED. Terminal."""
    return _decide_expense(transaction_id, admin_id, STATUS_REJECTED, now)


@requires_online("settle_credit")
def settle_credit(key: str, admin_id: str, *, now: datetime | None = None) -> list[int]:
    """
    Mark every unpaid credit sale of one customer as paid.

    ``key`` is a customer key as produced by customer_key(); the name and
    phone are normalized again so "Awa Diallo::620 00 00 00" also matches.

    WHY one UPDATE: all rows flip in a single statement and commit, so no
    reader ever observes a partially settled debt. Rows settled concurrently
    by someone else are skipped by the payment_status guard and are not
    reported.

    Returns:
        Ids of the transactions this call flipped to PAID
    """
    admin_id = require_text(admin_id, "admin_id")
    name, _, phone = str(key or "").partition("::")
    target = customer_key(name, phone)
    if target == "::":
        raise ValidationError("customer key is required")

    require_credit_schema()

    ids = [
        tx.id for tx in _outstanding_credit()
        if tx.split.customer_key == target
    ]
    if not ids:
        raise NotFoundError("No outstanding credit for this customer", customer_key=target)

    paid_at = to_utc_naive(now) if now is not None else utcnow()
    with store_errors("settle_credit", feature="credit_sales"):
        result = db.session.execute(
            update(TransactionRecord)
            .where(TransactionRecord.id.in_(ids))
            .where(TransactionRecord.type == TYPE_CREDIT_SALE)
            .where(TransactionRecord.payment_status == PAYMENT_UNPAID)
            .values(
                payment_status=PAYMENT_PAID,
                paid_by=admin_id,
                paid_at=paid_at,
                version_id=TransactionRecord.version_id + 1,
            )
            .returning(TransactionRecord.id)
            .execution_options(synchronize_session=False)
        )
        flipped = set(result.scalars())
        if not flipped:
            raise NotFoundError("No outstanding credit for this customer", customer_key=target)
        db.session.commit()
        db.session.expire_all()

    settled = [tx_id for tx_id in ids if tx_id in flipped]
    if len(settled) != len(ids):
        logger.warning("settle_credit: %s of %s rows were already settled", len(ids) - len(settled), len(ids))
    logger.info("Settled credit for %s (%s entries) by %s", target, len(settled), admin_id)
    return settled


@requires_online("settle_insurance_claims")
def settle_insurance_claims(
    insurer_id: str,
    admin_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    now: datetime | None = None,
) -> list[int]:
    """Mark the insurer's unpaid approved claims (optionally within a period) as paid."""
    insurer_id = require_text(insurer_id, "insurer_id")
    admin_id = require_text(admin_id, "admin_id")

    ids = [
        tx.id for tx in list_insurance_claims(insurer_id=insurer_id, start=start, end=end)
        if tx.split.insurer_payment_status == PAYMENT_UNPAID
    ]
    if not ids:
        raise NotFoundError("No unpaid claims for this insurer", insurer_id=insurer_id)

    paid_at = to_utc_naive(now) if now is not None else utcnow()
    with store_errors("settle_insurance_claims"):
        result = db.session.execute(
            update(TransactionRecord)
            .where(TransactionRecord.id.in_(ids))
            .where(TransactionRecord.status == STATUS_APPROVED)
            .where(
                (TransactionRecord.insurer_payment_status == PAYMENT_UNPAID)
                | TransactionRecord.insurer_payment_status.is_(None)
            )
            .values(
                insurer_payment_status=PAYMENT_PAID,
                insurer_paid_by=admin_id,
                insurer_paid_at=paid_at,
                version_id=TransactionRecord.version_id + 1,
            )
            .returning(TransactionRecord.id)
            .execution_options(synchronize_session=False)
        )
        flipped = set(result.scalars())
        if not flipped:
            raise NotFoundError("No unpaid claims for this insurer", insurer_id=insurer_id)
        db.session.commit()
        db.session.expire_all()

    settled = [tx_id for tx_id in ids if tx_id in flipped]
    logger.info("Settled %s claims for insurer %s by %s", len(settled), insurer_id, admin_id)
    return settled


# =============================================================================
# READS
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    record = _records().filter_by(id=transaction_id).first()
    if record is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", transaction_id=transaction_id)
    return _canonical(record)


def get_shift_transactions(shift_id: int) -> list[Transaction]:
    """All entries of a shift in recording order."""
    records = (
        _records()
        .filter_by(shift_id=shift_id)
        .order_by(TransactionRecord.created_at.asc(), TransactionRecord.id.asc())
        .all()
    )
    return [_canonical(record) for record in records]


def _outstanding_credit() -> list[Transaction]:
    records = (
        _records()
        .filter(TransactionRecord.type == TYPE_CREDIT_SALE)
        .filter(TransactionRecord.status == STATUS_APPROVED)
        .order_by(TransactionRecord.created_at.asc(), TransactionRecord.id.asc())
        .all()
    )
    txs = [_canonical(record) for record in records]
    return [tx for tx in txs if isinstance(tx.split, CreditSplit) and tx.split.payment_status == PAYMENT_UNPAID]


@dataclass
class CreditDebt:
    customer_key: str
    customer_name: str
    customer_phone: str | None
    outstanding: Decimal = ZERO
    entries: int = 0
    oldest_at: datetime | None = None
    transaction_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "customer_key": self.customer_key,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "outstanding": self.outstanding,
            "entries": self.entries,
            "oldest_at": to_utc_z(self.oldest_at),
            "transaction_ids": list(self.transaction_ids),
        }


def list_credit_debts() -> list[CreditDebt]:
    """Outstanding debts per customer, largest first."""
    debts: dict[str, CreditDebt] = {}
    for tx in _outstanding_credit():
        key = tx.split.customer_key
        debt = debts.get(key)
        if debt is None:
            debt = debts[key] = CreditDebt(key, tx.split.customer_name, tx.split.customer_phone)
        debt.outstanding += tx.amount
        debt.entries += 1
        debt.transaction_ids.append(tx.id)
        if tx.created_at is not None and (debt.oldest_at is None or tx.created_at < debt.oldest_at):
            debt.oldest_at = tx.created_at
    return sorted(debts.values(), key=lambda d: (-d.outstanding, d.customer_key))


def list_insurance_claims(
    *,
    insurer_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Transaction]:
    """Approved insured sales, optionally for one insurer and a created_at window."""
    query = (
        _records()
        .filter(TransactionRecord.type == TYPE_SALE)
        .filter(TransactionRecord.status == STATUS_APPROVED)
        .filter(TransactionRecord.insurer_id.isnot(None))
    )
    if insurer_id:
        query = query.filter(TransactionRecord.insurer_id == insurer_id)
    if start is not None:
        query = query.filter(TransactionRecord.created_at >= to_utc_naive(start))
    if end is not None:
        query = query.filter(TransactionRecord.created_at <= to_utc_naive(end))

    records = query.order_by(TransactionRecord.created_at.asc(), TransactionRecord.id.asc()).all()
    return [tx for tx in map(_canonical, records) if isinstance(tx.split, InsuranceSplit)]


# =============================================================================
# AGGREGATIONS (pure)
# =============================================================================

def _sales(transactions: Iterable[Transaction], method: str) -> Iterable[Transaction]:
    return (
        tx for tx in transactions
        if tx.type == TYPE_SALE and tx.payment_method == method and tx.status in _COUNTED_SALE_STATUSES
    )


def cash_total(transactions: Iterable[Transaction]) -> Decimal:
    """Patient share of cash sales (insurer share excluded)."""
    return sum((tx.patient_part for tx in _sales(transactions, METHOD_CASH)), ZERO)


def mobile_money_total(transactions: Iterable[Transaction]) -> Decimal:
    return sum((tx.patient_part for tx in _sales(transactions, METHOD_MOBILE_MONEY)), ZERO)


def insurance_receivable_total(transactions: Iterable[Transaction]) -> Decimal:
    """Insurer share of approved (not returned) insured sales."""
    return sum(
        (tx.insurance_covered_amount for tx in transactions
         if tx.type == TYPE_SALE and tx.status == STATUS_APPROVED and tx.is_insurance),
        ZERO,
    )


def credit_outstanding_by_customer(transactions: Iterable[Transaction]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for tx in transactions:
        if tx.type != TYPE_CREDIT_SALE or tx.status != STATUS_APPROVED or not tx.is_credit:
            continue
        if tx.split.payment_status != PAYMENT_UNPAID:
            continue
        key = tx.split.customer_key
        totals[key] = totals.get(key, ZERO) + tx.amount
    return totals


def approved_expense_total(transactions: Iterable[Transaction], method: str | None = None) -> Decimal:
    return sum(
        (tx.amount for tx in transactions
         if tx.type == TYPE_EXPENSE and tx.status == STATUS_APPROVED
         and (method is None or tx.payment_method == method)),
        ZERO,
    )


def returns_total(transactions: Iterable[Transaction], method: str | None = None) -> Decimal:
    """Money handed back to customers; credit returns only cancel a debt."""
    return sum(
        (abs(tx.amount) for tx in transactions
         if tx.type == TYPE_RETURN and tx.payment_method != METHOD_CREDIT_DEBT
         and (method is None or tx.payment_method == method)),
        ZERO,
    )


def expected_cash(transactions: Iterable[Transaction]) -> Decimal:
    """
    Cash that should be in the drawer:
    cash sales (patient share) - approved cash expenses - cash returns.
    Credit sales move no cash.
    """
    transactions = list(transactions)
    return (
        cash_total(transactions)
        - approved_expense_total(transactions, METHOD_CASH)
        - returns_total(transactions, METHOD_CASH)
    )
