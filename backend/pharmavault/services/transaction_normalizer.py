# Overview: Converts persisted transaction rows of any schema generation into the canonical Transaction value.

"""
Transaction Normalizer

WHY: Rows written by older versions of the till use other column names
(insurance_id / insurance_percentage / payment_paid_by ...), French labels
("recette", "dépense", "validé", "Dette Totale") and a boolean is_approved
flag instead of a status. This module is the only place that knows about
those shapes; every other component works on ``Transaction``.

DERIVATION RULES:
- type: mapped case/accent-insensitively; unknown -> SALE
- status: explicit status -> legacy is_approved flag -> type default
  (EXPENSE -> PENDING, everything else -> APPROVED)
- split: CREDIT_SALE carries a CreditSplit; a sale with insurer data carries
  an InsuranceSplit; everything else a PlainSplit. The two groups can never
  coexist on one value.
- patient_part: for SALE, max(0, amount - covered); otherwise amount.

normalize_transaction(normalize_transaction(x)) == normalize_transaction(x).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Union

from ..errors import ValidationError
from ..money import ZERO, to_amount, split_by_percentage
from ..time_utils import parse_iso_datetime, to_utc_naive, to_utc_z
from .payment_methods import (
    METHOD_CREDIT_DEBT,
    normalize_payment_method,
    slugify_label,
)

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSACTION TYPES / STATUSES (CONSTANTS)
# =============================================================================

TYPE_SALE = "SALE"
TYPE_EXPENSE = "EXPENSE"
TYPE_RETURN = "RETURN"
TYPE_CREDIT_SALE = "CREDIT_SALE"

VALID_TRANSACTION_TYPES = [TYPE_SALE, TYPE_EXPENSE, TYPE_RETURN, TYPE_CREDIT_SALE]
TRANSACTION_TYPE_FALLBACK = TYPE_SALE

STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_RETURNED = "RETURNED"

VALID_STATUSES = [STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_RETURNED]

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PAID = "PAID"


_TYPE_ALIASES = {
    "sale": TYPE_SALE,
    "recette": TYPE_SALE,
    "income": TYPE_SALE,
    "vente": TYPE_SALE,
    "expense": TYPE_EXPENSE,
    "depense": TYPE_EXPENSE,
    "sortie": TYPE_EXPENSE,
    "return": TYPE_RETURN,
    "retour": TYPE_RETURN,
    "refund": TYPE_RETURN,
    "remboursement": TYPE_RETURN,
    "credit_sale": TYPE_CREDIT_SALE,
    "credit": TYPE_CREDIT_SALE,
    "vente_credit": TYPE_CREDIT_SALE,
}

_STATUS_ALIASES = {
    "pending": STATUS_PENDING,
    "en_attente": STATUS_PENDING,
    "approved": STATUS_APPROVED,
    "valide": STATUS_APPROVED,
    "validated": STATUS_APPROVED,
    "rejected": STATUS_REJECTED,
    "rejete": STATUS_REJECTED,
    "returned": STATUS_RETURNED,
    "retourne": STATUS_RETURNED,
    "rembourse": STATUS_RETURNED,
}

_PAYMENT_STATUS_ALIASES = {
    "unpaid": PAYMENT_UNPAID,
    "dette_totale": PAYMENT_UNPAID,
    "impaye": PAYMENT_UNPAID,
    "paid": PAYMENT_PAID,
    "paye": PAYMENT_PAID,
}

_TRUE_FLAGS = {"1", "true", "t", "yes", "oui"}
_FALSE_FLAGS = {"0", "false", "f", "no", "non"}


# =============================================================================
# CANONICAL VALUE
# =============================================================================

@dataclass(frozen=True)
class PlainSplit:
    kind: str = field(default="none", init=False)


@dataclass(frozen=True)
class InsuranceSplit:
    insurer_id: str | None
    card_id: str | None
    coverage_percent: Decimal
    amount_covered: Decimal
    insurer_name: str | None = None
    insurer_payment_status: str = PAYMENT_UNPAID
    insurer_paid_by: str | None = None
    insurer_paid_at: datetime | None = None
    kind: str = field(default="insurance", init=False)


@dataclass(frozen=True)
class CreditSplit:
    customer_name: str
    customer_phone: str | None
    payment_status: str = PAYMENT_UNPAID
    paid_by: str | None = None
    paid_at: datetime | None = None
    kind: str = field(default="credit", init=False)

    @property
    def customer_key(self) -> str:
        return customer_key(self.customer_name, self.customer_phone)


Split = Union[PlainSplit, InsuranceSplit, CreditSplit]


@dataclass(frozen=True)
class Transaction:
    id: int | None
    shift_id: int | None
    amount: Decimal
    type: str
    payment_method: str
    status: str
    split: Split = field(default_factory=PlainSplit)
    description: str | None = None
    original_transaction_id: int | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None

    @property
    def insurance_covered_amount(self) -> Decimal:
        if isinstance(self.split, InsuranceSplit):
            return self.split.amount_covered
        return ZERO

    @property
    def patient_part(self) -> Decimal:
        if self.type == TYPE_SALE:
            return max(ZERO, self.amount - self.insurance_covered_amount)
        return self.amount

    @property
    def is_insurance(self) -> bool:
        return isinstance(self.split, InsuranceSplit)

    @property
    def is_credit(self) -> bool:
        return isinstance(self.split, CreditSplit)

    def to_dict(self) -> dict:
        """Flat canonical record; feeding it back to the normalizer is a no-op."""
        data = {
            "id": self.id,
            "shift_id": self.shift_id,
            "amount": self.amount,
            "type": self.type,
            "payment_method": self.payment_method,
            "status": self.status,
            "description": self.description,
            "original_transaction_id": self.original_transaction_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "patient_part": self.patient_part,
            "insurance_covered_amount": self.insurance_covered_amount,
            "split": self.split.kind,
        }
        if isinstance(self.split, InsuranceSplit):
            split = asdict(self.split)
            split.pop("kind")
            split["insurer_paid_at"] = to_utc_z(split["insurer_paid_at"])
            split["amount_covered_by_insurance"] = split.pop("amount_covered")
            data.update(split)
        elif isinstance(self.split, CreditSplit):
            split = asdict(self.split)
            split.pop("kind")
            split["paid_at"] = to_utc_z(split["paid_at"])
            data.update(split)
        return data


# =============================================================================
# HELPERS
# =============================================================================

def customer_key(name: str | None, phone: str | None) -> str:
    """Grouping key for credit debts: lower(trim(name)) + phone without spaces."""
    normalized_name = " ".join(str(name or "").split()).lower()
    normalized_phone = "".join(str(phone or "").split())
    return f"{normalized_name}::{normalized_phone}"


def _first(raw: Mapping[str, Any], *keys: str):
    """First key present with a non-blank value."""
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def _text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _datetime(value) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        logger.debug("Unparseable timestamp %r ignored", value)
        return None


def _int_or_none(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_amount(value) -> Decimal | None:
    if value is None:
        return None
    try:
        return to_amount(value)
    except ValidationError:
        return None


def _flag(value) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    return None


def normalize_transaction_type(raw) -> str:
    """Total function; unknown or missing types are sales."""
    resolved = _TYPE_ALIASES.get(slugify_label(raw))
    if resolved is None:
        if raw not in (None, ""):
            logger.debug("Unrecognized transaction type %r; falling back to %s", raw, TRANSACTION_TYPE_FALLBACK)
        return TRANSACTION_TYPE_FALLBACK
    return resolved


def normalize_status(raw_status, approval_flag, tx_type: str) -> str:
    """Explicit status, then legacy approval flag, then the type default."""
    resolved = _STATUS_ALIASES.get(slugify_label(raw_status))
    if resolved is not None:
        return resolved

    flag = _flag(approval_flag)
    if flag is True:
        return STATUS_APPROVED
    if flag is False:
        return STATUS_PENDING

    # Only expenses need sign-off
    return STATUS_PENDING if tx_type == TYPE_EXPENSE else STATUS_APPROVED


def normalize_payment_status(raw) -> str:
    return _PAYMENT_STATUS_ALIASES.get(slugify_label(raw), PAYMENT_UNPAID)


def _insurance_split(raw: Mapping[str, Any], amount: Decimal) -> InsuranceSplit | None:
    insurer_id = _text(_first(raw, "insurer_id", "insurance_id"))
    insurer_name = _text(_first(raw, "insurer_name", "insurance_name"))
    card_id = _text(_first(raw, "card_id", "insurance_card_id"))
    coverage = _optional_amount(_first(raw, "coverage_percent", "insurance_percentage", "coverage_percentage"))
    covered = _optional_amount(_first(raw, "amount_covered_by_insurance", "insurance_amount"))

    # Older exports write 0 instead of NULL on uninsured sales
    has_figures = bool(coverage) or bool(covered)
    if not (insurer_id or insurer_name or card_id or has_figures):
        return None

    if coverage is not None:
        coverage = min(max(coverage, ZERO), Decimal("100.00"))

    if covered is None:
        covered = split_by_percentage(amount, coverage)[0] if coverage is not None else ZERO
    covered = min(max(covered, ZERO), abs(amount))

    if coverage is None:
        coverage = (covered * Decimal("100") / amount).quantize(Decimal("0.01")) if amount else ZERO

    return InsuranceSplit(
        insurer_id=insurer_id,
        card_id=card_id,
        coverage_percent=coverage,
        amount_covered=covered,
        insurer_name=insurer_name,
        insurer_payment_status=normalize_payment_status(raw.get("insurer_payment_status", raw.get("insurance_payment_status"))),
        insurer_paid_by=_text(_first(raw, "insurer_paid_by", "insurance_paid_by")),
        insurer_paid_at=_datetime(_first(raw, "insurer_paid_at", "insurance_paid_at")),
    )


def _credit_split(raw: Mapping[str, Any]) -> CreditSplit:
    return CreditSplit(
        customer_name=_text(raw.get("customer_name")) or "",
        customer_phone=_text(raw.get("customer_phone")),
        payment_status=normalize_payment_status(raw.get("payment_status")),
        paid_by=_text(_first(raw, "paid_by", "payment_paid_by")),
        paid_at=_datetime(_first(raw, "paid_at", "payment_paid_at")),
    )


# =============================================================================
# ENTRY POINT
# =============================================================================

def normalize_transaction(raw: Union[Mapping[str, Any], Transaction]) -> Transaction:
    """
    Build the canonical Transaction from a raw record.

    Accepts a mapping in any known schema generation (including the output
    of Transaction.to_dict() and TransactionRecord.as_record()) or an
    already-canonical Transaction, which is returned unchanged.
    """
    if isinstance(raw, Transaction):
        return raw
    if hasattr(raw, "as_record"):
        raw = raw.as_record()

    tx_type = normalize_transaction_type(_first(raw, "type", "transaction_type", "kind"))
    amount = to_amount(raw.get("amount") if raw.get("amount") is not None else 0)

    method_raw = _first(raw, "payment_method", "method")
    if tx_type == TYPE_CREDIT_SALE:
        method = METHOD_CREDIT_DEBT
    else:
        method = normalize_payment_method(method_raw)

    # Returns are stored negative; older rows may hold a positive magnitude
    if tx_type == TYPE_RETURN:
        amount = -abs(amount)

    split: Split
    if tx_type == TYPE_CREDIT_SALE:
        split = _credit_split(raw)
    elif tx_type == TYPE_SALE:
        split = _insurance_split(raw, amount) or PlainSplit()
    else:
        split = PlainSplit()

    return Transaction(
        id=_int_or_none(raw.get("id")),
        shift_id=_int_or_none(raw.get("shift_id")),
        amount=amount,
        type=tx_type,
        payment_method=method,
        status=normalize_status(raw.get("status"), raw.get("is_approved"), tx_type),
        split=split,
        description=_text(_first(raw, "description", "category")),
        original_transaction_id=_int_or_none(_first(raw, "original_transaction_id", "return_of")),
        created_by=_text(raw.get("created_by")),
        created_at=_datetime(raw.get("created_at")),
        approved_by=_text(raw.get("approved_by")),
        approved_at=_datetime(raw.get("approved_at")),
    )
