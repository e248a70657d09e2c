from datetime import datetime
from decimal import Decimal

import pytest

from pharmavault.services.transaction_normalizer import (
    PAYMENT_PAID,
    PAYMENT_UNPAID,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    TYPE_CREDIT_SALE,
    TYPE_EXPENSE,
    TYPE_RETURN,
    TYPE_SALE,
    CreditSplit,
    InsuranceSplit,
    PlainSplit,
    customer_key,
    normalize_status,
    normalize_transaction,
    normalize_transaction_type,
)


LEGACY_INSURED_SALE = {
    "id": 7,
    "shift_id": 3,
    "amount": 100000,
    "type": "recette",
    "payment_method": "Espèces",
    "insurance_id": "CNSS",
    "insurance_card_id": "C-001",
    "insurance_percentage": 80,
    "created_by": "awa",
    "created_at": "2026-03-02T09:15:00Z",
}

LEGACY_CREDIT_SALE = {
    "id": 8,
    "shift_id": 3,
    "amount": "45 000",
    "type": "Crédit",
    "payment_method": "Crédit / Dette",
    "customer_name": "  Mamadou Bah ",
    "customer_phone": "620 11 22 33",
    "payment_status": "Dette Totale",
    "created_at": "2026-03-02T10:00:00Z",
}

NEW_SCHEMA_SALE = {
    "id": 9,
    "shift_id": 3,
    "amount": Decimal("30000.00"),
    "type": "SALE",
    "payment_method": "MOBILE_MONEY",
    "status": "APPROVED",
    "insurer_id": None,
    "card_id": None,
    "coverage_percent": None,
    "amount_covered_by_insurance": None,
    "created_at": datetime(2026, 3, 2, 11, 0, 0),
}


@pytest.mark.parametrize("raw, expected", [
    ("recette", TYPE_SALE),
    ("SALE", TYPE_SALE),
    ("dépense", TYPE_EXPENSE),
    ("DEPENSE", TYPE_EXPENSE),
    ("retour", TYPE_RETURN),
    ("crédit", TYPE_CREDIT_SALE),
    ("Crédit", TYPE_CREDIT_SALE),
    ("credit_sale", TYPE_CREDIT_SALE),
    ("something else", TYPE_SALE),
    (None, TYPE_SALE),
])
def test_type_mapping_is_total(raw, expected):
    assert normalize_transaction_type(raw) == expected


def test_status_derivation_order():
    # Explicit status wins over the legacy flag
    assert normalize_status("rejeté", True, TYPE_EXPENSE) == STATUS_REJECTED
    assert normalize_status("validé", None, TYPE_EXPENSE) == STATUS_APPROVED
    assert normalize_status("en_attente", None, TYPE_SALE) == STATUS_PENDING
    # Then the legacy approval flag
    assert normalize_status(None, True, TYPE_EXPENSE) == STATUS_APPROVED
    assert normalize_status(None, "false", TYPE_SALE) == STATUS_PENDING
    # Then the type default
    assert normalize_status(None, None, TYPE_EXPENSE) == STATUS_PENDING
    assert normalize_status(None, None, TYPE_SALE) == STATUS_APPROVED
    assert normalize_status(None, None, TYPE_RETURN) == STATUS_APPROVED


def test_legacy_insured_sale():
    tx = normalize_transaction(LEGACY_INSURED_SALE)

    assert tx.type == TYPE_SALE
    assert tx.status == STATUS_APPROVED
    assert tx.payment_method == "CASH"
    assert isinstance(tx.split, InsuranceSplit)
    assert tx.split.insurer_id == "CNSS"
    assert tx.split.card_id == "C-001"
    assert tx.split.coverage_percent == Decimal("80")
    assert tx.insurance_covered_amount == Decimal("80000")
    assert tx.patient_part == Decimal("20000")
    assert tx.created_at == datetime(2026, 3, 2, 9, 15, 0)


def test_legacy_credit_sale():
    tx = normalize_transaction(LEGACY_CREDIT_SALE)

    assert tx.type == TYPE_CREDIT_SALE
    assert tx.payment_method == "CREDIT_DEBT"
    assert tx.amount == Decimal("45000")
    assert isinstance(tx.split, CreditSplit)
    assert tx.split.customer_name == "Mamadou Bah"
    assert tx.split.payment_status == PAYMENT_UNPAID
    assert tx.split.customer_key == "mamadou bah::620112233"
    assert tx.patient_part == tx.amount


def test_new_schema_plain_sale():
    tx = normalize_transaction(NEW_SCHEMA_SALE)

    assert isinstance(tx.split, PlainSplit)
    assert tx.payment_method == "MOBILE_MONEY"
    assert tx.patient_part == Decimal("30000")
    assert tx.insurance_covered_amount == Decimal("0")


def test_credit_fields_win_on_credit_sale_even_with_insurance_data():
    raw = dict(LEGACY_CREDIT_SALE, insurance_id="CNSS", insurance_percentage=50)
    tx = normalize_transaction(raw)
    assert isinstance(tx.split, CreditSplit)


def test_credit_sale_forces_credit_method():
    raw = dict(LEGACY_CREDIT_SALE, payment_method="Espèces")
    assert normalize_transaction(raw).payment_method == "CREDIT_DEBT"


def test_paid_credit_uses_legacy_paid_columns():
    raw = dict(
        LEGACY_CREDIT_SALE,
        payment_status="Payé",
        payment_paid_by="manager",
        payment_paid_at="2026-03-05T12:00:00Z",
    )
    tx = normalize_transaction(raw)
    assert tx.split.payment_status == PAYMENT_PAID
    assert tx.split.paid_by == "manager"
    assert tx.split.paid_at == datetime(2026, 3, 5, 12, 0, 0)


def test_patient_part_never_negative():
    raw = dict(LEGACY_INSURED_SALE, amount_covered_by_insurance=150000)
    tx = normalize_transaction(raw)
    assert tx.insurance_covered_amount == Decimal("100000")
    assert tx.patient_part == Decimal("0")


def test_zero_insurance_columns_are_a_plain_sale():
    raw = dict(NEW_SCHEMA_SALE, coverage_percent=0, amount_covered_by_insurance=0)
    assert isinstance(normalize_transaction(raw).split, PlainSplit)


def test_returns_are_negative_even_if_stored_positive():
    tx = normalize_transaction({"id": 1, "amount": 5000, "type": "retour", "payment_method": "cash"})
    assert tx.amount == Decimal("-5000")
    assert tx.patient_part == Decimal("-5000")


def test_legacy_expense_with_approval_flag():
    tx = normalize_transaction({
        "id": 2, "amount": 12000, "type": "dépense", "category": "Transport", "is_approved": True,
    })
    assert tx.type == TYPE_EXPENSE
    assert tx.status == STATUS_APPROVED
    assert tx.description == "Transport"


def test_unparseable_timestamp_is_dropped():
    tx = normalize_transaction(dict(NEW_SCHEMA_SALE, created_at="yesterday"))
    assert tx.created_at is None


@pytest.mark.parametrize("raw", [LEGACY_INSURED_SALE, LEGACY_CREDIT_SALE, NEW_SCHEMA_SALE])
def test_normalize_is_idempotent(raw):
    once = normalize_transaction(raw)
    assert normalize_transaction(once) == once
    # The flat canonical dict normalizes to the same value
    assert normalize_transaction(once.to_dict()) == once


def test_customer_key_normalizes_name_and_phone():
    assert customer_key(" Awa  DIALLO ", "620 00 00 00") == "awa diallo::620000000"
    assert customer_key("Awa Diallo", None) == "awa diallo::"
