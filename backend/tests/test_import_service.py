import json
from datetime import datetime
from decimal import Decimal

import pytest

from pharmavault.errors import OfflineError, ValidationError
from pharmavault.models import Shift, TransactionRecord
from pharmavault.services import import_service, ledger_service, reconciliation_service, shift_service
from pharmavault.services.transaction_normalizer import (
    PAYMENT_UNPAID,
    STATUS_PENDING,
    STATUS_RETURNED,
    TYPE_CREDIT_SALE,
    TYPE_EXPENSE,
    TYPE_RETURN,
    InsuranceSplit,
)


def test_import_creates_shifts_and_transactions(db_session, export_payload):
    result = import_service.import_legacy_export(export_payload)

    assert result.shifts_imported == 2
    assert result.transactions_imported == 6
    assert result.method_fallbacks == ["t6"]

    closed = db_session.query(Shift).filter_by(legacy_id="g1").one()
    assert closed.cashier_id == "awa"
    assert closed.started_at == datetime(2025, 12, 1, 8, 0, 0)
    assert closed.close_reason == "normal"
    assert not closed.is_active

    active = shift_service.get_active_shift()
    assert active.legacy_id == "g2"
    assert active.cashier_id == "binta"


def test_closed_shift_without_figures_imports_as_closed(db_session):
    payload = {
        "shifts": [
            {
                "id": "g0",
                "user_id": "awa",
                "start_time": "2025-11-30T08:00:00Z",
                "end_time": "2025-11-30T18:00:00Z",
            },
        ],
        "transactions": [],
    }

    result = import_service.import_legacy_export(payload)

    assert result.shifts_imported == 1
    shift = db_session.query(Shift).filter_by(legacy_id="g0").one()
    assert shift.active_marker is None
    assert shift.expected_cash is None
    assert not shift.is_active
    assert shift_service.get_active_shift() is None


def test_imported_rows_are_canonical(db_session, export_payload):
    import_service.import_legacy_export(export_payload)
    by_legacy = {r.legacy_id: ledger_service.get_transaction(r.id) for r in db_session.query(TransactionRecord)}

    insured = by_legacy["t1"]
    assert isinstance(insured.split, InsuranceSplit)
    assert insured.insurance_covered_amount == Decimal("80000")
    assert insured.payment_method == "CASH"

    assert by_legacy["t2"].type == TYPE_EXPENSE
    assert by_legacy["t2"].status == STATUS_PENDING
    assert by_legacy["t2"].description == "Transport"

    assert by_legacy["t3"].status == STATUS_RETURNED
    assert by_legacy["t4"].type == TYPE_RETURN
    assert by_legacy["t4"].amount == Decimal("-30000")
    assert by_legacy["t4"].original_transaction_id == by_legacy["t3"].id

    credit = by_legacy["t5"]
    assert credit.type == TYPE_CREDIT_SALE
    assert credit.payment_method == "CREDIT_DEBT"
    assert credit.split.payment_status == PAYMENT_UNPAID

    assert by_legacy["t6"].payment_method == "CASH"


def test_imported_history_reconciles(db_session, export_payload):
    import_service.import_legacy_export(export_payload)
    g1 = db_session.query(Shift).filter_by(legacy_id="g1").one()

    summary = reconciliation_service.compute_reconciliation_preview(g1.id)
    assert summary.cash_total == Decimal("20000")
    assert summary.mobile_money_total == Decimal("30000")
    assert summary.returns_total == Decimal("30000")
    assert summary.insurance_total == Decimal("80000")

    debts = ledger_service.list_credit_debts()
    assert [d.customer_key for d in debts] == ["mamadou bah::620112233"]


def test_reimport_skips_known_rows(db_session, export_payload):
    import_service.import_legacy_export(export_payload)
    result = import_service.import_legacy_export(export_payload)

    assert result.shifts_imported == 0
    assert result.shifts_skipped == 2
    assert result.transactions_imported == 0
    assert result.transactions_skipped == 6
    assert db_session.query(TransactionRecord).count() == 6


def test_unknown_shift_reference_imports_nothing(db_session, export_payload):
    payload = export_payload
    payload["transactions"].append({"id": "t9", "garde_id": "nope", "type": "vente", "amount": "1000"})

    with pytest.raises(ValidationError, match="unknown shift"):
        import_service.import_legacy_export(payload)

    assert db_session.query(Shift).count() == 0
    assert db_session.query(TransactionRecord).count() == 0


def test_load_export_rejects_bad_input(export_payload):
    with pytest.raises(ValidationError):
        import_service.load_export("{not json")
    with pytest.raises(ValidationError):
        import_service.load_export("[1, 2]")

    assert import_service.load_export(json.dumps(export_payload))["shifts"][0]["id"] == "g1"


def test_import_refused_offline(db_session, online, export_payload):
    online.set_online(False)
    with pytest.raises(OfflineError):
        import_service.import_legacy_export(export_payload)
