import json

import pytest

from pharmavault.services import ledger_service, shift_service



@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_shifts_list_empty(runner, db_session):
    result = runner.invoke(args=["shifts", "list"])
    assert result.exit_code == 0
    assert "No shifts found." in result.output


def test_shifts_list_and_active(runner, open_shift):
    listed = runner.invoke(args=["shifts", "list", "--cashier", "awa"])
    assert "awa" in listed.output
    assert "OPEN" in listed.output

    active = runner.invoke(args=["shifts", "active"])
    assert f"Shift {open_shift.id} open for awa" in active.output


def test_preview_shows_figures(runner, open_shift):
    ledger_service.record_sale(open_shift.id, 100000, "CASH")

    result = runner.invoke(args=["shifts", "preview", str(open_shift.id), "--counted", "90000"])

    assert result.exit_code == 0
    assert "100 000 GNF" in result.output
    assert "SHORTAGE" in result.output


def test_preview_unknown_shift_fails(runner, db_session):
    result = runner.invoke(args=["shifts", "preview", "404"])
    assert result.exit_code != 0
    assert "not found" in result.output


def test_force_close(runner, open_shift):
    result = runner.invoke(args=["shifts", "force-close", str(open_shift.id), "--admin", "manager", "--yes"])

    assert result.exit_code == 0
    assert "force-closed by manager" in result.output
    assert shift_service.get_active_shift() is None


def test_ledger_show_and_debts(runner, open_shift):
    ledger_service.record_sale(open_shift.id, 45000, "CREDIT_DEBT", {"type": "credit", "customer_name": "Mamadou Bah"})

    shown = runner.invoke(args=["ledger", "show", str(open_shift.id)])
    assert "CREDIT_SALE" in shown.output

    debts = runner.invoke(args=["ledger", "debts"])
    assert "Mamadou Bah" in debts.output
    assert "45 000 GNF" in debts.output


def test_import_legacy(runner, db_session, tmp_path, export_payload):
    export = tmp_path / "export.json"
    export.write_text(json.dumps(export_payload), encoding="utf-8")

    result = runner.invoke(args=["ledger", "import-legacy", str(export)])

    assert result.exit_code == 0
    assert "Imported 2 shifts (0 skipped), 6 transactions (0 skipped)" in result.output
    assert "WARN 1 transactions had an unknown payment method" in result.output


def test_import_legacy_bad_file(runner, db_session, tmp_path):
    export = tmp_path / "export.json"
    export.write_text("not json", encoding="utf-8")

    result = runner.invoke(args=["ledger", "import-legacy", str(export)])
    assert result.exit_code != 0
    assert "not valid JSON" in result.output


def test_system_schema_and_connectivity(runner, db_session):
    schema = runner.invoke(args=["system", "schema"])
    assert "Credit sales: ready" in schema.output

    online = runner.invoke(args=["system", "check-connectivity"])
    assert "PASS Online" in online.output
