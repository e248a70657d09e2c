from decimal import Decimal
from pathlib import Path

import pytest
from flask_migrate import upgrade
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from pharmavault import create_app
from pharmavault.config import TestingConfig
from pharmavault.errors import SchemaMismatchError
from pharmavault.extensions import db
from pharmavault.models import TransactionRecord
from pharmavault.services import ledger_service, reconciliation_service, schema_service, shift_service
from pharmavault.services.schema_service import (
    CREDIT_COLUMNS,
    READINESS_MISSING,
    READINESS_READY,
    READINESS_UNKNOWN,
)


class FakeInspector:
    def __init__(self, columns):
        self.columns = columns

    def get_columns(self, table_name):
        assert table_name == "transactions"
        return [{"name": name} for name in self.columns]


def without_credit_columns(monkeypatch):
    columns = [c.name for c in TransactionRecord.__table__.columns if c.name not in CREDIT_COLUMNS]
    monkeypatch.setattr(schema_service, "inspect", lambda engine: FakeInspector(columns))
    schema_service.reset_schema_cache()


def test_full_schema_is_ready(db_session):
    readiness = schema_service.get_credit_schema_readiness()
    assert readiness.status == READINESS_READY
    assert readiness.ready
    assert readiness.missing_columns == []


def test_missing_columns_are_reported(db_session, monkeypatch):
    without_credit_columns(monkeypatch)

    readiness = schema_service.get_credit_schema_readiness()
    assert readiness.status == READINESS_MISSING
    assert readiness.missing_columns == sorted(CREDIT_COLUMNS)
    assert readiness.to_dict() == {"status": "missing", "missing_columns": sorted(CREDIT_COLUMNS)}


def test_readiness_is_cached_until_refresh(db_session, monkeypatch):
    assert schema_service.get_credit_schema_readiness().ready

    monkeypatch.setattr(schema_service, "inspect", lambda engine: FakeInspector([]))
    assert schema_service.get_credit_schema_readiness().ready
    assert schema_service.get_credit_schema_readiness(refresh=True).status == READINESS_MISSING


def test_inspection_failure_is_unknown_and_not_cached(db_session, monkeypatch):
    def broken(engine):
        raise OperationalError("PRAGMA", {}, Exception("unable to open database file"))

    monkeypatch.setattr(schema_service, "inspect", broken)
    schema_service.reset_schema_cache()
    assert schema_service.get_credit_schema_readiness().status == READINESS_UNKNOWN

    monkeypatch.undo()
    assert schema_service.get_credit_schema_readiness().status == READINESS_READY


def test_credit_sale_refused_on_old_schema(db_session, open_shift, monkeypatch):
    without_credit_columns(monkeypatch)

    with pytest.raises(SchemaMismatchError) as excinfo:
        ledger_service.record_sale(
            open_shift.id, 45000, "CREDIT_DEBT", {"type": "credit", "customer_name": "Mamadou Bah"},
        )

    assert excinfo.value.http_status == 501
    assert excinfo.value.feature == "credit_sales"
    assert db_session.query(TransactionRecord).count() == 0


def test_plain_sales_work_on_old_schema(db_session, open_shift, monkeypatch):
    without_credit_columns(monkeypatch)

    tx = ledger_service.record_sale(open_shift.id, 1000, "CASH")
    assert tx.id is not None


def test_settle_credit_refused_on_old_schema(db_session, monkeypatch):
    without_credit_columns(monkeypatch)

    with pytest.raises(SchemaMismatchError):
        ledger_service.settle_credit("mamadou bah::620", "manager")


MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"
PRE_CREDIT_REVISION = "20261001_initial"


@pytest.fixture
def pre_credit_app(tmp_path, online, monkeypatch):
    """App on a file database migrated only up to the revision before credit sales."""
    # create_app rebinds the shared gate to the new app's database
    for name in ("probe", "interval", "timeout"):
        monkeypatch.setattr(online, name, getattr(online, name))

    class PreCreditConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'register.sqlite3'}"

    app = create_app(PreCreditConfig)
    with app.app_context():
        upgrade(directory=str(MIGRATIONS_DIR), revision=PRE_CREDIT_REVISION)
        schema_service.reset_schema_cache()
        yield app
        db.session.remove()
        db.engine.dispose()
    schema_service.reset_schema_cache()


def test_register_runs_on_store_without_credit_columns(pre_credit_app, clock, later):
    columns = {column["name"] for column in inspect(db.engine).get_columns("transactions")}
    assert columns.isdisjoint(CREDIT_COLUMNS)
    assert schema_service.get_credit_schema_readiness().status == READINESS_MISSING

    shift = shift_service.start_shift("awa", now=clock)
    sale = ledger_service.record_sale(shift.id, 100000, "CASH", now=later(hours=1))
    returned_sale = ledger_service.record_sale(shift.id, 20000, "CASH", now=later(hours=2))
    expense = ledger_service.record_expense(shift.id, 5000, "Transport", now=later(hours=3))
    ledger_service.approve_expense(expense.id, "manager", now=later(hours=4))
    reversal = ledger_service.record_return(returned_sale.id, now=later(hours=5))

    assert sale.type == "SALE"
    assert reversal.amount == Decimal("-20000")
    assert ledger_service.get_transaction(returned_sale.id).status == "RETURNED"
    assert len(ledger_service.get_shift_transactions(shift.id)) == 4

    with pytest.raises(SchemaMismatchError):
        ledger_service.record_sale(
            shift.id, 45000, "CREDIT_DEBT", {"type": "credit", "customer_name": "Mamadou Bah"},
        )

    summary = reconciliation_service.close_shift(shift.id, 95000, "awa", now=later(hours=9))
    assert summary.expected_cash == Decimal("95000")
    assert summary.outcome == reconciliation_service.OUTCOME_BALANCED
