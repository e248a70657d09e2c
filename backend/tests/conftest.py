"""
Pytest fixtures for register-core tests.

Provides the application on an in-memory database, a clean database per
test, the test client, a reset connectivity gate and a fixed clock.
"""

from datetime import datetime, timedelta

import pytest

from pharmavault import create_app
from pharmavault.config import TestingConfig
from pharmavault.extensions import db, connectivity
from pharmavault.services import schema_service, shift_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        schema_service.reset_schema_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def online():
    """Every test starts online with no listeners."""
    connectivity.stop()
    connectivity._listeners.clear()
    connectivity.set_online(True)
    yield connectivity
    connectivity.stop()
    connectivity.set_online(True)


@pytest.fixture
def clock():
    """Fixed shift-start instant; advance with clock + timedelta(...)."""
    return datetime(2026, 3, 2, 8, 0, 0)


@pytest.fixture
def open_shift(db_session, clock):
    """Shift opened by cashier 'awa' at the clock instant."""
    return shift_service.start_shift("awa", now=clock)


@pytest.fixture
def later(clock):
    def _later(**delta):
        return clock + timedelta(**delta)
    return _later


@pytest.fixture
def export_payload():
    """JSON export of the previous store: two shifts, six mixed entries."""
    return {
        "shifts": [
            {
                "id": "g1",
                "user_id": "awa",
                "start_time": "2025-12-01T08:00:00Z",
                "end_time": "2025-12-01T18:00:00Z",
                "expected_cash": "100000",
                "actual_cash": "100000",
                "cash_difference": "0",
                "closed_by": "awa",
            },
            {"id": "g2", "cashier": "binta", "started_at": "2025-12-02T08:00:00+00:00"},
        ],
        "transactions": [
            {
                "id": "t4", "garde_id": "g1", "type": "retour", "amount": "30000",
                "payment_method": "Orange Money", "return_of": "t3", "created_at": "2025-12-01T11:00:00Z",
            },
            {
                "id": "t1", "garde_id": "g1", "type": "vente", "amount": "100000",
                "payment_method": "Espèces", "insurance_id": "CNSS", "insurance_card_id": "A1",
                "insurance_percentage": 80, "created_at": "2025-12-01T09:00:00Z",
            },
            {
                "id": "t2", "garde_id": "g1", "type": "dépense", "amount": "5000",
                "payment_method": "Espèces", "category": "Transport", "is_approved": False,
            },
            {
                "id": "t3", "garde_id": "g1", "type": "vente", "amount": "30000",
                "payment_method": "Orange Money", "status": "retourné",
            },
            {
                "id": "t5", "garde_id": "g2", "type": "vente_credit", "amount": "45000",
                "customer_name": "Mamadou Bah", "customer_phone": "620 11 22 33", "payment_status": "dette_totale",
            },
            {"id": "t6", "garde_id": "g2", "type": "vente", "amount": "2000", "payment_method": "Chèque"},
        ],
    }
