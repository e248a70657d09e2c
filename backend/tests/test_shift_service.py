from datetime import datetime, timedelta

import pytest

from pharmavault.errors import (
    ActiveShiftConflict,
    InvalidStateError,
    NotFoundError,
    OfflineError,
    ValidationError,
)
from pharmavault.models import Shift
from pharmavault.services import reconciliation_service, shift_service


def test_start_shift_opens_with_zero_expected_cash(db_session, clock):
    shift = shift_service.start_shift("awa", now=clock)

    assert shift.id is not None
    assert shift.cashier_id == "awa"
    assert shift.started_at == clock
    assert shift.ended_at is None
    assert shift.is_active
    assert shift.expected_cash == 0
    assert shift_service.get_active_shift().id == shift.id


def test_second_shift_is_refused_naming_the_holder(db_session, open_shift, clock):
    with pytest.raises(ActiveShiftConflict) as excinfo:
        shift_service.start_shift("binta")

    err = excinfo.value
    assert err.cashier_id == "awa"
    assert err.started_at == clock
    assert err.shift_id == open_shift.id
    assert "awa" in str(err)
    assert db_session.query(Shift).count() == 1


def test_store_constraint_refuses_a_racing_start(db_session, open_shift, monkeypatch):
    # Simulate a session whose pre-check ran before the other shift was committed
    monkeypatch.setattr(shift_service, "get_active_shift", lambda: None)

    with pytest.raises(ActiveShiftConflict) as excinfo:
        shift_service.start_shift("binta")

    assert excinfo.value.cashier_id == "awa"
    assert excinfo.value.shift_id == open_shift.id
    assert db_session.query(Shift).filter(Shift.ended_at.is_(None)).count() == 1


def test_new_shift_allowed_after_close(db_session, open_shift, later):
    reconciliation_service.close_shift(open_shift.id, 0, "awa", now=later(hours=8))

    second = shift_service.start_shift("binta", now=later(hours=9))
    assert second.is_active
    assert db_session.query(Shift).filter(Shift.ended_at.is_(None)).count() == 1


def test_start_shift_requires_cashier(db_session):
    with pytest.raises(ValidationError):
        shift_service.start_shift("   ")


def test_start_shift_refused_offline(db_session, online):
    online.set_online(False)
    with pytest.raises(OfflineError):
        shift_service.start_shift("awa")
    assert db_session.query(Shift).count() == 0


def test_require_open_shift(db_session, open_shift, later):
    assert shift_service.require_open_shift(open_shift.id).id == open_shift.id

    with pytest.raises(NotFoundError):
        shift_service.require_open_shift(9999)

    reconciliation_service.force_close_shift(open_shift.id, "manager", now=later(hours=1))
    with pytest.raises(InvalidStateError):
        shift_service.require_open_shift(open_shift.id)


def test_get_shift_not_found(db_session):
    with pytest.raises(NotFoundError):
        shift_service.get_shift(42)


def test_list_shifts_most_recent_first(db_session, clock, later):
    first = shift_service.start_shift("awa", now=clock)
    reconciliation_service.force_close_shift(first.id, "manager", now=later(hours=1))
    second = shift_service.start_shift("binta", now=later(hours=2))

    assert [s.id for s in shift_service.list_shifts()] == [second.id, first.id]
    assert [s.id for s in shift_service.list_shifts(cashier_id="awa")] == [first.id]
    assert [s.id for s in shift_service.list_shifts(start=later(hours=1))] == [second.id]
    assert len(shift_service.list_shifts(limit=1)) == 1

    with pytest.raises(ValidationError):
        shift_service.list_shifts(limit=0)


def test_duration_is_derived(db_session, open_shift, clock, later):
    assert shift_service.shift_duration(open_shift, now=later(hours=2, minutes=5, seconds=9)) == timedelta(
        hours=2, minutes=5, seconds=9
    )

    reconciliation_service.force_close_shift(open_shift.id, "manager", now=later(hours=3))
    # Closed shifts measure to ended_at, whatever "now" is
    assert shift_service.shift_duration(open_shift, now=later(days=2)) == timedelta(hours=3)


@pytest.mark.parametrize("duration, expected", [
    (timedelta(0), "00:00:00"),
    (timedelta(seconds=59), "00:00:59"),
    (timedelta(hours=1, minutes=2, seconds=3), "01:02:03"),
    (timedelta(hours=26), "26:00:00"),
    (timedelta(seconds=-5), "00:00:00"),
])
def test_format_duration(duration, expected):
    assert shift_service.format_duration(duration) == expected


def test_clock_before_start_gives_zero_duration(db_session, open_shift, clock):
    assert shift_service.shift_duration(open_shift, now=clock - timedelta(minutes=1)) == timedelta(0)
