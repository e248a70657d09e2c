from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

CLOSE_REASON_NORMAL = "normal"
CLOSE_REASON_FORCED_BY_ADMIN = "forced_by_admin"


class Shift(db.Model):
    """
    Cashier shift (garde) on the single register.

    LIFECYCLE:
    - OPEN: ended_at is NULL; transactions may be recorded
    - CLOSED: ended_at set together with the closing fields

    SINGLE ACTIVE SHIFT: active_marker is TRUE while open and NULL once
    closed. The unique constraint on it lets the database refuse a second
    open shift even when two sessions pass the application check at once
    (NULLs never collide, so closed shifts are unconstrained).

    IMMUTABLE: Once closed, a shift is never reopened or deleted.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.UniqueConstraint("active_marker", name="uq_shifts_single_active"),
        db.CheckConstraint(
            "(ended_at IS NULL) = (active_marker IS NOT NULL)",
            name="ck_shifts_active_marker_matches_ended_at",
        ),
        db.CheckConstraint(
            "close_reason IS NULL OR close_reason IN ('normal', 'forced_by_admin')",
            name="ck_shifts_close_reason",
        ),
        db.Index("ix_shifts_cashier_started", "cashier_id", "started_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.String(64), nullable=False, index=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    active_marker = db.Column(db.Boolean, nullable=True)

    # Reconciliation (set at close; left NULL by a forced close)
    expected_cash = db.Column(db.Numeric(14, 2), nullable=True)
    actual_cash = db.Column(db.Numeric(14, 2), nullable=True)
    cash_difference = db.Column(db.Numeric(14, 2), nullable=True)

    closed_by = db.Column(db.String(64), nullable=True)
    close_reason = db.Column(db.String(32), nullable=True)

    # Identifier in the store this row was imported from
    legacy_id = db.Column(db.String(64), nullable=True, unique=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "is_active": self.is_active,
            "expected_cash": self.expected_cash,
            "actual_cash": self.actual_cash,
            "cash_difference": self.cash_difference,
            "closed_by": self.closed_by,
            "close_reason": self.close_reason,
            "version_id": self.version_id,
        }
