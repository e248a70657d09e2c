from __future__ import annotations

from sqlalchemy import FetchedValue, inspect

from ..extensions import db

CREDIT_COLUMNS = ("customer_name", "customer_phone", "payment_status", "paid_by", "paid_at")


class TransactionRecord(db.Model):
    """
    Persisted ledger entry for a shift.

    Rows are read through the transaction normalizer; no other code
    interprets these columns directly.

    WHY flat columns: the insurance and credit groups are mutually exclusive,
    enforced here by CHECK constraints and in the canonical value by a
    tagged split type.

    APPEND-ONLY: amounts are never edited. A return is a new row with a
    negative amount pointing at the original through original_transaction_id;
    only status flags change afterwards (approval, Returned, Paid).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint(
            "insurer_id IS NULL OR customer_name IS NULL",
            name="ck_transactions_insurance_xor_credit",
        ),
        db.CheckConstraint(
            "coverage_percent IS NULL OR (coverage_percent >= 0 AND coverage_percent <= 100)",
            name="ck_transactions_coverage_range",
        ),
        db.CheckConstraint(
            "type <> 'CREDIT_SALE' OR (customer_name IS NOT NULL AND length(trim(customer_name)) > 0)",
            name="ck_transactions_credit_customer",
        ),
        # One reversal per original entry
        db.UniqueConstraint("original_transaction_id", name="uq_transactions_single_return"),
        db.Index("ix_transactions_shift_created", "shift_id", "created_at"),
        db.Index("ix_transactions_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    type = db.Column(db.String(16), nullable=False)  # SALE, EXPENSE, RETURN, CREDIT_SALE
    payment_method = db.Column(db.String(16), nullable=False)  # CASH, MOBILE_MONEY, CREDIT_DEBT
    status = db.Column(db.String(16), nullable=False)  # PENDING, APPROVED, REJECTED, RETURNED
    description = db.Column(db.String(255), nullable=True)

    # Insurance split
    insurer_id = db.Column(db.String(64), nullable=True, index=True)
    insurer_name = db.Column(db.String(128), nullable=True)
    card_id = db.Column(db.String(64), nullable=True)
    coverage_percent = db.Column(db.Numeric(5, 2), nullable=True)
    amount_covered_by_insurance = db.Column(db.Numeric(14, 2), nullable=True)
    insurer_payment_status = db.Column(db.String(16), nullable=True)  # UNPAID, PAID
    insurer_paid_by = db.Column(db.String(64), nullable=True)
    insurer_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Credit split. Stores migrated before credit sales lack these columns;
    # FetchedValue keeps them out of INSERTs that leave them unset.
    customer_name = db.Column(db.String(128), nullable=True, server_default=FetchedValue())
    customer_phone = db.Column(db.String(32), nullable=True, server_default=FetchedValue())
    payment_status = db.Column(db.String(16), nullable=True, server_default=FetchedValue())  # UNPAID, PAID
    paid_by = db.Column(db.String(64), nullable=True, server_default=FetchedValue())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True, server_default=FetchedValue())

    # Return linkage
    original_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    legacy_id = db.Column(db.String(64), nullable=True, unique=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shift = db.relationship("Shift", backref=db.backref("transactions", lazy=True))
    original = db.relationship("TransactionRecord", remote_side=[id], uselist=False)
    __mapper_args__ = {"version_id_col": version_id}

    def as_record(self, *, with_credit: bool = True) -> dict:
        """
        Column values keyed by column name, as the normalizer expects.

        With ``with_credit=False`` the credit columns are taken only from what
        is already loaded, so nothing is fetched from a store without them.
        """
        loaded = inspect(self).dict
        record = {}
        for column in self.__table__.columns:
            if not with_credit and column.key in CREDIT_COLUMNS:
                record[column.key] = loaded.get(column.key)
            else:
                record[column.key] = getattr(self, column.key)
        return record
