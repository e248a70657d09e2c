"""Credit sales: customer debt columns on transactions

Revision ID: 20261005_credit_sales
Revises: 20261001_initial
Create Date: 2026-10-05

Stores still on 20261001_initial report credit sales as unavailable
(schema readiness "missing") until this runs.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261005_credit_sales"
down_revision = "20261001_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.add_column(sa.Column("customer_name", sa.String(length=128), nullable=True))
        batch_op.add_column(sa.Column("customer_phone", sa.String(length=32), nullable=True))
        batch_op.add_column(sa.Column("payment_status", sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column("paid_by", sa.String(length=64), nullable=True))
        batch_op.add_column(sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.create_check_constraint(
            "ck_transactions_insurance_xor_credit",
            "insurer_id IS NULL OR customer_name IS NULL",
        )
        batch_op.create_check_constraint(
            "ck_transactions_credit_customer",
            "type <> 'CREDIT_SALE' OR (customer_name IS NOT NULL AND length(trim(customer_name)) > 0)",
        )


def downgrade():
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.drop_constraint("ck_transactions_credit_customer", type_="check")
        batch_op.drop_constraint("ck_transactions_insurance_xor_credit", type_="check")
        batch_op.drop_column("paid_at")
        batch_op.drop_column("paid_by")
        batch_op.drop_column("payment_status")
        batch_op.drop_column("customer_phone")
        batch_op.drop_column("customer_name")
