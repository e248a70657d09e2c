"""Initial register core: shifts and transactions

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01

This migration adds:
1. shifts, with the single-open-shift guard (unique active_marker)
2. transactions, with the insurance split columns and return linkage

Credit-sale columns arrive in 20261005_credit_sales.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SHIFTS TABLE
    # ==========================================================================
    op.create_table('shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.String(length=64), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('active_marker', sa.Boolean(), nullable=True),
        sa.Column('expected_cash', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('actual_cash', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('cash_difference', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('closed_by', sa.String(length=64), nullable=True),
        sa.Column('close_reason', sa.String(length=32), nullable=True),
        sa.Column('legacy_id', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('(ended_at IS NULL) = (active_marker IS NOT NULL)', name='ck_shifts_active_marker_matches_ended_at'),
        sa.CheckConstraint("close_reason IS NULL OR close_reason IN ('normal', 'forced_by_admin')", name='ck_shifts_close_reason'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('active_marker', name='uq_shifts_single_active'),
        sa.UniqueConstraint('legacy_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shifts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shifts_cashier_id'), ['cashier_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_started_at'), ['started_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_ended_at'), ['ended_at'], unique=False)
        batch_op.create_index('ix_shifts_cashier_started', ['cashier_id', 'started_at'], unique=False)

    # ==========================================================================
    # 2. TRANSACTIONS TABLE
    # ==========================================================================
    op.create_table('transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('insurer_id', sa.String(length=64), nullable=True),
        sa.Column('insurer_name', sa.String(length=128), nullable=True),
        sa.Column('card_id', sa.String(length=64), nullable=True),
        sa.Column('coverage_percent', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('amount_covered_by_insurance', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('insurer_payment_status', sa.String(length=16), nullable=True),
        sa.Column('insurer_paid_by', sa.String(length=64), nullable=True),
        sa.Column('insurer_paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('original_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('legacy_id', sa.String(length=64), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('coverage_percent IS NULL OR (coverage_percent >= 0 AND coverage_percent <= 100)', name='ck_transactions_coverage_range'),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['original_transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('original_transaction_id', name='uq_transactions_single_return'),
        sa.UniqueConstraint('legacy_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_transactions_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_insurer_id'), ['insurer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transactions_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_transactions_shift_created', ['shift_id', 'created_at'], unique=False)
        batch_op.create_index('ix_transactions_type_status', ['type', 'status'], unique=False)


def downgrade():
    op.drop_table('transactions')
    op.drop_table('shifts')
