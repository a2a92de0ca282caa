"""Receivable payments and type checks

Revision ID: 20261019_payments
Revises: 20261019_initial
Create Date: 2026-10-19

This migration adds:
1. receivable_payments (one row per payment, reversals tracked on the row)
2. CHECK constraints on payment_types.classification and
   stock_movements.movement_type
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_payments'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('receivable_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('installment_id', sa.Integer(), nullable=False),
        sa.Column('receivable_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('reversed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_by', sa.String(length=120), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('reversed_by', sa.String(length=120), nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount_cents > 0', name='ck_receivable_payments_amount_positive'),
        sa.CheckConstraint(
            'reversed_cents >= 0 AND reversed_cents <= amount_cents',
            name='ck_receivable_payments_reversed_range',
        ),
        sa.ForeignKeyConstraint(['installment_id'], ['receivable_installments.id'], ),
        sa.ForeignKeyConstraint(['receivable_id'], ['receivables.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('receivable_payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_receivable_payments_installment_id'), ['installment_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_receivable_payments_receivable_id'), ['receivable_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_receivable_payments_order_id'), ['order_id'], unique=False)

    with op.batch_alter_table('payment_types', schema=None) as batch_op:
        batch_op.create_check_constraint(
            'ck_payment_types_classification',
            "classification IN ('TERM', 'IMMEDIATE')",
        )

    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_check_constraint(
            'ck_stock_movements_movement_type',
            "movement_type IN ('RESERVE', 'RELEASE', 'COMMIT', 'RESTORE', 'ADJUST')",
        )


def downgrade():
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.drop_constraint('ck_stock_movements_movement_type', type_='check')

    with op.batch_alter_table('payment_types', schema=None) as batch_op:
        batch_op.drop_constraint('ck_payment_types_classification', type_='check')

    with op.batch_alter_table('receivable_payments', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_receivable_payments_order_id'))
        batch_op.drop_index(batch_op.f('ix_receivable_payments_receivable_id'))
        batch_op.drop_index(batch_op.f('ix_receivable_payments_installment_id'))

    op.drop_table('receivable_payments')
