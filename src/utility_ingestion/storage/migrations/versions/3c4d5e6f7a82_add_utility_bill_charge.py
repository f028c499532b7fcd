"""Add utility_bill_charge table with bill identity unique index

Revision ID: 3c4d5e6f7a82
Revises: 2b3c4d5e6f71
Create Date: 2026-09-21 14:05:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c4d5e6f7a82'
down_revision = '2b3c4d5e6f71'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('utility_bill_charge',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('utility_type', sa.String(length=20), nullable=False),
        sa.Column('bill_id', sa.String(length=200), nullable=True),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('total_charges_cad', sa.Float(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='CAD'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='1'),
        sa.Column('evidence', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('total_charges_cad >= 0', name='ck_utility_bill_charge_non_negative'),
        sa.ForeignKeyConstraint(['unit_id'], ['rental_unit.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_utility_bill_charge_unit_id'), 'utility_bill_charge', ['unit_id'], unique=False)
    op.create_index(
        'uq_utility_bill_charge_identity', 'utility_bill_charge',
        [
            'unit_id',
            'utility_type',
            sa.text("coalesce(bill_id, '')"),
            sa.text("coalesce(period_start, '1900-01-01'::date)"),
            sa.text("coalesce(period_end, '1900-01-01'::date)"),
        ],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index('uq_utility_bill_charge_identity', table_name='utility_bill_charge')
    op.drop_index(op.f('ix_utility_bill_charge_unit_id'), table_name='utility_bill_charge')
    op.drop_table('utility_bill_charge')
