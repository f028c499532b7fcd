"""Create rental_unit and meter_reading tables

Revision ID: 1a2b3c4d5e60
Revises:
Create Date: 2026-09-14 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e60'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('rental_unit',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('location', sa.String(length=200), nullable=False, server_default='West Vancouver, BC'),
        sa.Column('utility_types', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_table('meter_reading',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('utility_type', sa.String(length=20), nullable=False),
        sa.Column('entry_type', sa.String(length=20), nullable=False, server_default='meter_read'),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=True),
        sa.Column('period_end', sa.Date(), nullable=True),
        sa.Column('reading_value', sa.Float(), nullable=False),
        sa.Column('reading_unit', sa.String(length=20), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='1'),
        sa.Column('evidence', sa.Text(), nullable=False, server_default=''),
        sa.Column('bill_id', sa.String(length=200), nullable=True),
        sa.Column('is_opening', sa.Boolean(), nullable=True),
        sa.Column('review_status', sa.String(length=20), nullable=False, server_default='approved'),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='manual'),
        sa.Column('source_ref', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('correction_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("utility_type in ('electricity', 'gas', 'water')", name='ck_meter_reading_utility_type'),
        sa.CheckConstraint(
            "entry_type <> 'billed_usage' or (period_start is not null and period_end is not null "
            "and period_end >= period_start)",
            name='ck_meter_reading_billed_period',
        ),
        sa.ForeignKeyConstraint(['unit_id'], ['rental_unit.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_meter_reading_unit_id'), 'meter_reading', ['unit_id'], unique=False)
    op.create_index(
        'ix_meter_reading_unit_utility_captured', 'meter_reading',
        ['unit_id', 'utility_type', 'captured_at'], unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_meter_reading_unit_utility_captured', table_name='meter_reading')
    op.drop_index(op.f('ix_meter_reading_unit_id'), table_name='meter_reading')
    op.drop_table('meter_reading')
    op.drop_table('rental_unit')
