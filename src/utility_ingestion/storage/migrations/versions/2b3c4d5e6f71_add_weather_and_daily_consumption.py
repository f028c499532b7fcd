"""Add weather_daily and daily_consumption tables

Revision ID: 2b3c4d5e6f71
Revises: 1a2b3c4d5e60
Create Date: 2026-09-16 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '2b3c4d5e6f71'
down_revision = '1a2b3c4d5e60'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('weather_daily',
        sa.Column('weather_date', sa.Date(), nullable=False),
        sa.Column('location', sa.String(length=200), nullable=False),
        sa.Column('temp_min_c', sa.Float(), nullable=True),
        sa.Column('temp_max_c', sa.Float(), nullable=True),
        sa.Column('temp_avg_c', sa.Float(), nullable=True),
        sa.Column('precipitation_mm', sa.Float(), nullable=True),
        sa.Column('hdd', sa.Float(), nullable=True),
        sa.Column('cdd', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('weather_date')
    )
    op.create_table('daily_consumption',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('utility_type', sa.String(length=20), nullable=False),
        sa.Column('usage_unit', sa.String(length=20), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('consumption', sa.Float(), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('temp_avg_c', sa.Float(), nullable=True),
        sa.Column('hdd', sa.Float(), nullable=True),
        sa.Column('cdd', sa.Float(), nullable=True),
        sa.Column('precipitation_mm', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['unit_id'], ['rental_unit.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_daily_consumption_unit_day', 'daily_consumption', ['unit_id', 'day'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_daily_consumption_unit_day', table_name='daily_consumption')
    op.drop_table('daily_consumption')
    op.drop_table('weather_daily')
