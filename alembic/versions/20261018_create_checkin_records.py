"""create_checkin_records

Revision ID: 20261018_checkin_records
Revises:
Create Date: 2026-10-18 09:00:00

Adds: checkin_records table
Purpose: Persist accepted QR check-ins (token consumed, geofence outcome)
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_checkin_records'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create checkin_records with an (event_id, checkin_time) index for
    per-event attendance listings.
    """
    op.create_table(
        'checkin_records',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('qr_token', sa.Text(), nullable=False),
        sa.Column('user_data', sa.JSON(), nullable=False),
        sa.Column('location', sa.JSON(), nullable=True),
        sa.Column('validation_status', sa.String(50), nullable=False, server_default='success'),
        sa.Column('location_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('distance_meters', sa.Integer(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('checkin_time', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_checkin_records_event_id', 'checkin_records', ['event_id'])
    op.create_index('ix_checkin_records_event_time', 'checkin_records', ['event_id', 'checkin_time'])


def downgrade() -> None:
    op.drop_index('ix_checkin_records_event_time', table_name='checkin_records')
    op.drop_index('ix_checkin_records_event_id', table_name='checkin_records')
    op.drop_table('checkin_records')
