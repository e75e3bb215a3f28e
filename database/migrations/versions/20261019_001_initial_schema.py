"""Initial schema for activity sync

Revision ID: 20261019_001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261019_001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create activities, zones, buckets and the auth singleton."""

    op.create_table(
        'activities',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('distance', sa.Float, nullable=True),
        sa.Column('moving_time', sa.Integer, nullable=True),
        sa.Column('elapsed_time', sa.Integer, nullable=True),
        sa.Column('total_elevation_gain', sa.Float, nullable=True),
        sa.Column('type', sa.String(50), nullable=True),
        sa.Column('sport_type', sa.String(50), nullable=True),
        sa.Column('start_date', sa.DateTime, nullable=True),
        sa.Column('start_date_local', sa.DateTime, nullable=True),
        sa.Column('timezone', sa.String(100), nullable=True),
        sa.Column('average_speed', sa.Float, nullable=True),
        sa.Column('max_speed', sa.Float, nullable=True),
        sa.Column('average_cadence', sa.Float, nullable=True),
        sa.Column('average_heartrate', sa.Float, nullable=True),
        sa.Column('max_heartrate', sa.Float, nullable=True),
        sa.Column('calories', sa.Float, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('zones_checked_at', sa.DateTime, nullable=True),
    )
    op.create_index('ix_activities_start_date', 'activities', ['start_date'])
    op.create_index('ix_activities_type', 'activities', ['type'])
    op.create_index('ix_activities_sport_type', 'activities', ['sport_type'])
    op.create_index('ix_activities_type_start_date', 'activities', ['type', 'start_date'])
    op.create_index('ix_activities_zones_checked_at', 'activities', ['zones_checked_at'])

    op.create_table(
        'activity_zones',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('activity_id', sa.BigInteger,
                  sa.ForeignKey('activities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('zone_type', sa.String(20), nullable=False),
        sa.Column('sensor_based', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('activity_id', 'zone_type', name='uq_activity_zones_activity_type'),
    )
    op.create_index('ix_activity_zones_activity_id', 'activity_zones', ['activity_id'])
    op.create_index('ix_activity_zones_type', 'activity_zones', ['zone_type'])

    op.create_table(
        'zone_buckets',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('activity_zone_id', sa.Integer,
                  sa.ForeignKey('activity_zones.id', ondelete='CASCADE'), nullable=False),
        sa.Column('zone_number', sa.Integer, nullable=False),
        sa.Column('min_value', sa.Integer, nullable=False),
        sa.Column('max_value', sa.Integer, nullable=False),
        sa.Column('time_seconds', sa.Integer, nullable=False),
    )
    op.create_index('ix_zone_buckets_zone_id', 'zone_buckets', ['activity_zone_id'])

    op.create_table(
        'auth_config',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('client_id', sa.Text, nullable=False),
        sa.Column('client_secret', sa.Text, nullable=False),
        sa.Column('access_token', sa.Text, nullable=True),
        sa.Column('refresh_token', sa.Text, nullable=True),
        sa.Column('expires_at', sa.BigInteger, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('id = 1', name='ck_auth_config_singleton'),
    )


def downgrade() -> None:
    """Drop all activity sync tables."""

    # Children first for the foreign keys
    op.drop_table('auth_config')
    op.drop_index('ix_zone_buckets_zone_id', table_name='zone_buckets')
    op.drop_table('zone_buckets')
    op.drop_index('ix_activity_zones_type', table_name='activity_zones')
    op.drop_index('ix_activity_zones_activity_id', table_name='activity_zones')
    op.drop_table('activity_zones')
    op.drop_index('ix_activities_zones_checked_at', table_name='activities')
    op.drop_index('ix_activities_type_start_date', table_name='activities')
    op.drop_index('ix_activities_sport_type', table_name='activities')
    op.drop_index('ix_activities_type', table_name='activities')
    op.drop_index('ix_activities_start_date', table_name='activities')
    op.drop_table('activities')
