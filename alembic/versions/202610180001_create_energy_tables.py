"""create energy telemetry tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '202610180001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'devices',
        sa.Column('device_id', sa.String(), primary_key=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='disconnected'),
        sa.Column('relay_state', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_connection', sa.DateTime(timezone=True), nullable=True),
        sa.Column('power_limit', sa.Float(), nullable=False, server_default='2200'),
        sa.Column('current_limit', sa.Float(), nullable=False, server_default='10'),
        sa.Column('warning_threshold', sa.Float(), nullable=False, server_default='90'),
        sa.Column('power_connected', sa.Boolean(), nullable=True),
        sa.Column('current_power', sa.Float(), nullable=True),
        sa.Column('current_energy', sa.Float(), nullable=True),
        sa.Column('last_voltage', sa.Float(), nullable=True),
        sa.Column('last_current', sa.Float(), nullable=True),
        sa.Column('last_frequency', sa.Float(), nullable=True),
        sa.Column('last_power_factor', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_devices_device_id', 'devices', ['device_id'])
    op.create_index('ix_devices_owner_id', 'devices', ['owner_id'])
    op.create_index('ix_devices_owner_status', 'devices', ['owner_id', 'status'])

    op.create_table(
        'device_settings',
        sa.Column(
            'device_id',
            sa.String(),
            sa.ForeignKey('devices.device_id', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('service_type', sa.String(), nullable=False, server_default='R1_900VA'),
        sa.Column('power_limit', sa.Float(), nullable=False, server_default='1000'),
        sa.Column('warning_percentage', sa.Float(), nullable=False, server_default='80'),
        sa.Column('tax_rate', sa.Float(), nullable=False, server_default='5'),
    )

    op.create_table(
        'energy_readings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'device_id',
            sa.String(),
            sa.ForeignKey('devices.device_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('reading_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('voltage', sa.Float(), nullable=False),
        sa.Column('current', sa.Float(), nullable=False),
        sa.Column('power', sa.Float(), nullable=False),
        sa.Column('energy', sa.Float(), nullable=False),
        sa.Column('frequency', sa.Float(), nullable=True),
        sa.Column('power_factor', sa.Float(), nullable=True),
        sa.Column('power_connected', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_energy_readings_device_time', 'energy_readings', ['device_id', 'reading_time'])

    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'device_id',
            sa.String(),
            sa.ForeignKey('devices.device_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_alerts_category', 'alerts', ['category'])
    op.create_index('ix_alerts_device_active', 'alerts', ['device_id', 'is_active'])

    op.create_table(
        'usage_statistics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'device_id',
            sa.String(),
            sa.ForeignKey('devices.device_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('period', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_kwh', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('reading_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('device_id', 'period', 'period_start', name='uq_usage_statistics_bucket'),
    )
    op.create_index('ix_usage_statistics_device_id', 'usage_statistics', ['device_id'])

    op.create_table(
        'device_status_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'device_id',
            sa.String(),
            sa.ForeignKey('devices.device_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('previous_status', sa.String(), nullable=True),
        sa.Column('reason', sa.String(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
    )
    op.create_index('ix_device_status_logs_device_time', 'device_status_logs', ['device_id', 'timestamp'])


def downgrade():
    op.drop_index('ix_device_status_logs_device_time', table_name='device_status_logs')
    op.drop_table('device_status_logs')
    op.drop_index('ix_usage_statistics_device_id', table_name='usage_statistics')
    op.drop_table('usage_statistics')
    op.drop_index('ix_alerts_device_active', table_name='alerts')
    op.drop_index('ix_alerts_category', table_name='alerts')
    op.drop_table('alerts')
    op.drop_index('ix_energy_readings_device_time', table_name='energy_readings')
    op.drop_table('energy_readings')
    op.drop_table('device_settings')
    op.drop_index('ix_devices_owner_status', table_name='devices')
    op.drop_index('ix_devices_owner_id', table_name='devices')
    op.drop_index('ix_devices_device_id', table_name='devices')
    op.drop_table('devices')
