"""add ota tables

Revision ID: 0001_add_ota_tables
Revises:
Create Date: 2026-10-16 12:00:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_add_ota_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'firmware_releases',
        sa.Column('release_id', sa.String(), nullable=False),
        sa.Column('template_id', sa.String(length=100), nullable=False),
        sa.Column('version', sa.String(length=50), nullable=False),
        sa.Column('channel', sa.String(length=10), nullable=False),
        sa.Column('binary_hash', sa.String(length=64), nullable=False),
        sa.Column('binary_path', sa.String(length=500), nullable=False),
        sa.Column('binary_size', sa.Integer(), nullable=False),
        sa.Column('signature', sa.String(), nullable=False),
        sa.Column('release_notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint('release_id')
    )
    op.create_index(op.f('ix_firmware_releases_template_id'), 'firmware_releases', ['template_id'], unique=False)
    op.create_index(op.f('ix_firmware_releases_channel'), 'firmware_releases', ['channel'], unique=False)
    op.create_index(op.f('ix_firmware_releases_created_at'), 'firmware_releases', ['created_at'], unique=False)

    op.create_table(
        'ota_deployments',
        sa.Column('deployment_id', sa.String(), nullable=False),
        sa.Column('release_id', sa.String(length=36), nullable=False),
        sa.Column('strategy', sa.String(length=20), nullable=False),
        sa.Column('rollout_percentage', sa.Integer(), nullable=False),
        sa.Column('target_devices', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('failure_threshold', sa.Integer(), nullable=False),
        sa.Column('success_count', sa.Integer(), nullable=False),
        sa.Column('failure_count', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('deployment_id')
    )
    op.create_index(op.f('ix_ota_deployments_release_id'), 'ota_deployments', ['release_id'], unique=False)
    op.create_index(op.f('ix_ota_deployments_status'), 'ota_deployments', ['status'], unique=False)
    op.create_index(op.f('ix_ota_deployments_created_at'), 'ota_deployments', ['created_at'], unique=False)

    op.create_table(
        'device_updates',
        sa.Column('device_id', sa.String(length=100), nullable=False),
        sa.Column('release_id', sa.String(length=36), nullable=False),
        sa.Column('deployment_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('device_id', 'release_id')
    )
    op.create_index(op.f('ix_device_updates_deployment_id'), 'device_updates', ['deployment_id'], unique=False)
    op.create_index(op.f('ix_device_updates_status'), 'device_updates', ['status'], unique=False)
    op.create_index(op.f('ix_device_updates_started_at'), 'device_updates', ['started_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_device_updates_started_at'), table_name='device_updates')
    op.drop_index(op.f('ix_device_updates_status'), table_name='device_updates')
    op.drop_index(op.f('ix_device_updates_deployment_id'), table_name='device_updates')
    op.drop_table('device_updates')
    op.drop_index(op.f('ix_ota_deployments_created_at'), table_name='ota_deployments')
    op.drop_index(op.f('ix_ota_deployments_status'), table_name='ota_deployments')
    op.drop_index(op.f('ix_ota_deployments_release_id'), table_name='ota_deployments')
    op.drop_table('ota_deployments')
    op.drop_index(op.f('ix_firmware_releases_created_at'), table_name='firmware_releases')
    op.drop_index(op.f('ix_firmware_releases_channel'), table_name='firmware_releases')
    op.drop_index(op.f('ix_firmware_releases_template_id'), table_name='firmware_releases')
    op.drop_table('firmware_releases')
