"""Initial cost sync schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _audit_columns():
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('plan', sa.String(length=20), server_default='free', nullable=False),
        sa.Column('auto_sync_enabled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('email_anomaly_alerts', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_audit_columns(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
        sa.UniqueConstraint('email', name=op.f('uq_users_email')),
    )

    op.create_table(
        'provider_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False),
        sa.Column('alias', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('connection_type', sa.String(length=50), server_default='manual', nullable=False),
        sa.Column('credentials_encrypted', sa.Text(), nullable=True),
        sa.Column('role_arn', sa.String(length=2048), nullable=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_provider_accounts_user_id_users'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_provider_accounts')),
    )
    op.create_index(op.f('ix_provider_accounts_user_id'), 'provider_accounts', ['user_id'])
    op.create_index(op.f('ix_provider_accounts_provider'), 'provider_accounts', ['provider'])

    op.create_table(
        'cost_snapshots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('current_month_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('last_month_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('forecast_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('forecast_confidence', sa.String(length=10), nullable=False),
        sa.Column('credits', sa.Numeric(18, 4), nullable=False),
        sa.Column('savings', sa.Numeric(18, 4), nullable=False),
        sa.Column('tax', sa.Numeric(18, 4), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('services', JSON_TYPE, nullable=False),
        sa.Column('usage_metrics', JSON_TYPE, nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['account_id'], ['provider_accounts.id'], name=op.f('fk_cost_snapshots_account_id_provider_accounts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_cost_snapshots')),
        sa.UniqueConstraint('account_id', 'month', 'year', name='uq_cost_snapshots_account_period'),
    )
    op.create_index(op.f('ix_cost_snapshots_account_id'), 'cost_snapshots', ['account_id'])

    op.create_table(
        'daily_cost_points',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('service_name', sa.String(length=255), nullable=False),
        sa.Column('cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('is_estimated', sa.Boolean(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['account_id'], ['provider_accounts.id'], name=op.f('fk_daily_cost_points_account_id_provider_accounts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_daily_cost_points')),
        sa.UniqueConstraint('account_id', 'usage_date', 'service_name', name='uq_daily_cost_points_account_date_service'),
    )
    op.create_index(op.f('ix_daily_cost_points_account_id'), 'daily_cost_points', ['account_id'])
    op.create_index(op.f('ix_daily_cost_points_usage_date'), 'daily_cost_points', ['usage_date'])

    op.create_table(
        'anomaly_baselines',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('service_name', sa.String(length=255), nullable=False),
        sa.Column('baseline_date', sa.Date(), nullable=False),
        sa.Column('baseline_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('current_cost', sa.Numeric(18, 4), nullable=False),
        sa.Column('variance_percent', sa.Float(), nullable=False),
        sa.Column('is_increase', sa.Boolean(), nullable=False),
        sa.Column('data_points', sa.Integer(), nullable=False),
        sa.Column('escalated_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['account_id'], ['provider_accounts.id'], name=op.f('fk_anomaly_baselines_account_id_provider_accounts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_anomaly_baselines')),
        sa.UniqueConstraint('account_id', 'service_name', 'baseline_date', name='uq_anomaly_baselines_account_service_date'),
    )
    op.create_index(op.f('ix_anomaly_baselines_account_id'), 'anomaly_baselines', ['account_id'])
    op.create_index(op.f('ix_anomaly_baselines_baseline_date'), 'anomaly_baselines', ['baseline_date'])

    op.create_table(
        'forecast_scenarios',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('adjustments', JSON_TYPE, nullable=False),
        sa.Column('forecast_months', sa.Integer(), nullable=False),
        sa.Column('provider_filter', sa.String(length=50), nullable=True),
        sa.Column('account_filter', sa.Uuid(), nullable=True),
        sa.Column('last_computed_at', sa.DateTime(timezone=True), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_forecast_scenarios_user_id_users'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_forecast_scenarios')),
    )
    op.create_index(op.f('ix_forecast_scenarios_user_id'), 'forecast_scenarios', ['user_id'])

    op.create_table(
        'optimization_recommendations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('service_name', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=10), nullable=False),
        sa.Column('estimated_savings', sa.Numeric(18, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['account_id'], ['provider_accounts.id'], name=op.f('fk_optimization_recommendations_account_id_provider_accounts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_optimization_recommendations')),
        sa.UniqueConstraint('account_id', 'category', 'service_name', name='uq_optimization_recommendations_key'),
    )
    op.create_index(op.f('ix_optimization_recommendations_account_id'), 'optimization_recommendations', ['account_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('metadata', JSON_TYPE, nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name=op.f('fk_notifications_user_id_users'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notifications')),
    )
    op.create_index(op.f('ix_notifications_user_id'), 'notifications', ['user_id'])


def downgrade() -> None:
    for table in (
        'notifications',
        'optimization_recommendations',
        'forecast_scenarios',
        'anomaly_baselines',
        'daily_cost_points',
        'cost_snapshots',
        'provider_accounts',
        'users',
    ):
        op.drop_table(table)
