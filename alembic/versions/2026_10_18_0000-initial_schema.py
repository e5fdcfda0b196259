"""initial schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create teams, users, API keys, usage, quota and webhook tables."""

    # ========================================================================
    # Create teams table
    # ========================================================================
    op.create_table(
        'teams',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('billing_status', sa.String(20), nullable=False, server_default='free'),
        sa.Column('at_risk', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('plan', sa.String(20), nullable=True),
        sa.Column('premium_grace_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint("billing_status IN ('free', 'active', 'past_due')", name='ck_teams_billing_status'),
        sa.CheckConstraint("NOT is_premium OR billing_status = 'active'", name='ck_teams_premium_requires_active'),
        sa.UniqueConstraint('stripe_customer_id', name='uq_teams_stripe_customer_id'),
    )

    # ========================================================================
    # Create users and team_users tables
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('is_premium', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )

    op.create_table(
        'team_users',
        sa.Column('team_id', sa.String(64), sa.ForeignKey('teams.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
    )
    op.create_index('idx_team_users_user_id', 'team_users', ['user_id'])

    # ========================================================================
    # Create api_keys table
    # ========================================================================
    op.create_table(
        'api_keys',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('key_hash', sa.String(64), nullable=False),
        sa.Column('key_prefix', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('team_id', sa.String(64), sa.ForeignKey('teams.id'), nullable=False),
        sa.Column('user_id', sa.String(64), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('key_hash', name='uq_api_keys_key_hash'),
    )
    op.create_index('idx_api_keys_team_id', 'api_keys', ['team_id'])
    op.create_index('idx_api_keys_user_id', 'api_keys', ['user_id'])

    # ========================================================================
    # Create api_usage_logs and api_quota_counters tables
    # ========================================================================
    op.create_table(
        'api_usage_logs',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('api_key_id', UUID(as_uuid=True), sa.ForeignKey('api_keys.id'), nullable=False),
        sa.Column('endpoint', sa.String(512), nullable=False),
        sa.Column('method', sa.String(10), nullable=False),
        sa.Column('response_code', sa.Integer(), nullable=False),
        sa.Column('response_time_ms', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('response_time_ms >= 0', name='ck_usage_latency_non_negative'),
    )
    op.create_index('idx_api_usage_logs_key_created', 'api_usage_logs', ['api_key_id', 'created_at'])

    op.create_table(
        'api_quota_counters',
        sa.Column('team_id', sa.String(64), sa.ForeignKey('teams.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('day', sa.Date(), primary_key=True),
        sa.Column('count', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('count >= 0', name='ck_quota_count_non_negative'),
    )

    # ========================================================================
    # Create processed_webhook_events table
    # ========================================================================
    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('team_id', sa.String(64), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    # ========================================================================
    # Create plays and signals tables
    # ========================================================================
    op.create_table(
        'plays',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('team_id', sa.String(64), sa.ForeignKey('teams.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('target_outcome', sa.Text(), nullable=True),
        sa.Column('why_this_play', sa.Text(), nullable=True),
        sa.Column('how_to_run', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_plays_team_id', 'plays', ['team_id'])

    op.create_table(
        'signals',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('play_id', sa.String(64), sa.ForeignKey('plays.id', ondelete='CASCADE'), nullable=False),
        sa.Column('observation', sa.Text(), nullable=True),
        sa.Column('meaning', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_signals_play_id', 'signals', ['play_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('signals')
    op.drop_table('plays')
    op.drop_table('processed_webhook_events')
    op.drop_table('api_quota_counters')
    op.drop_table('api_usage_logs')
    op.drop_table('api_keys')
    op.drop_table('team_users')
    op.drop_table('users')
    op.drop_table('teams')
