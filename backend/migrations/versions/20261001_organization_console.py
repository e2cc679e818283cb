"""Organization console: organizations, memberships, subscriptions, sessions, audit

Revision ID: 20261001_console
Revises:
Create Date: 2026-10-01

This migration adds:
1. organizations (tenant root with subscription and working-hours fields)
2. subscription_extensions (append-only extension history)
3. memberships (members with roles; one Owner per organization)
4. session_tokens (revoked in bulk when an organization is deactivated)
5. security_events (lifecycle audit trail)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261001_console'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. ORGANIZATIONS TABLE
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('tax_id', sa.String(length=14), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('subscription_status', sa.String(length=16), nullable=False),
        sa.Column('subscription_end_date', sa.Date(), nullable=False),
        sa.Column('subscription_type', sa.String(length=16), nullable=False),
        sa.Column('check_in_time', sa.String(length=16), nullable=True),
        sa.Column('check_out_time', sa.String(length=16), nullable=True),
        sa.Column('half_day_check_out_time', sa.String(length=16), nullable=True),
        sa.Column('weekly_off_day', sa.String(length=16), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=True),
        sa.Column('deactivation_reason', sa.Text(), nullable=True),
        sa.Column('deactivated_at', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('organizations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_organizations_is_active'), ['is_active'], unique=False)
        batch_op.create_index(batch_op.f('ix_organizations_subscription_end_date'), ['subscription_end_date'], unique=False)

    # ==========================================================================
    # 2. SUBSCRIPTION EXTENSIONS TABLE
    # ==========================================================================
    op.create_table('subscription_extensions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.String(length=32), nullable=False),
        sa.Column('extension_date', sa.Date(), nullable=False),
        sa.Column('duration', sa.String(length=16), nullable=False),
        sa.Column('previous_end_date', sa.Date(), nullable=False),
        sa.Column('new_end_date', sa.Date(), nullable=False),
        sa.Column('extended_by', sa.String(length=255), nullable=False),
        sa.Column('extended_by_user_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('subscription_extensions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_subscription_extensions_org_id'), ['org_id'], unique=False)
        batch_op.create_index('ix_subscription_extensions_org_date', ['org_id', 'extension_date'], unique=False)

    # ==========================================================================
    # 3. MEMBERSHIPS TABLE
    # ==========================================================================
    op.create_table('memberships',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('org_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('email_key', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('tax_id', sa.String(length=14), nullable=True),
        sa.Column('citizenship_id', sa.String(length=20), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('gender', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'email_key', name='uq_memberships_org_email'),
    )
    with op.batch_alter_table('memberships', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_memberships_org_id'), ['org_id'], unique=False)
        batch_op.create_index('ix_memberships_org_role', ['org_id', 'role'], unique=False)

    # ==========================================================================
    # 4. SESSION TOKENS TABLE
    # ==========================================================================
    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('membership_id', sa.String(length=32), nullable=False),
        sa.Column('org_id', sa.String(length=32), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['membership_id'], ['memberships.id'], ),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_membership_id'), ['membership_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_is_revoked'), ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_org_revoked', ['org_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 5. SECURITY EVENTS TABLE
    # ==========================================================================
    op.create_table('security_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.String(length=32), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('actor_name', sa.String(length=255), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('security_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_security_events_org_id'), ['org_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_security_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_security_events_org_occurred', ['org_id', 'occurred_at'], unique=False)
        batch_op.create_index('ix_security_events_actor_type', ['actor_id', 'event_type'], unique=False)


def downgrade():
    op.drop_table('security_events')
    op.drop_table('session_tokens')
    op.drop_table('memberships')
    op.drop_table('subscription_extensions')
    op.drop_table('organizations')
