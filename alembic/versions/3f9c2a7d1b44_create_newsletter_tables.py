"""create_newsletter_tables

Revision ID: 3f9c2a7d1b44
Revises:
Create Date: 2026-10-17 10:12:31.418205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b44'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    subscription_status = sa.Enum('pending', 'active', 'unsubscribed', name='subscription_status')

    op.create_table(
        'newsletter_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(length=254), nullable=False),
        sa.Column('status', subscription_status, nullable=False, server_default='pending'),
        sa.Column('source', sa.String(length=50), nullable=False, server_default='web'),
        sa.Column('tags', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('subscribed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unsubscribed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('unsubscribe_token', sa.String(length=64), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_newsletter_subscriptions_id', 'newsletter_subscriptions', ['id'])
    op.create_index('ix_newsletter_subscriptions_email', 'newsletter_subscriptions', ['email'], unique=True)
    op.create_index('ix_newsletter_subscriptions_unsubscribe_token', 'newsletter_subscriptions', ['unsubscribe_token'], unique=True)
    op.create_index('ix_newsletter_subscriptions_status', 'newsletter_subscriptions', ['status'])
    op.create_index('ix_newsletter_subscriptions_subscribed_at', 'newsletter_subscriptions', ['subscribed_at'])
    op.create_index('ix_newsletter_subscriptions_source', 'newsletter_subscriptions', ['source'])

    op.create_table(
        'pending_subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('token', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=254), nullable=False),
        sa.Column('source', sa.String(length=50), nullable=False, server_default='web'),
        sa.Column('tags', sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_pending_subscriptions_token', 'pending_subscriptions', ['token'], unique=True)
    op.create_index('ix_pending_subscriptions_email', 'pending_subscriptions', ['email'], unique=True)
    op.create_index('ix_pending_subscriptions_created_at', 'pending_subscriptions', ['created_at'])

    op.create_table(
        'unsubscription_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('newsletter_subscriptions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('email', sa.String(length=254), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('unsubscribed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
    )
    op.create_index('ix_unsubscription_logs_subscription_id', 'unsubscription_logs', ['subscription_id'])
    op.create_index('ix_unsubscription_logs_unsubscribed_at', 'unsubscription_logs', ['unsubscribed_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_unsubscription_logs_unsubscribed_at', table_name='unsubscription_logs')
    op.drop_index('ix_unsubscription_logs_subscription_id', table_name='unsubscription_logs')
    op.drop_table('unsubscription_logs')

    op.drop_index('ix_pending_subscriptions_created_at', table_name='pending_subscriptions')
    op.drop_index('ix_pending_subscriptions_email', table_name='pending_subscriptions')
    op.drop_index('ix_pending_subscriptions_token', table_name='pending_subscriptions')
    op.drop_table('pending_subscriptions')

    op.drop_index('ix_newsletter_subscriptions_source', table_name='newsletter_subscriptions')
    op.drop_index('ix_newsletter_subscriptions_subscribed_at', table_name='newsletter_subscriptions')
    op.drop_index('ix_newsletter_subscriptions_status', table_name='newsletter_subscriptions')
    op.drop_index('ix_newsletter_subscriptions_unsubscribe_token', table_name='newsletter_subscriptions')
    op.drop_index('ix_newsletter_subscriptions_email', table_name='newsletter_subscriptions')
    op.drop_index('ix_newsletter_subscriptions_id', table_name='newsletter_subscriptions')
    op.drop_table('newsletter_subscriptions')

    sa.Enum(name='subscription_status').drop(op.get_bind(), checkfirst=True)
