"""create feeds, items, feed_health_logs, feed_notifications

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:00:12.482913

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c9a7d2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'feeds',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('url', sa.String, nullable=False),
        sa.Column('title', sa.String),
        sa.Column('rss_title', sa.String),
        sa.Column('refresh_interval_minutes', sa.Integer),
        sa.Column('is_active', sa.Boolean, nullable=False,
                  server_default=sa.text('true')),
        sa.Column('requires_browser', sa.Boolean, nullable=False,
                  server_default=sa.text('false')),
        sa.Column('status', sa.String, nullable=False,
                  server_default=sa.text("'active'")),
        sa.Column('consecutive_failures', sa.Integer, nullable=False,
                  server_default=sa.text('0')),
        sa.Column('failure_count', sa.Integer, nullable=False,
                  server_default=sa.text('0')),
        sa.Column('last_error', sa.String),
        sa.Column('last_error_class', sa.String),
        sa.Column('last_status_code', sa.Integer),
        sa.Column('last_fetched_at', sa.DateTime),
        sa.Column('last_success_at', sa.DateTime),
        sa.Column('last_attempt_at', sa.DateTime),
        sa.Column('total_attempts', sa.Integer, nullable=False,
                  server_default=sa.text('0')),
        sa.Column('total_successes', sa.Integer, nullable=False,
                  server_default=sa.text('0')),
        sa.Column('total_failures', sa.Integer, nullable=False,
                  server_default=sa.text('0')),
        sa.Column('avg_response_time', sa.Integer),
        sa.Column('metadata', sa.JSON, nullable=False,
                  server_default=sa.text("'{}'")),
        sa.Column('next_fetch_attempt', sa.DateTime),
        sa.Column('queued', sa.Boolean, nullable=False,
                  server_default=sa.text('false')),
        sa.Column('queued_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_index('feeds_next_fetch_attempt', 'feeds',
                    ['next_fetch_attempt'])
    op.create_index('feeds_status', 'feeds', ['status'])

    op.create_table(
        'items',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('feed_id', sa.BigInteger, nullable=False),
        sa.Column('source_guid', sa.String, nullable=False, unique=True),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('url', sa.String, nullable=False),
        sa.Column('summary', sa.Text),
        sa.Column('content', sa.Text),
        sa.Column('author', sa.String),
        sa.Column('image_url', sa.String),
        sa.Column('published_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ix_items_feed_id', 'items', ['feed_id'])
    op.create_index('items_feed_url_published', 'items',
                    ['feed_id', 'url', 'published_at'])
    op.create_index('items_published_created', 'items',
                    ['published_at', 'created_at'])

    op.create_table(
        'feed_health_logs',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('feed_id', sa.BigInteger, nullable=False),
        sa.Column('attempted_at', sa.DateTime, nullable=False),
        sa.Column('success', sa.Boolean, nullable=False),
        sa.Column('status_code', sa.Integer),
        sa.Column('error_message', sa.String),
        sa.Column('error_class', sa.String),
        sa.Column('response_time', sa.Integer),
        sa.Column('strategy', sa.String),
    )
    op.create_index('feed_health_logs_feed_attempted', 'feed_health_logs',
                    ['feed_id', 'attempted_at'])

    op.create_table(
        'feed_notifications',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('feed_id', sa.BigInteger, nullable=False),
        sa.Column('type', sa.String, nullable=False),
        sa.Column('priority', sa.String, nullable=False),
        sa.Column('title', sa.String, nullable=False),
        sa.Column('message', sa.String, nullable=False),
        sa.Column('is_read', sa.Boolean, nullable=False,
                  server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime),
    )
    op.create_index('ix_feed_notifications_feed_id', 'feed_notifications',
                    ['feed_id'])


def downgrade():
    op.drop_table('feed_notifications')
    op.drop_table('feed_health_logs')
    op.drop_table('items')
    op.drop_table('feeds')
