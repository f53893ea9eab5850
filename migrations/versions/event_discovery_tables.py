"""Alembic migration: events, event_categories, scraping_jobs"""
from alembic import op
import sqlalchemy as sa

revision = "0001_event_discovery"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='active'),
        sa.Column('event_date', sa.DateTime(), nullable=False),
        sa.Column('event_end_date', sa.DateTime(), nullable=True),
        sa.Column('venue_name', sa.String(500), nullable=True),
        sa.Column('venue_address', sa.String(1000), nullable=True),
        sa.Column('city', sa.String(200), nullable=False),
        sa.Column('country', sa.String(8), nullable=False, server_default='US'),
        sa.Column('is_online', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_free', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price_min', sa.Float(), nullable=True),
        sa.Column('price_max', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('organizer_name', sa.String(500), nullable=True),
        sa.Column('organizer_description', sa.Text(), nullable=True),
        sa.Column('organizer_rating', sa.Float(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('registered_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tech_stack', sa.JSON(), nullable=False),
        sa.Column('quality_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('completeness_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('external_url', sa.String(2048), nullable=True),
        sa.Column('image_url', sa.String(2048), nullable=True),
        sa.Column('source_platform', sa.String(32), nullable=False),
        sa.Column('source_id', sa.String(255), nullable=False),
        sa.Column('scraped_at', sa.DateTime(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_platform', 'source_id', name='uq_events_source_identity'),
    )
    op.create_index('ix_events_city', 'events', ['city'])
    op.create_index('ix_events_event_date', 'events', ['event_date'])
    op.create_index('ix_events_event_type', 'events', ['event_type'])
    op.create_index('idx_events_title_city', 'events', ['title', 'city'])
    op.create_index('idx_events_quality_date', 'events', ['quality_score', 'event_date'])

    op.create_table(
        'event_categories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('value', sa.String(100), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='1.0'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', 'category', 'value', name='uq_event_categories_value'),
    )
    op.create_index('ix_event_categories_event_id', 'event_categories', ['event_id'])
    op.create_index('ix_event_categories_category', 'event_categories', ['category'])

    op.create_table(
        'scraping_jobs',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('query', sa.String(200), nullable=True),
        sa.Column('city', sa.String(500), nullable=True),
        sa.Column('platforms', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('events_scraped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scraping_jobs_platform', 'scraping_jobs', ['platform'])
    op.create_index('ix_scraping_jobs_status', 'scraping_jobs', ['status'])
    op.create_index('ix_scraping_jobs_created_at', 'scraping_jobs', ['created_at'])


def downgrade():
    op.drop_index('ix_scraping_jobs_created_at', table_name='scraping_jobs')
    op.drop_index('ix_scraping_jobs_status', table_name='scraping_jobs')
    op.drop_index('ix_scraping_jobs_platform', table_name='scraping_jobs')
    op.drop_table('scraping_jobs')

    op.drop_index('ix_event_categories_category', table_name='event_categories')
    op.drop_index('ix_event_categories_event_id', table_name='event_categories')
    op.drop_table('event_categories')

    op.drop_index('idx_events_quality_date', table_name='events')
    op.drop_index('idx_events_title_city', table_name='events')
    op.drop_index('ix_events_event_type', table_name='events')
    op.drop_index('ix_events_event_date', table_name='events')
    op.drop_index('ix_events_city', table_name='events')
    op.drop_table('events')
