"""one active row per topic and url, trigram title lookup

Revision ID: 0002_active_url_guard
Revises: 0001_pipeline_schema
Create Date: 2026-10-18 00:10:00
"""

from alembic import op

revision = "0002_active_url_guard"
down_revision = "0001_pipeline_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_topic_articles_active_url
        ON topic_articles(topic_id, normalized_url)
        WHERE processing_status NOT IN ('discarded', 'merged');

        CREATE EXTENSION IF NOT EXISTS pg_trgm;

        CREATE INDEX IF NOT EXISTS idx_topic_articles_title_trgm
        ON topic_articles
        USING gin (normalized_title gin_trgm_ops);
        """
    )


def downgrade() -> None:
    op.execute(
        """
        DROP INDEX IF EXISTS idx_topic_articles_title_trgm;
        DROP INDEX IF EXISTS uq_topic_articles_active_url;
        """
    )
