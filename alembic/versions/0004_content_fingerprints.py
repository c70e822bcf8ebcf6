"""simhash fingerprints of shared content

Revision ID: 0004_content_fingerprints
Revises: 0003_pipeline_settings
Create Date: 2026-10-18 00:30:00
"""

from alembic import op

revision = "0004_content_fingerprints"
down_revision = "0003_pipeline_settings"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS content_fingerprints (
          shared_content_id UUID PRIMARY KEY REFERENCES shared_article_content(id) ON DELETE CASCADE,
          fingerprint BIGINT NOT NULL,
          computed_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS content_fingerprints")
