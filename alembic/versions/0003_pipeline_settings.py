"""versioned pipeline settings

Revision ID: 0003_pipeline_settings
Revises: 0002_active_url_guard
Create Date: 2026-10-18 00:20:00
"""

from alembic import op

revision = "0003_pipeline_settings"
down_revision = "0002_active_url_guard"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS pipeline_settings (
          version SERIAL PRIMARY KEY,
          settings JSONB NOT NULL DEFAULT '{}',
          note TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS pipeline_settings")
