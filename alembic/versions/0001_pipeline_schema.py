"""pipeline schema

Revision ID: 0001_pipeline_schema
Revises: 
Create Date: 2026-10-18 00:00:00
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_pipeline_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE EXTENSION IF NOT EXISTS pgcrypto;
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS topics (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          slug TEXT UNIQUE NOT NULL,
          name TEXT NOT NULL,
          topic_type TEXT NOT NULL DEFAULT 'regional' CHECK (topic_type IN ('regional', 'keyword')),
          region TEXT,
          keywords TEXT[] NOT NULL DEFAULT '{}',
          created_by TEXT,
          is_public BOOLEAN NOT NULL DEFAULT false,
          is_active BOOLEAN NOT NULL DEFAULT true,
          branding JSONB NOT NULL DEFAULT '{}',
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS content_sources (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          source_name TEXT UNIQUE NOT NULL,
          feed_url TEXT,
          canonical_domain TEXT,
          credibility_score INT NOT NULL DEFAULT 50 CHECK (credibility_score BETWEEN 0 AND 100),
          source_type TEXT NOT NULL DEFAULT 'national',
          is_active BOOLEAN NOT NULL DEFAULT true,
          articles_scraped INT DEFAULT 0,
          success_count INT NOT NULL DEFAULT 0,
          failure_count INT NOT NULL DEFAULT 0,
          last_scraped_at TIMESTAMPTZ,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS topic_sources (
          topic_id UUID NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
          source_id UUID NOT NULL REFERENCES content_sources(id) ON DELETE CASCADE,
          is_active BOOLEAN NOT NULL DEFAULT true,
          source_config JSONB NOT NULL DEFAULT '{}',
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          UNIQUE (topic_id, source_id)
        );

        CREATE TABLE IF NOT EXISTS shared_article_content (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          url TEXT UNIQUE NOT NULL,
          normalized_url TEXT NOT NULL,
          title TEXT NOT NULL,
          body TEXT,
          author TEXT,
          published_at TIMESTAMPTZ,
          image_url TEXT,
          canonical_url TEXT,
          source_domain TEXT,
          word_count INT NOT NULL DEFAULT 0,
          language TEXT NOT NULL DEFAULT 'en',
          content_checksum TEXT GENERATED ALWAYS AS (
            encode(digest(COALESCE(title, '') || COALESCE(body, '') || COALESCE(author, ''), 'sha256'), 'hex')
          ) STORED,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          last_seen_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS topic_articles (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          shared_content_id UUID NOT NULL REFERENCES shared_article_content(id) ON DELETE CASCADE,
          topic_id UUID NOT NULL REFERENCES topics(id) ON DELETE CASCADE,
          source_id UUID REFERENCES content_sources(id) ON DELETE SET NULL,
          normalized_url TEXT NOT NULL,
          normalized_title TEXT NOT NULL DEFAULT '',
          processing_status TEXT NOT NULL DEFAULT 'new' CHECK (
            processing_status IN ('new', 'processing', 'processed', 'discarded', 'duplicate_pending', 'merged')
          ),
          regional_relevance_score INT DEFAULT 0,
          content_quality_score INT DEFAULT 0,
          keyword_matches TEXT[] NOT NULL DEFAULT '{}',
          import_metadata JSONB NOT NULL DEFAULT '{}',
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          UNIQUE (shared_content_id, topic_id)
        );

        CREATE TABLE IF NOT EXISTS article_duplicates_pending (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          original_article_id UUID NOT NULL REFERENCES topic_articles(id) ON DELETE CASCADE,
          duplicate_article_id UUID NOT NULL REFERENCES topic_articles(id) ON DELETE CASCADE,
          similarity_score DOUBLE PRECISION NOT NULL,
          detection_method TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'merged', 'dismissed')),
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          resolved_at TIMESTAMPTZ,
          UNIQUE (original_article_id, duplicate_article_id)
        );

        CREATE TABLE IF NOT EXISTS stories (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          topic_article_id UUID NOT NULL REFERENCES topic_articles(id) ON DELETE CASCADE,
          title TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'draft',
          is_published BOOLEAN NOT NULL DEFAULT false,
          is_parliamentary BOOLEAN NOT NULL DEFAULT false,
          cover_url TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          CHECK (status <> 'published' OR is_published)
        );

        CREATE TABLE IF NOT EXISTS slides (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          story_id UUID NOT NULL REFERENCES stories(id) ON DELETE CASCADE,
          slide_number INT NOT NULL CHECK (slide_number >= 1),
          content TEXT NOT NULL DEFAULT '',
          UNIQUE (story_id, slide_number)
        );

        CREATE TABLE IF NOT EXISTS parliamentary_mentions (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          story_id UUID NOT NULL REFERENCES stories(id) ON DELETE CASCADE,
          mp_name TEXT NOT NULL,
          party TEXT,
          constituency TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS content_generation_queue (
          id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
          topic_article_id UUID REFERENCES topic_articles(id) ON DELETE CASCADE,
          status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
          attempts INT NOT NULL DEFAULT 0,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE TABLE IF NOT EXISTS system_logs (
          id BIGSERIAL PRIMARY KEY,
          level TEXT NOT NULL CHECK (level IN ('debug', 'info', 'warn', 'error')),
          message TEXT NOT NULL,
          context JSONB NOT NULL DEFAULT '{}',
          function_name TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_shared_content_normalized_url ON shared_article_content(normalized_url);
        CREATE INDEX IF NOT EXISTS idx_shared_content_checksum ON shared_article_content(content_checksum);
        CREATE INDEX IF NOT EXISTS idx_shared_content_domain ON shared_article_content(source_domain);
        CREATE INDEX IF NOT EXISTS idx_topic_articles_topic_status ON topic_articles(topic_id, processing_status);
        CREATE INDEX IF NOT EXISTS idx_topic_articles_normalized_url ON topic_articles(topic_id, normalized_url);
        CREATE INDEX IF NOT EXISTS idx_topic_articles_source ON topic_articles(source_id);
        CREATE INDEX IF NOT EXISTS idx_topic_articles_created ON topic_articles(created_at);
        CREATE INDEX IF NOT EXISTS idx_duplicates_pending_status ON article_duplicates_pending(status);
        CREATE INDEX IF NOT EXISTS idx_stories_topic_article ON stories(topic_article_id);
        CREATE INDEX IF NOT EXISTS idx_content_sources_domain ON content_sources(canonical_domain);
        CREATE INDEX IF NOT EXISTS idx_generation_queue_status ON content_generation_queue(status, updated_at);
        CREATE INDEX IF NOT EXISTS idx_system_logs_created ON system_logs(created_at);
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS system_logs")
    op.execute("DROP TABLE IF EXISTS content_generation_queue")
    op.execute("DROP TABLE IF EXISTS parliamentary_mentions")
    op.execute("DROP TABLE IF EXISTS slides")
    op.execute("DROP TABLE IF EXISTS stories")
    op.execute("DROP TABLE IF EXISTS article_duplicates_pending")
    op.execute("DROP TABLE IF EXISTS topic_articles")
    op.execute("DROP TABLE IF EXISTS shared_article_content")
    op.execute("DROP TABLE IF EXISTS topic_sources")
    op.execute("DROP TABLE IF EXISTS content_sources")
    op.execute("DROP TABLE IF EXISTS topics")
