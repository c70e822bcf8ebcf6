from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping
from uuid import UUID

from psycopg import Connection
from psycopg.errors import UndefinedFunction, UndefinedObject

from storyline.common.audit import log_event
from storyline.common.db import jsonb, lock_key
from storyline.ingest.models import RawArticle
from storyline.pipeline.settings import PipelineSettings, load_pipeline_settings
from storyline.pipeline.similarity import similarity

logger = logging.getLogger(__name__)

# Rows in these states never count as a duplicate candidate.
DETECTION_EXCLUDED_STATUSES = ("processed", "published", "merged", "discarded")
# Rows in these states do not block a new submission of the same URL.
INACTIVE_STATUSES = ("discarded", "merged")

TOPIC_ARTICLE_COLUMNS = """
ta.id, ta.shared_content_id, ta.topic_id, ta.source_id, ta.normalized_url,
ta.normalized_title, ta.processing_status, ta.regional_relevance_score,
ta.content_quality_score, ta.keyword_matches, ta.import_metadata,
ta.created_at, ta.updated_at, sac.content_checksum
"""


@dataclass(frozen=True)
class DuplicateMatch:
    duplicate_id: UUID
    similarity_score: float
    detection_method: str


class ArticleStore:
    """SQL access for the admission pipeline.

    Every method runs on the caller's connection, so a whole submission
    (lock, content upsert, junction insert, duplicate records, relevance
    decision, audit rows) commits or rolls back as one transaction.
    """

    CONTENT_LOOKUP_SQL = """
SELECT id, url, normalized_url, content_checksum
FROM shared_article_content
WHERE url = %(url)s OR normalized_url = %(normalized_url)s
ORDER BY (url = %(url)s) DESC, created_at ASC
LIMIT 1
"""

    CONTENT_UPSERT_SQL = """
INSERT INTO shared_article_content(
  url, normalized_url, title, body, author, published_at, image_url,
  canonical_url, source_domain, word_count, language
)
VALUES (
  %(url)s, %(normalized_url)s, %(title)s, %(body)s, %(author)s, %(published_at)s,
  %(image_url)s, %(canonical_url)s, %(source_domain)s, %(word_count)s, %(language)s
)
ON CONFLICT (url) DO UPDATE
SET last_seen_at = now()
RETURNING id, url, normalized_url, content_checksum
"""

    EXACT_URL_SQL = """
SELECT ta.id AS duplicate_id
FROM topic_articles ta
WHERE ta.id <> %(article_id)s
  AND ta.normalized_url = %(normalized_url)s
  AND (%(topic_id)s::uuid IS NULL OR ta.topic_id = %(topic_id)s::uuid)
  AND ta.processing_status <> ALL(%(excluded)s)
ORDER BY ta.created_at ASC
"""

    CHECKSUM_SQL = """
SELECT ta.id AS duplicate_id
FROM topic_articles ta
JOIN shared_article_content sac ON sac.id = ta.shared_content_id
WHERE ta.id <> %(article_id)s
  AND sac.content_checksum = %(checksum)s
  AND (%(topic_id)s::uuid IS NULL OR ta.topic_id = %(topic_id)s::uuid)
  AND ta.processing_status <> ALL(%(excluded)s)
ORDER BY ta.created_at ASC
"""

    TITLE_SIMILARITY_SQL = """
SELECT ta.id AS duplicate_id,
       similarity(ta.normalized_title, %(title)s) AS score
FROM topic_articles ta
WHERE ta.id <> %(article_id)s
  AND ta.normalized_title <> ''
  AND (%(topic_id)s::uuid IS NULL OR ta.topic_id = %(topic_id)s::uuid)
  AND ta.processing_status <> ALL(%(excluded)s)
  AND similarity(ta.normalized_title, %(title)s) >= %(threshold)s
ORDER BY score DESC, ta.created_at ASC
"""

    TITLE_CANDIDATES_SQL = """
SELECT ta.id AS duplicate_id, ta.normalized_title, ta.created_at
FROM topic_articles ta
WHERE ta.id <> %(article_id)s
  AND ta.normalized_title <> ''
  AND (%(topic_id)s::uuid IS NULL OR ta.topic_id = %(topic_id)s::uuid)
  AND ta.processing_status <> ALL(%(excluded)s)
"""

    def __init__(self, conn: Connection[Any]) -> None:
        self.conn = conn

    # -- transaction helpers -------------------------------------------------

    def lock(self, key: str) -> None:
        lock_key(self.conn, key)

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.conn.transaction():
            yield

    def load_settings(self) -> PipelineSettings:
        return load_pipeline_settings(self.conn)

    def audit(
        self,
        level: str,
        message: str,
        context: Mapping[str, Any] | None = None,
        function_name: str | None = None,
    ) -> None:
        log_event(self.conn, level, message, context, function_name)

    # -- topics and sources --------------------------------------------------

    def get_topic(self, topic_id: UUID) -> dict[str, Any] | None:
        return self.conn.execute(
            "SELECT id, slug, name, topic_type, region, keywords, is_active FROM topics WHERE id = %s",
            (topic_id,),
        ).fetchone()

    def get_source(self, source_id: UUID | None) -> dict[str, Any] | None:
        if source_id is None:
            return None
        return self.conn.execute(
            """
            SELECT id, source_name, canonical_domain, credibility_score, source_type, is_active
            FROM content_sources
            WHERE id = %s
            """,
            (source_id,),
        ).fetchone()

    # -- shared content ------------------------------------------------------

    def find_content(self, url: str, normalized_url: str) -> dict[str, Any] | None:
        return self.conn.execute(
            self.CONTENT_LOOKUP_SQL, {"url": url, "normalized_url": normalized_url}
        ).fetchone()

    def upsert_content(self, raw: RawArticle, normalized_url: str, domain: str) -> dict[str, Any]:
        existing = self.find_content(raw.source_url, normalized_url)
        if existing is not None:
            self.conn.execute(
                "UPDATE shared_article_content SET last_seen_at = now() WHERE id = %s",
                (existing["id"],),
            )
            return existing

        return self.conn.execute(
            self.CONTENT_UPSERT_SQL,
            {
                "url": raw.source_url,
                "normalized_url": normalized_url,
                "title": raw.title,
                "body": raw.body,
                "author": raw.author,
                "published_at": raw.published_at,
                "image_url": raw.image_url,
                "canonical_url": raw.canonical_url,
                "source_domain": domain,
                "word_count": raw.word_count,
                "language": raw.language,
            },
        ).fetchone()

    # -- topic articles ------------------------------------------------------

    def get_topic_article(self, article_id: UUID, *, for_update: bool = False) -> dict[str, Any] | None:
        sql = f"""
            SELECT {TOPIC_ARTICLE_COLUMNS}
            FROM topic_articles ta
            JOIN shared_article_content sac ON sac.id = ta.shared_content_id
            WHERE ta.id = %s
        """
        if for_update:
            sql += " FOR UPDATE OF ta"
        return self.conn.execute(sql, (article_id,)).fetchone()

    def find_topic_article(self, shared_content_id: UUID, topic_id: UUID) -> dict[str, Any] | None:
        return self.conn.execute(
            f"""
            SELECT {TOPIC_ARTICLE_COLUMNS}
            FROM topic_articles ta
            JOIN shared_article_content sac ON sac.id = ta.shared_content_id
            WHERE ta.shared_content_id = %s AND ta.topic_id = %s
            """,
            (shared_content_id, topic_id),
        ).fetchone()

    def find_active_by_url(self, topic_id: UUID, normalized_url: str) -> dict[str, Any] | None:
        return self.conn.execute(
            """
            SELECT id, processing_status
            FROM topic_articles
            WHERE topic_id = %s
              AND normalized_url = %s
              AND processing_status <> ALL(%s)
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (topic_id, normalized_url, list(INACTIVE_STATUSES)),
        ).fetchone()

    def insert_topic_article(
        self,
        *,
        shared_content_id: UUID,
        topic_id: UUID,
        source_id: UUID | None,
        normalized_url: str,
        normalized_title: str,
        import_metadata: Mapping[str, Any],
        keyword_matches: list[str],
    ) -> dict[str, Any]:
        inserted = self.conn.execute(
            """
            INSERT INTO topic_articles(
              shared_content_id, topic_id, source_id, normalized_url, normalized_title,
              processing_status, keyword_matches, import_metadata
            )
            VALUES (%s, %s, %s, %s, %s, 'new', %s, %s)
            RETURNING id
            """,
            (
                shared_content_id,
                topic_id,
                source_id,
                normalized_url,
                normalized_title,
                keyword_matches,
                jsonb(dict(import_metadata)),
            ),
        ).fetchone()
        return self.get_topic_article(inserted["id"])

    def set_status(
        self,
        article_id: UUID,
        status: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self.conn.execute(
            """
            UPDATE topic_articles
            SET processing_status = %s,
                import_metadata = COALESCE(import_metadata, '{}'::jsonb) || %s,
                updated_at = now()
            WHERE id = %s
            """,
            (status, jsonb(dict(metadata or {})), article_id),
        )

    def merge_metadata(self, article_id: UUID, metadata: Mapping[str, Any]) -> None:
        self.conn.execute(
            """
            UPDATE topic_articles
            SET import_metadata = COALESCE(import_metadata, '{}'::jsonb) || %s,
                updated_at = now()
            WHERE id = %s
            """,
            (jsonb(dict(metadata)), article_id),
        )

    def set_relevance_score(self, article_id: UUID, score: int) -> None:
        self.conn.execute(
            """
            UPDATE topic_articles
            SET regional_relevance_score = %s,
                import_metadata = COALESCE(import_metadata, '{}'::jsonb)
                                  || jsonb_build_object('regional_relevance_score', %s::int),
                updated_at = now()
            WHERE id = %s
            """,
            (score, score, article_id),
        )

    def discard_new(self, article_id: UUID, metadata: Mapping[str, Any]) -> bool:
        """Discard a row only while it is still ``new``; returns whether it changed."""
        updated = self.conn.execute(
            """
            UPDATE topic_articles
            SET processing_status = 'discarded',
                import_metadata = COALESCE(import_metadata, '{}'::jsonb) || %s,
                updated_at = now()
            WHERE id = %s AND processing_status = 'new'
            RETURNING id
            """,
            (jsonb(dict(metadata)), article_id),
        ).fetchone()
        return updated is not None

    # -- duplicate detection -------------------------------------------------

    def _detection_params(self, article: Mapping[str, Any], topic_id: UUID | None) -> dict[str, Any]:
        return {
            "article_id": article["id"],
            "topic_id": topic_id,
            "excluded": list(DETECTION_EXCLUDED_STATUSES),
        }

    def exact_url_matches(self, article: Mapping[str, Any], topic_id: UUID | None) -> list[DuplicateMatch]:
        if not article.get("normalized_url"):
            return []
        params = self._detection_params(article, topic_id)
        params["normalized_url"] = article["normalized_url"]
        rows = self.conn.execute(self.EXACT_URL_SQL, params).fetchall()
        return [DuplicateMatch(row["duplicate_id"], 1.0, "exact_url") for row in rows]

    def checksum_matches(self, article: Mapping[str, Any], topic_id: UUID | None) -> list[DuplicateMatch]:
        if not article.get("content_checksum"):
            return []
        params = self._detection_params(article, topic_id)
        params["checksum"] = article["content_checksum"]
        rows = self.conn.execute(self.CHECKSUM_SQL, params).fetchall()
        return [DuplicateMatch(row["duplicate_id"], 1.0, "content_checksum") for row in rows]

    def title_matches(
        self,
        article: Mapping[str, Any],
        topic_id: UUID | None,
        threshold: float,
    ) -> list[DuplicateMatch]:
        title = article.get("normalized_title") or ""
        if not title:
            return []
        params = self._detection_params(article, topic_id)
        params["title"] = title
        params["threshold"] = threshold

        try:
            with self.conn.transaction():
                rows = self.conn.execute(self.TITLE_SIMILARITY_SQL, params).fetchall()
            return [
                DuplicateMatch(row["duplicate_id"], round(float(row["score"]), 4), "title_similarity")
                for row in rows
            ]
        except (UndefinedFunction, UndefinedObject):
            logger.warning("pg_trgm unavailable; scoring title similarity in process")

        scored = []
        for row in self.conn.execute(self.TITLE_CANDIDATES_SQL, params).fetchall():
            score = similarity(title, row["normalized_title"])
            if score >= threshold:
                scored.append((score, row["created_at"], row["duplicate_id"]))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [DuplicateMatch(duplicate_id, round(score, 4), "title_similarity") for score, _, duplicate_id in scored]

    def record_pending_duplicates(self, article_id: UUID, matches: list[DuplicateMatch]) -> int:
        inserted = 0
        for match in matches:
            row = self.conn.execute(
                """
                INSERT INTO article_duplicates_pending(
                  original_article_id, duplicate_article_id, similarity_score, detection_method
                )
                VALUES (%s, %s, %s, %s)
                ON CONFLICT DO NOTHING
                RETURNING id
                """,
                (article_id, match.duplicate_id, match.similarity_score, match.detection_method),
            ).fetchone()
            if row is not None:
                inserted += 1
        return inserted

    def pending_pair_exists(self, article_id: UUID, other_id: UUID) -> bool:
        """Whether the two rows were ever queued together, in either direction and any status."""
        row = self.conn.execute(
            """
            SELECT 1 AS present
            FROM article_duplicates_pending
            WHERE (original_article_id = %(a)s AND duplicate_article_id = %(b)s)
               OR (original_article_id = %(b)s AND duplicate_article_id = %(a)s)
            LIMIT 1
            """,
            {"a": article_id, "b": other_id},
        ).fetchone()
        return row is not None

    # -- rescans -------------------------------------------------------------

    def recent_new_articles(self, limit: int) -> list[UUID]:
        rows = self.conn.execute(
            """
            SELECT id
            FROM topic_articles
            WHERE processing_status = 'new'
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (limit,),
        ).fetchall()
        return [row["id"] for row in rows]

    def fingerprint_candidates(self, limit: int) -> list[dict[str, Any]]:
        return self.conn.execute(
            """
            SELECT ta.id, ta.topic_id, ta.created_at, cf.fingerprint
            FROM topic_articles ta
            JOIN content_fingerprints cf ON cf.shared_content_id = ta.shared_content_id
            WHERE ta.processing_status <> ALL(%s)
            ORDER BY ta.created_at DESC
            LIMIT %s
            """,
            (list(DETECTION_EXCLUDED_STATUSES), limit),
        ).fetchall()

    # -- review queue --------------------------------------------------------

    def list_pending_duplicates(self, topic_id: UUID, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        return self.conn.execute(
            """
            SELECT p.id, p.original_article_id, p.duplicate_article_id, p.similarity_score,
                   p.detection_method, p.status, p.created_at,
                   orig.title AS original_title, dup.title AS duplicate_title
            FROM article_duplicates_pending p
            JOIN topic_articles ta ON ta.id = p.original_article_id
            JOIN shared_article_content orig ON orig.id = ta.shared_content_id
            JOIN topic_articles tb ON tb.id = p.duplicate_article_id
            JOIN shared_article_content dup ON dup.id = tb.shared_content_id
            WHERE ta.topic_id = %s AND p.status = 'pending'
            ORDER BY p.similarity_score DESC, p.created_at ASC
            LIMIT %s OFFSET %s
            """,
            (topic_id, limit, offset),
        ).fetchall()

    def get_pending_duplicate(self, pending_id: UUID) -> dict[str, Any] | None:
        return self.conn.execute(
            """
            SELECT id, original_article_id, duplicate_article_id, similarity_score,
                   detection_method, status
            FROM article_duplicates_pending
            WHERE id = %s
            FOR UPDATE
            """,
            (pending_id,),
        ).fetchone()

    def close_pending_duplicate(self, pending_id: UUID, status: str) -> None:
        self.conn.execute(
            "UPDATE article_duplicates_pending SET status = %s, resolved_at = now() WHERE id = %s",
            (status, pending_id),
        )

    def open_pending_count(self, article_id: UUID) -> int:
        row = self.conn.execute(
            """
            SELECT count(*) AS open_count
            FROM article_duplicates_pending
            WHERE original_article_id = %s AND status = 'pending'
            """,
            (article_id,),
        ).fetchone()
        return int(row["open_count"])
