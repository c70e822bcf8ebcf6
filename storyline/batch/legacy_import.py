"""One-way import of single-tenant ``articles`` rows into the junction shape.

Databases created by this project never have an ``articles`` table; the job
is a no-op there. Older deployments get every topic-bound legacy article
copied into ``shared_article_content`` + ``topic_articles`` once, with the
legacy status, scores and metadata carried over.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from psycopg import Connection

from storyline.common.audit import log_event
from storyline.common.db import get_conn, jsonb
from storyline.ingest.normalization import normalize_title, normalize_url, source_domain

logger = logging.getLogger(__name__)

BATCH_SIZE = 500
KNOWN_STATUSES = {"new", "processing", "processed", "discarded", "duplicate_pending", "merged"}

LEGACY_ROWS_SQL = """
SELECT a.id, a.topic_id, a.source_id, a.source_url, a.title, a.body, a.author,
       a.published_at, a.image_url, a.processing_status, a.regional_relevance_score,
       a.content_quality_score, a.import_metadata, a.created_at
FROM articles a
WHERE a.topic_id IS NOT NULL
  AND a.source_url IS NOT NULL
  AND NOT EXISTS (
    SELECT 1
    FROM topic_articles ta
    WHERE ta.topic_id = a.topic_id
      AND ta.import_metadata ->> 'legacy_article_id' = a.id::text
  )
  AND NOT EXISTS (
    SELECT 1
    FROM topic_articles ta
    JOIN shared_article_content sac ON sac.id = ta.shared_content_id
    WHERE ta.topic_id = a.topic_id
      AND sac.url = a.source_url
  )
ORDER BY a.created_at ASC
LIMIT %s
"""


def legacy_table_exists(conn: Connection[Any]) -> bool:
    row = conn.execute("SELECT to_regclass('public.articles') IS NOT NULL AS present").fetchone()
    return bool(row["present"])


def junction_values(legacy: Mapping[str, Any]) -> dict[str, Any]:
    """Map one legacy row onto the columns of the junction shape."""
    status = legacy.get("processing_status") or "new"
    if status not in KNOWN_STATUSES:
        status = "processed" if status == "published" else "new"
    metadata = dict(legacy.get("import_metadata") or {})
    metadata["legacy_article_id"] = str(legacy["id"])
    return {
        "url": legacy["source_url"],
        "normalized_url": normalize_url(legacy["source_url"]) or legacy["source_url"],
        "source_domain": source_domain(legacy["source_url"]),
        "normalized_title": normalize_title(legacy.get("title")),
        "processing_status": status,
        "import_metadata": metadata,
    }


def _import_row(conn: Connection[Any], legacy: Mapping[str, Any]) -> bool:
    values = junction_values(legacy)
    content = conn.execute(
        """
        INSERT INTO shared_article_content(
          url, normalized_url, title, body, author, published_at, image_url,
          source_domain, word_count, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()))
        ON CONFLICT (url) DO UPDATE
        SET last_seen_at = now()
        RETURNING id
        """,
        (
            values["url"],
            values["normalized_url"],
            legacy.get("title") or "",
            legacy.get("body"),
            legacy.get("author"),
            legacy.get("published_at"),
            legacy.get("image_url"),
            values["source_domain"],
            len((legacy.get("body") or "").split()),
            legacy.get("created_at"),
        ),
    ).fetchone()

    inserted = _insert_junction(conn, content["id"], legacy, values, values["processing_status"])
    if inserted or values["processing_status"] in ("discarded", "merged"):
        return inserted

    # Another active row already holds this URL in the topic.
    values["import_metadata"]["merged_reason"] = "legacy_duplicate"
    return _insert_junction(conn, content["id"], legacy, values, "merged")


def _insert_junction(
    conn: Connection[Any],
    shared_content_id: Any,
    legacy: Mapping[str, Any],
    values: Mapping[str, Any],
    status: str,
) -> bool:
    inserted = conn.execute(
        """
        INSERT INTO topic_articles(
          shared_content_id, topic_id, source_id, normalized_url, normalized_title,
          processing_status, regional_relevance_score, content_quality_score,
          import_metadata, created_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()))
        ON CONFLICT DO NOTHING
        RETURNING id
        """,
        (
            shared_content_id,
            legacy["topic_id"],
            legacy.get("source_id"),
            values["normalized_url"],
            values["normalized_title"],
            status,
            legacy.get("regional_relevance_score"),
            legacy.get("content_quality_score"),
            jsonb(values["import_metadata"]),
            legacy.get("created_at"),
        ),
    ).fetchone()
    return inserted is not None


def run(batch_size: int = BATCH_SIZE) -> int:
    imported = 0
    skipped = 0
    with get_conn() as conn:
        if not legacy_table_exists(conn):
            logger.info("no legacy articles table; nothing to import")
            return 0

        rows = conn.execute(LEGACY_ROWS_SQL, (batch_size,)).fetchall()
        for legacy in rows:
            if _import_row(conn, legacy):
                imported += 1
            else:
                skipped += 1

        if rows:
            log_event(
                conn,
                "info",
                "Imported legacy articles",
                {"imported": imported, "skipped": skipped, "batch_size": batch_size},
                "legacy_import",
            )
    logger.info("legacy import imported=%s skipped=%s", imported, skipped)
    return imported


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
