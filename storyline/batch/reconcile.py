"""Source and content reconciliation.

Each job is idempotent and safe to rerun: it only touches rows that are
still out of line and reports how many it fixed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from psycopg import Connection

from storyline.common.audit import log_event
from storyline.common.db import get_conn

logger = logging.getLogger(__name__)

FEED_URL_MARKERS = ("/rss", "/feed")


def _canonical_rank(source: Mapping[str, Any]) -> tuple[int, int, datetime]:
    feed_url = (source.get("feed_url") or "").lower()
    is_feed = any(marker in feed_url for marker in FEED_URL_MARKERS)
    scraped = source.get("articles_scraped")
    created_at = source.get("created_at") or datetime.max.replace(tzinfo=timezone.utc)
    return (
        0 if is_feed else 1,
        # NULL counts sort last.
        -scraped if scraped is not None else 1,
        created_at,
    )


def pick_canonical_source(sources: Iterable[Mapping[str, Any]]) -> Mapping[str, Any]:
    """Prefer an RSS-style feed URL, then the most articles scraped, then the oldest row."""
    return min(sources, key=_canonical_rank)


def relink_orphaned_content(conn: Connection[Any]) -> int:
    """Attach topic articles with no source to the source serving their domain."""
    rows = conn.execute(
        """
        WITH candidates AS (
          SELECT DISTINCT ON (ta.id)
                 ta.id AS topic_article_id,
                 cs.id AS source_id
          FROM topic_articles ta
          JOIN shared_article_content sac ON sac.id = ta.shared_content_id
          JOIN content_sources cs ON cs.canonical_domain = sac.source_domain
          LEFT JOIN topic_sources ts ON ts.source_id = cs.id AND ts.topic_id = ta.topic_id
          WHERE ta.source_id IS NULL
            AND sac.source_domain IS NOT NULL
          ORDER BY ta.id, (ts.source_id IS NOT NULL) DESC, cs.is_active DESC, cs.created_at ASC
        )
        UPDATE topic_articles ta
        SET source_id = c.source_id,
            updated_at = now()
        FROM candidates c
        WHERE ta.id = c.topic_article_id
        RETURNING ta.id
        """
    ).fetchall()
    relinked = len(rows)
    if relinked:
        log_event(conn, "info", "Relinked orphaned topic articles", {"relinked": relinked}, "relink_orphaned_content")
    return relinked


def recount_source_articles(conn: Connection[Any]) -> int:
    rows = conn.execute(
        """
        WITH counts AS (
          SELECT cs.id, count(DISTINCT ta.shared_content_id) AS article_count
          FROM content_sources cs
          LEFT JOIN topic_articles ta ON ta.source_id = cs.id
          GROUP BY cs.id
        )
        UPDATE content_sources cs
        SET articles_scraped = counts.article_count,
            updated_at = now()
        FROM counts
        WHERE cs.id = counts.id
          AND cs.articles_scraped IS DISTINCT FROM counts.article_count
        RETURNING cs.id
        """
    ).fetchall()
    return len(rows)


def consolidate_duplicate_sources(conn: Connection[Any]) -> int:
    """Merge sources sharing a canonical domain into one row."""
    sources = conn.execute(
        """
        SELECT id, canonical_domain, feed_url, articles_scraped, created_at
        FROM content_sources
        WHERE canonical_domain IS NOT NULL
          AND canonical_domain IN (
            SELECT canonical_domain
            FROM content_sources
            WHERE canonical_domain IS NOT NULL
            GROUP BY canonical_domain
            HAVING count(*) > 1
          )
        ORDER BY canonical_domain
        """
    ).fetchall()

    by_domain: dict[str, list[Mapping[str, Any]]] = {}
    for source in sources:
        by_domain.setdefault(source["canonical_domain"], []).append(source)

    removed = 0
    for domain, group in by_domain.items():
        keep = pick_canonical_source(group)
        duplicate_ids = [source["id"] for source in group if source["id"] != keep["id"]]

        conn.execute(
            """
            UPDATE topic_sources ts
            SET source_id = %s
            WHERE ts.source_id = ANY(%s)
              AND NOT EXISTS (
                SELECT 1 FROM topic_sources other
                WHERE other.topic_id = ts.topic_id AND other.source_id = %s
              )
            """,
            (keep["id"], duplicate_ids, keep["id"]),
        )
        conn.execute("DELETE FROM topic_sources WHERE source_id = ANY(%s)", (duplicate_ids,))
        conn.execute(
            "UPDATE topic_articles SET source_id = %s, updated_at = now() WHERE source_id = ANY(%s)",
            (keep["id"], duplicate_ids),
        )
        conn.execute("DELETE FROM content_sources WHERE id = ANY(%s)", (duplicate_ids,))

        removed += len(duplicate_ids)
        log_event(
            conn,
            "info",
            "Consolidated duplicate sources",
            {
                "canonical_domain": domain,
                "kept_source_id": keep["id"],
                "removed_count": len(duplicate_ids),
                "duplicate_ids": duplicate_ids,
            },
            "consolidate_duplicate_sources",
        )
    return removed


def remove_orphaned_sources(conn: Connection[Any]) -> int:
    rows = conn.execute(
        """
        DELETE FROM content_sources cs
        WHERE NOT EXISTS (SELECT 1 FROM topic_sources ts WHERE ts.source_id = cs.id)
          AND NOT EXISTS (SELECT 1 FROM topic_articles ta WHERE ta.source_id = cs.id)
        RETURNING id
        """
    ).fetchall()
    return len(rows)


def run() -> dict[str, int]:
    with get_conn() as conn:
        summary = {
            # Orphaned sources may still adopt articles from their domain.
            "duplicate_sources_consolidated": consolidate_duplicate_sources(conn),
            "content_relinked": relink_orphaned_content(conn),
            "orphaned_sources_removed": remove_orphaned_sources(conn),
            "sources_recounted": recount_source_articles(conn),
        }
        log_event(conn, "info", "Source cleanup completed", summary, "reconcile")
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
