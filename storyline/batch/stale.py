from __future__ import annotations

import logging
from typing import Any

from psycopg import Connection

from storyline.common.audit import log_event
from storyline.common.config import settings
from storyline.common.db import get_conn

logger = logging.getLogger(__name__)


def reset_stalled_jobs(conn: Connection[Any], timeout_minutes: int) -> int:
    """Return generation jobs stuck in ``processing`` to the queue."""
    jobs = conn.execute(
        """
        UPDATE content_generation_queue
        SET status = 'pending',
            attempts = attempts + 1,
            updated_at = now()
        WHERE status = 'processing'
          AND updated_at < now() - make_interval(mins => %s)
        RETURNING id, topic_article_id
        """,
        (timeout_minutes,),
    ).fetchall()
    if not jobs:
        return 0

    article_ids = [job["topic_article_id"] for job in jobs if job["topic_article_id"] is not None]
    if article_ids:
        conn.execute(
            """
            UPDATE topic_articles
            SET processing_status = 'new',
                updated_at = now()
            WHERE id = ANY(%s)
              AND processing_status = 'processing'
            """,
            (article_ids,),
        )

    log_event(
        conn,
        "warn",
        "Reset stalled generation jobs",
        {"reset_count": len(jobs), "timeout_minutes": timeout_minutes},
        "reset_stalled_jobs",
    )
    return len(jobs)


def expire_stale_entries(conn: Connection[Any], log_retention_days: int, resolved_retention_days: int) -> dict[str, int]:
    logs = conn.execute(
        "DELETE FROM system_logs WHERE created_at < now() - make_interval(days => %s) RETURNING id",
        (log_retention_days,),
    ).fetchall()
    resolved = conn.execute(
        """
        DELETE FROM article_duplicates_pending
        WHERE status <> 'pending'
          AND resolved_at < now() - make_interval(days => %s)
        RETURNING id
        """,
        (resolved_retention_days,),
    ).fetchall()
    finished = conn.execute(
        """
        DELETE FROM content_generation_queue
        WHERE status IN ('completed', 'failed')
          AND updated_at < now() - make_interval(days => %s)
        RETURNING id
        """,
        (log_retention_days,),
    ).fetchall()
    return {
        "system_logs": len(logs),
        "resolved_duplicates": len(resolved),
        "finished_jobs": len(finished),
    }


def run() -> None:
    with get_conn() as conn:
        reset = reset_stalled_jobs(conn, settings.stale_job_timeout_minutes)
        expired = expire_stale_entries(
            conn,
            settings.log_retention_days,
            settings.resolved_duplicate_retention_days,
        )
    logger.info("stale sweep reset=%s expired=%s", reset, expired)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
