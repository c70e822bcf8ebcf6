import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from uuid import UUID

from simhash import Simhash

from storyline.common.config import settings
from storyline.common.db import get_conn, get_conn_async
from storyline.pipeline.duplicates import find_duplicates
from storyline.pipeline.store import ArticleStore, DuplicateMatch

logger = logging.getLogger(__name__)

BATCH_SIZE = 2000
FINGERPRINT_METHOD = "content_fingerprint"
UINT64_MASK = (1 << 64) - 1


def _to_pg_bigint(value: int) -> int:
    if value >= (1 << 63):
        return value - (1 << 64)
    return value


def fingerprint(body: str) -> int:
    return _to_pg_bigint(Simhash((body or "").split()).value)


def fingerprint_distance(left: int, right: int) -> int:
    return Simhash(left & UINT64_MASK).distance(Simhash(right & UINT64_MASK))


def near_duplicate_pairs(
    rows: Iterable[Mapping[str, Any]],
    max_distance: int,
) -> list[tuple[Any, Any, float]]:
    """Pairs of topic articles in the same topic whose bodies are nearly identical.

    Rows carry ``id``, ``topic_id``, ``fingerprint`` and ``created_at``. Each
    pair is ``(newer_id, older_id, score)`` where the score is the share of
    matching fingerprint bits.
    """
    by_topic: dict[Any, list[Mapping[str, Any]]] = {}
    for row in rows:
        by_topic.setdefault(row["topic_id"], []).append(row)

    pairs: list[tuple[Any, Any, float]] = []
    for topic_rows in by_topic.values():
        topic_rows.sort(key=lambda row: row["created_at"])
        for idx, older in enumerate(topic_rows):
            for newer in topic_rows[idx + 1 :]:
                distance = fingerprint_distance(older["fingerprint"], newer["fingerprint"])
                if distance <= max_distance:
                    pairs.append((newer["id"], older["id"], round(1.0 - distance / 64.0, 4)))
    return pairs


async def _flush_rows(cur, rows: list[tuple[Any, int]]) -> None:
    if not rows:
        return

    await cur.execute(
        """
        CREATE TEMP TABLE IF NOT EXISTS tmp_content_fingerprints (
          shared_content_id UUID PRIMARY KEY,
          fingerprint BIGINT NOT NULL
        ) ON COMMIT DROP
        """
    )
    async with cur.copy("COPY tmp_content_fingerprints(shared_content_id, fingerprint) FROM STDIN") as copy:
        for row in rows:
            await copy.write_row(row)

    await cur.execute(
        """
        INSERT INTO content_fingerprints(shared_content_id, fingerprint)
        SELECT shared_content_id, fingerprint
        FROM tmp_content_fingerprints
        ON CONFLICT(shared_content_id) DO UPDATE
        SET fingerprint = EXCLUDED.fingerprint,
            computed_at = now()
        """
    )
    await cur.execute("TRUNCATE tmp_content_fingerprints")


async def fingerprint_content(total_nodes: int, node_index: int) -> int:
    written = 0
    async with get_conn_async() as conn:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                SELECT sac.id, sac.body
                FROM shared_article_content sac
                LEFT JOIN content_fingerprints cf ON cf.shared_content_id = sac.id
                WHERE sac.body IS NOT NULL
                  AND (cf.shared_content_id IS NULL OR sac.updated_at > cf.computed_at)
                  AND mod(abs(hashtext(sac.id::text)), %s) = %s
                """,
                (total_nodes, node_index),
            )
            source_rows = await cur.fetchall()
            rows: list[tuple[Any, int]] = []
            for row in source_rows:
                rows.append((row["id"], fingerprint(row["body"])))
                written += 1
                if len(rows) >= BATCH_SIZE:
                    await _flush_rows(cur, rows)
                    rows.clear()

            await _flush_rows(cur, rows)
    return written


def _is_older(candidate: Mapping[str, Any], article: Mapping[str, Any]) -> bool:
    return (candidate["created_at"], str(candidate["id"])) < (article["created_at"], str(article["id"]))


def hold_for_review(store: ArticleStore, article_id: UUID, matches: list[DuplicateMatch]) -> int:
    """Queue matches against a ``new`` row and park that row as ``duplicate_pending``.

    Only the newer row of a pair is ever held, and a pair already queued in
    either direction is not queued again.
    """
    article = store.get_topic_article(article_id, for_update=True)
    if article is None or article["processing_status"] != "new":
        return 0

    fresh: list[DuplicateMatch] = []
    for match in matches:
        other = store.get_topic_article(match.duplicate_id)
        if other is None or not _is_older(other, article):
            continue
        if store.pending_pair_exists(article_id, match.duplicate_id):
            continue
        fresh.append(match)
    if not fresh:
        return 0

    queued = store.record_pending_duplicates(article_id, fresh)
    if not queued:
        return 0

    store.set_status(
        article_id,
        "duplicate_pending",
        {
            "duplicates_found": queued,
            "duplicate_check_completed": True,
            "topic_scoped": True,
            "checked_at": datetime.now(timezone.utc),
            "detected_by": "rescan",
        },
    )
    store.audit(
        "info",
        "Article held for duplicate review",
        {
            "topic_article_id": article_id,
            "topic_id": article["topic_id"],
            "matches": [
                {"id": m.duplicate_id, "score": m.similarity_score, "method": m.detection_method} for m in fresh
            ],
        },
        "rescan_duplicates",
    )
    return queued


def queue_fingerprint_matches(store: ArticleStore, limit: int, max_distance: int) -> int:
    by_newer: dict[UUID, list[DuplicateMatch]] = {}
    for newer_id, older_id, score in near_duplicate_pairs(store.fingerprint_candidates(limit), max_distance):
        by_newer.setdefault(newer_id, []).append(DuplicateMatch(older_id, score, FINGERPRINT_METHOD))

    return sum(hold_for_review(store, newer_id, matches) for newer_id, matches in by_newer.items())


def rescan_recent(store: ArticleStore, limit: int) -> int:
    """Rerun topic-scoped detection for recent ``new`` rows and hold what it finds."""
    threshold = store.load_settings().title_similarity_threshold
    queued = 0
    for article_id in store.recent_new_articles(limit):
        article = store.get_topic_article(article_id)
        if article is None or article["processing_status"] != "new":
            continue
        matches = find_duplicates(store, article, article["topic_id"], threshold)
        if matches:
            queued += hold_for_review(store, article_id, matches)
    return queued


def run_fingerprints() -> int:
    total_nodes = max(1, int(os.environ.get("BATCH_TOTAL_NODES", "1")))
    node_index = int(os.environ.get("BATCH_NODE_INDEX", "0"))
    written = asyncio.run(fingerprint_content(total_nodes, node_index))
    logger.info("fingerprinted content rows=%s node_index=%s", written, node_index)
    return written


def rescan_duplicates() -> dict[str, int]:
    with get_conn() as conn:
        store = ArticleStore(conn)
        summary = {
            "fingerprint_matches": queue_fingerprint_matches(
                store, settings.duplicate_rescan_limit, settings.fingerprint_max_distance
            ),
            "detector_matches": rescan_recent(store, settings.duplicate_rescan_limit),
        }
    logger.info(
        "duplicate rescan fingerprint_matches=%s detector_matches=%s",
        summary["fingerprint_matches"],
        summary["detector_matches"],
    )
    return summary


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_fingerprints()
    rescan_duplicates()
