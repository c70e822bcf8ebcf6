"""Admission of scraped articles into a topic's queue.

A submission runs in one transaction holding an advisory lock on the
normalized URL:

1. an active row for the same URL in the topic means the submission is a
   duplicate and nothing is inserted;
2. otherwise the shared content row is reused or created and a junction row
   is added for the topic;
3. close matches found by the detector park the row as ``duplicate_pending``
   for review;
4. rows still ``new`` go through the relevance gate.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from psycopg.errors import UniqueViolation

from storyline.common.db import get_conn
from storyline.ingest.models import RawArticle, SubmitResult, SubmitStatus
from storyline.ingest.normalization import normalize_title, normalize_url, source_domain
from storyline.ingest.tokenizer import match_keywords
from storyline.pipeline.duplicates import find_duplicates
from storyline.pipeline.errors import TopicNotFound
from storyline.pipeline.relevance import validate_relevance
from storyline.pipeline.store import INACTIVE_STATUSES, ArticleStore

logger = logging.getLogger(__name__)


class AdmissionService:
    def __init__(self, store: ArticleStore) -> None:
        self.store = store

    def _prevented(self, existing_id: UUID, raw: RawArticle, topic_id: UUID, reason: str) -> SubmitResult:
        now = datetime.now(timezone.utc)
        self.store.merge_metadata(
            existing_id,
            {
                "duplicate_prevented": True,
                "prevented_at": now,
                "prevented_url": raw.source_url,
            },
        )
        self.store.audit(
            "info",
            "Duplicate article prevented",
            {
                "existing_article_id": existing_id,
                "topic_id": topic_id,
                "url": raw.source_url,
                "title": raw.title,
                "reason": reason,
            },
            "submit_article",
        )
        return SubmitResult(status=SubmitStatus.DUPLICATE, duplicate_of_id=existing_id, reason=reason)

    def submit(self, raw: RawArticle, topic_id: UUID, source_id: UUID | None = None) -> SubmitResult:
        """Admit one article into a topic.

        A URL whose normalized key is empty (``https://`` and the like) cannot
        be deduplicated against anything, so it is rejected with reason
        ``invalid_url`` before any row is written.
        """
        store = self.store
        topic = store.get_topic(topic_id)
        if topic is None:
            raise TopicNotFound(topic_id)

        normalized_url = normalize_url(raw.source_url)
        if not normalized_url:
            logger.info("rejecting submission with unusable url topic_id=%s url=%r", topic_id, raw.source_url)
            return SubmitResult(status=SubmitStatus.REJECTED, reason="invalid_url")

        settings = store.load_settings()
        store.lock(normalized_url)

        existing = store.find_active_by_url(topic_id, normalized_url)
        if existing is not None:
            return self._prevented(existing["id"], raw, topic_id, "exact_url")

        content = store.upsert_content(raw, normalized_url, source_domain(raw.source_url))
        prior = store.find_topic_article(content["id"], topic_id)
        if prior is not None:
            if prior["processing_status"] in INACTIVE_STATUSES:
                store.audit(
                    "info",
                    "Previously discarded article not re-admitted",
                    {
                        "topic_article_id": prior["id"],
                        "topic_id": topic_id,
                        "url": raw.source_url,
                        "previous_status": prior["processing_status"],
                    },
                    "submit_article",
                )
                return SubmitResult(
                    status=SubmitStatus.REJECTED,
                    topic_article_id=prior["id"],
                    shared_content_id=content["id"],
                    reason="previously_discarded",
                )
            return self._prevented(prior["id"], raw, topic_id, "same_content")

        keywords = match_keywords(f"{raw.title} {raw.body or ''}", topic.get("keywords") or [])
        try:
            with store.savepoint():
                article = store.insert_topic_article(
                    shared_content_id=content["id"],
                    topic_id=topic_id,
                    source_id=source_id,
                    normalized_url=normalized_url,
                    normalized_title=normalize_title(raw.title),
                    import_metadata=raw.import_metadata,
                    keyword_matches=keywords,
                )
        except UniqueViolation:
            winner = store.find_active_by_url(topic_id, normalized_url) or store.find_topic_article(
                content["id"], topic_id
            )
            if winner is None:
                raise
            logger.info("concurrent submission reconciled topic_id=%s url=%s", topic_id, normalized_url)
            return self._prevented(winner["id"], raw, topic_id, "concurrent_insert")

        matches = find_duplicates(store, article, topic_id, settings.title_similarity_threshold)
        if matches:
            store.record_pending_duplicates(article["id"], matches)
            store.set_status(
                article["id"],
                "duplicate_pending",
                {
                    "duplicates_found": len(matches),
                    "duplicate_check_completed": True,
                    "topic_scoped": True,
                    "checked_at": datetime.now(timezone.utc),
                    "settings_version": settings.version,
                },
            )
            store.audit(
                "info",
                "Article held for duplicate review",
                {
                    "topic_article_id": article["id"],
                    "topic_id": topic_id,
                    "matches": [
                        {"id": m.duplicate_id, "score": m.similarity_score, "method": m.detection_method}
                        for m in matches
                    ],
                    "settings_version": settings.version,
                },
                "submit_article",
            )
            return SubmitResult(
                status=SubmitStatus.DUPLICATE_PENDING,
                topic_article_id=article["id"],
                shared_content_id=content["id"],
                duplicate_of_id=matches[0].duplicate_id,
                duplicates_found=len(matches),
                settings_version=settings.version,
            )

        decision = validate_relevance(store, article, settings)
        return SubmitResult(
            status=SubmitStatus.ACCEPTED if decision.accepted else SubmitStatus.REJECTED,
            topic_article_id=article["id"],
            shared_content_id=content["id"],
            reason=decision.reason,
            relevance_score=decision.score,
            threshold=decision.threshold,
            settings_version=decision.settings_version,
        )


def submit_article(raw: RawArticle, topic_id: UUID, source_id: UUID | None = None) -> SubmitResult:
    with get_conn() as conn:
        return AdmissionService(ArticleStore(conn)).submit(raw, topic_id, source_id)
