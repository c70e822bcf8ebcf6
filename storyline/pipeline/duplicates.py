from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from storyline.common.db import get_conn
from storyline.pipeline.errors import TopicArticleNotFound, TopicNotFound
from storyline.pipeline.store import ArticleStore, DuplicateMatch


def find_duplicates(
    store: ArticleStore,
    article: Mapping[str, Any],
    topic_id: UUID | None,
    threshold: float,
) -> list[DuplicateMatch]:
    """Run the exact URL, checksum and title passes in that order.

    A row reported by an earlier pass is not repeated by a later one. With
    ``topic_id=None`` the search spans every topic; only cleanup jobs do that.
    """
    matches: list[DuplicateMatch] = []
    seen: set[UUID] = set()
    passes = (
        store.exact_url_matches(article, topic_id),
        store.checksum_matches(article, topic_id),
        store.title_matches(article, topic_id, threshold),
    )
    for found in passes:
        for match in found:
            if match.duplicate_id in seen:
                continue
            seen.add(match.duplicate_id)
            matches.append(match)
    return matches


def detect_duplicates(article_id: UUID, topic_id: UUID | None = None) -> list[DuplicateMatch]:
    with get_conn() as conn:
        store = ArticleStore(conn)
        article = store.get_topic_article(article_id)
        if article is None:
            raise TopicArticleNotFound(article_id)
        settings = store.load_settings()
        return find_duplicates(store, article, topic_id, settings.title_similarity_threshold)


def list_pending_duplicates(topic_id: UUID, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
    with get_conn() as conn:
        store = ArticleStore(conn)
        if store.get_topic(topic_id) is None:
            raise TopicNotFound(topic_id)
        return store.list_pending_duplicates(topic_id, limit=limit, offset=offset)
