from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from storyline.common.db import get_conn
from storyline.pipeline.errors import (
    InvalidStatusTransition,
    PendingDuplicateNotFound,
    TopicArticleNotFound,
)
from storyline.pipeline.relevance import validate_relevance
from storyline.pipeline.settings import PipelineSettings
from storyline.pipeline.store import ArticleStore

logger = logging.getLogger(__name__)

STATUSES = ("new", "processing", "processed", "discarded", "duplicate_pending", "merged")

# Forward moves only; going back to ``new`` from a terminal state is recovery.
TRANSITIONS: dict[str, frozenset[str]] = {
    "new": frozenset({"processing", "duplicate_pending", "discarded"}),
    "duplicate_pending": frozenset({"new", "merged", "discarded"}),
    "processing": frozenset({"processed", "new", "discarded"}),
    "processed": frozenset(),
    "discarded": frozenset(),
    "merged": frozenset(),
}
RECOVERABLE = frozenset({"discarded", "processed"})

RESOLVE_ACTIONS = {"merge": "merged", "dismiss": "dismissed"}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def _current_status(store: ArticleStore, article_id: UUID) -> str | None:
    article = store.get_topic_article(article_id)
    return article["processing_status"] if article is not None else None


def transition(store: ArticleStore, article_id: UUID, target: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    article = store.get_topic_article(article_id, for_update=True)
    if article is None:
        raise TopicArticleNotFound(article_id)
    current = article["processing_status"]
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)
    store.set_status(article_id, target, metadata)
    logger.info("topic article status change id=%s from=%s to=%s", article_id, current, target)
    return {**article, "processing_status": target}


def recover(store: ArticleStore, article_id: UUID, note: str | None = None) -> dict[str, Any]:
    """Put a discarded or processed row back in the ``new`` queue."""
    article = store.get_topic_article(article_id, for_update=True)
    if article is None:
        raise TopicArticleNotFound(article_id)
    current = article["processing_status"]
    if current not in RECOVERABLE:
        raise InvalidStatusTransition(current, "new")

    store.set_status(
        article_id,
        "new",
        {"recovered_from": current, "recovery_note": note},
    )
    store.audit(
        "warn",
        "Topic article recovered",
        {"topic_article_id": article_id, "previous_status": current, "note": note},
        "recover_topic_article",
    )
    return {**article, "processing_status": "new"}


def resolve(store: ArticleStore, pending_id: UUID, action: str, settings: PipelineSettings) -> dict[str, Any]:
    if action not in RESOLVE_ACTIONS:
        raise ValueError(f"unknown resolve action: {action}")

    pending = store.get_pending_duplicate(pending_id)
    if pending is None:
        raise PendingDuplicateNotFound(pending_id)
    if pending["status"] != "pending":
        raise InvalidStatusTransition(pending["status"], RESOLVE_ACTIONS[action])

    article_id = pending["original_article_id"]
    store.close_pending_duplicate(pending_id, RESOLVE_ACTIONS[action])

    article = store.get_topic_article(article_id, for_update=True)
    if article is None:
        raise TopicArticleNotFound(article_id)

    result: dict[str, Any] = {
        "pending_id": pending_id,
        "action": action,
        "topic_article_id": article_id,
        "processing_status": article["processing_status"],
    }

    if action == "merge":
        if article["processing_status"] != "merged":
            transition(
                store,
                article_id,
                "merged",
                {"merged_into": pending["duplicate_article_id"]},
            )
            result["processing_status"] = "merged"
    elif article["processing_status"] == "duplicate_pending" and store.open_pending_count(article_id) == 0:
        article = transition(store, article_id, "new", {"duplicate_review": "dismissed"})
        validate_relevance(store, article, settings)
        result["processing_status"] = _current_status(store, article_id)

    store.audit(
        "info",
        "Duplicate review resolved",
        {**result, "duplicate_article_id": pending["duplicate_article_id"]},
        "resolve_duplicate",
    )
    return result


def rescore(store: ArticleStore, article_id: UUID, score: int, settings: PipelineSettings) -> dict[str, Any]:
    article = store.get_topic_article(article_id, for_update=True)
    if article is None:
        raise TopicArticleNotFound(article_id)

    store.set_relevance_score(article_id, score)
    result: dict[str, Any] = {
        "topic_article_id": article_id,
        "regional_relevance_score": score,
        "processing_status": article["processing_status"],
    }
    if article["processing_status"] != "new":
        return result

    metadata = {**(article.get("import_metadata") or {}), "regional_relevance_score": score}
    decision = validate_relevance(store, {**article, "import_metadata": metadata}, settings)
    result["processing_status"] = _current_status(store, article_id)
    result["threshold"] = decision.threshold
    result["settings_version"] = decision.settings_version
    return result


def recover_topic_article(article_id: UUID, note: str | None = None) -> dict[str, Any]:
    with get_conn() as conn:
        return recover(ArticleStore(conn), article_id, note)


def resolve_duplicate(pending_id: UUID, action: str) -> dict[str, Any]:
    with get_conn() as conn:
        store = ArticleStore(conn)
        return resolve(store, pending_id, action, store.load_settings())


def rescore_topic_article(article_id: UUID, score: int) -> dict[str, Any]:
    with get_conn() as conn:
        store = ArticleStore(conn)
        return rescore(store, article_id, score, store.load_settings())
