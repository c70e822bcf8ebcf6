"""Relevance gate for topic articles still waiting in ``new``.

The score itself is computed upstream and arrives in
``import_metadata.regional_relevance_score``. This module only decides
whether it clears the bar for the article's source, where the bar drops as
source credibility rises.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from storyline.pipeline.settings import PipelineSettings
from storyline.pipeline.store import ArticleStore

logger = logging.getLogger(__name__)

REJECTION_REASON = "insufficient_regional_relevance"
SOURCE_MISSING = "source_missing"
STATUS_CHANGED = "status_changed"


@dataclass(frozen=True)
class RelevanceDecision:
    accepted: bool
    score: int
    threshold: int | None
    source_type: str | None
    credibility_score: int | None
    settings_version: int
    reason: str | None = None


def _metadata_score(article: Mapping[str, Any]) -> int | None:
    raw = (article.get("import_metadata") or {}).get("regional_relevance_score")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(round(float(raw)))
    except (TypeError, ValueError):
        logger.warning("ignoring non-numeric relevance score article_id=%s value=%r", article.get("id"), raw)
        return None


def validate_relevance(
    store: ArticleStore,
    article: Mapping[str, Any],
    settings: PipelineSettings,
) -> RelevanceDecision:
    article_id = article["id"]
    score = _metadata_score(article)
    if score is None:
        score = int(article.get("regional_relevance_score") or 0)
    else:
        store.set_relevance_score(article_id, score)

    source = store.get_source(article.get("source_id"))
    if source is None:
        decision = RelevanceDecision(
            accepted=True,
            score=score,
            threshold=None,
            source_type=None,
            credibility_score=None,
            settings_version=settings.version,
            reason=SOURCE_MISSING,
        )
        store.audit(
            "warn",
            "Relevance check skipped: source missing",
            {"topic_article_id": article_id, "source_id": article.get("source_id"), **asdict(decision)},
            "validate_relevance",
        )
        return decision

    credibility = int(source["credibility_score"] if source["credibility_score"] is not None else 50)
    source_type = source["source_type"]
    threshold = settings.relevance.threshold(credibility, source_type)

    if score < threshold and article.get("processing_status", "new") == "new":
        discarded = store.discard_new(
            article_id,
            {
                "rejection_reason": REJECTION_REASON,
                "relevance_score": score,
                "min_threshold": threshold,
                "source_type": source_type,
                "credibility_score": credibility,
                "settings_version": settings.version,
            },
        )
        decision = RelevanceDecision(
            accepted=not discarded,
            score=score,
            threshold=threshold,
            source_type=source_type,
            credibility_score=credibility,
            settings_version=settings.version,
            reason=REJECTION_REASON if discarded else STATUS_CHANGED,
        )
        if not discarded:
            # Another transaction moved the row out of ``new`` first.
            store.audit(
                "info",
                "Relevance discard skipped: status changed",
                {"topic_article_id": article_id, "source_id": source["id"], **asdict(decision)},
                "validate_relevance",
            )
            return decision
        store.audit(
            "info",
            "Article discarded for insufficient relevance",
            {"topic_article_id": article_id, "source_id": source["id"], **asdict(decision)},
            "validate_relevance",
        )
        return decision

    decision = RelevanceDecision(
        accepted=True,
        score=score,
        threshold=threshold,
        source_type=source_type,
        credibility_score=credibility,
        settings_version=settings.version,
    )
    store.audit(
        "info",
        "Article passed relevance check",
        {"topic_article_id": article_id, "source_id": source["id"], **asdict(decision)},
        "validate_relevance",
    )
    return decision
