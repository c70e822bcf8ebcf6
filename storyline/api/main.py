from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from psycopg.errors import IntegrityError
from pydantic import BaseModel, Field

from storyline.api.feed_service import TopicStoriesResponse, get_topic_stories
from storyline.ingest.models import RawArticle, SubmitResult
from storyline.pipeline.admission import submit_article
from storyline.pipeline.duplicates import detect_duplicates, list_pending_duplicates
from storyline.pipeline.errors import (
    InvalidPipelineSettings,
    InvalidStatusTransition,
    PendingDuplicateNotFound,
    PipelineError,
    TopicArticleNotFound,
    TopicNotFound,
)
from storyline.pipeline.status import recover_topic_article, rescore_topic_article, resolve_duplicate

logger = logging.getLogger(__name__)

app = FastAPI(title="Storyline API")


class SubmitArticleRequest(RawArticle):
    source_id: UUID | None = None


class DuplicateMatchItem(BaseModel):
    duplicate_id: UUID
    similarity_score: float
    detection_method: str


class DuplicatesResponse(BaseModel):
    topic_article_id: UUID
    topic_scoped: bool
    duplicates: list[DuplicateMatchItem]
    count: int


class PendingDuplicateItem(BaseModel):
    id: UUID
    original_article_id: UUID
    duplicate_article_id: UUID
    similarity_score: float
    detection_method: str
    status: str
    created_at: datetime
    original_title: str | None = None
    duplicate_title: str | None = None


class PendingDuplicatesResponse(BaseModel):
    results: list[PendingDuplicateItem]
    count: int


class RelevanceUpdate(BaseModel):
    score: int


class RecoverRequest(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class ResolveRequest(BaseModel):
    action: Literal["merge", "dismiss"]


STATUS_CODES: dict[type[PipelineError], int] = {
    TopicNotFound: 404,
    TopicArticleNotFound: 404,
    PendingDuplicateNotFound: 404,
    InvalidStatusTransition: 409,
    InvalidPipelineSettings: 500,
}


@app.exception_handler(PipelineError)
async def pipeline_error_handler(_request: Request, exc: PipelineError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in STATUS_CODES.items() if isinstance(exc, error_type)),
        400,
    )
    if status_code >= 500:
        logger.error("pipeline configuration error: %s", exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("integrity violation: %s", exc)
    return JSONResponse(status_code=409, content={"detail": "integrity violation"})


@app.post("/topics/{topic_id}/articles", response_model=SubmitResult)
def submit_topic_article(topic_id: UUID, body: SubmitArticleRequest) -> SubmitResult:
    raw = RawArticle.model_validate(body.model_dump(exclude={"source_id"}))
    result = submit_article(raw, topic_id, body.source_id)
    logger.info(
        "submission topic_id=%s status=%s topic_article_id=%s reason=%s",
        topic_id,
        result.status.value,
        result.topic_article_id,
        result.reason,
    )
    return result


@app.get("/topic-articles/{article_id}/duplicates", response_model=DuplicatesResponse)
def topic_article_duplicates(
    article_id: UUID,
    topic_id: UUID | None = Query(None, description="Restrict detection to one topic; omit for a global scan."),
) -> DuplicatesResponse:
    matches = detect_duplicates(article_id, topic_id)
    items = [
        DuplicateMatchItem(
            duplicate_id=match.duplicate_id,
            similarity_score=match.similarity_score,
            detection_method=match.detection_method,
        )
        for match in matches
    ]
    return DuplicatesResponse(
        topic_article_id=article_id,
        topic_scoped=topic_id is not None,
        duplicates=items,
        count=len(items),
    )


@app.put("/topic-articles/{article_id}/relevance")
def update_relevance(article_id: UUID, body: RelevanceUpdate) -> dict[str, Any]:
    return rescore_topic_article(article_id, body.score)


@app.post("/topic-articles/{article_id}/recover")
def recover(article_id: UUID, body: RecoverRequest) -> dict[str, Any]:
    return recover_topic_article(article_id, body.note)


@app.get("/topics/{topic_id}/duplicates/pending", response_model=PendingDuplicatesResponse)
def pending_duplicates(
    topic_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> PendingDuplicatesResponse:
    rows = list_pending_duplicates(topic_id, limit=limit, offset=offset)
    items = [PendingDuplicateItem.model_validate(row) for row in rows]
    return PendingDuplicatesResponse(results=items, count=len(items))


@app.post("/duplicates/{pending_id}/resolve")
def resolve(pending_id: UUID, body: ResolveRequest) -> dict[str, Any]:
    return resolve_duplicate(pending_id, body.action)


@app.get("/topics/{topic}/stories", response_model=TopicStoriesResponse)
def topic_stories(
    topic: str,
    keywords: list[str] | None = Query(None),
    source_domains: list[str] | None = Query(None),
    mp_names: list[str] | None = Query(None),
    limit: int = Query(40, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> TopicStoriesResponse:
    return get_topic_stories(
        topic,
        keywords=keywords,
        source_domains=source_domains,
        mp_names=mp_names,
        limit=limit,
        offset=offset,
    )
