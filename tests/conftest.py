from __future__ import annotations

import hashlib
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
from psycopg.errors import UniqueViolation

from storyline.pipeline.settings import PipelineSettings
from storyline.pipeline.similarity import similarity
from storyline.pipeline.store import DETECTION_EXCLUDED_STATUSES, INACTIVE_STATUSES, DuplicateMatch


class FakeStore:
    """In-memory stand-in for ArticleStore with the same method surface."""

    def __init__(self) -> None:
        self.topics: dict[UUID, dict] = {}
        self.sources: dict[UUID, dict] = {}
        self.contents: list[dict] = []
        self.articles: dict[UUID, dict] = {}
        self.pending: dict[UUID, dict] = {}
        self.audits: list[tuple[str, str, dict, str | None]] = []
        self.locks: list[str] = []
        self.settings = PipelineSettings()
        self.simulate_race = False
        self.fingerprints: dict[UUID, int] = {}
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- fixture helpers -----------------------------------------------------

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_topic(self, slug: str = "example-town", keywords: list[str] | None = None) -> UUID:
        topic_id = uuid4()
        self.topics[topic_id] = {"id": topic_id, "slug": slug, "name": slug, "keywords": keywords or []}
        return topic_id

    def add_source(self, credibility: int = 50, source_type: str = "regional") -> UUID:
        source_id = uuid4()
        self.sources[source_id] = {
            "id": source_id,
            "source_name": f"source-{source_id}",
            "canonical_domain": "example.com",
            "credibility_score": credibility,
            "source_type": source_type,
            "is_active": True,
        }
        return source_id

    def topic_rows(self, topic_id: UUID) -> list[dict]:
        return [row for row in self.articles.values() if row["topic_id"] == topic_id]

    def audit_messages(self) -> list[str]:
        return [message for _, message, _, _ in self.audits]

    # -- ArticleStore surface ------------------------------------------------

    def lock(self, key: str) -> None:
        self.locks.append(key)

    @contextmanager
    def savepoint(self):
        yield

    def load_settings(self) -> PipelineSettings:
        return self.settings

    def audit(self, level, message, context=None, function_name=None) -> None:
        self.audits.append((level, message, dict(context or {}), function_name))

    def get_topic(self, topic_id):
        return self.topics.get(topic_id)

    def get_source(self, source_id):
        if source_id is None:
            return None
        return self.sources.get(source_id)

    def find_content(self, url, normalized_url):
        for content in self.contents:
            if content["url"] == url:
                return content
        for content in self.contents:
            if content["normalized_url"] == normalized_url:
                return content
        return None

    def upsert_content(self, raw, normalized_url, domain):
        existing = self.find_content(raw.source_url, normalized_url)
        if existing is not None:
            return existing
        payload = f"{raw.title or ''}{raw.body or ''}{raw.author or ''}"
        content = {
            "id": uuid4(),
            "url": raw.source_url,
            "normalized_url": normalized_url,
            "source_domain": domain,
            "content_checksum": hashlib.sha256(payload.encode()).hexdigest(),
        }
        self.contents.append(content)
        return content

    def _with_checksum(self, row):
        content = next(c for c in self.contents if c["id"] == row["shared_content_id"])
        return {**row, "content_checksum": content["content_checksum"]}

    def get_topic_article(self, article_id, *, for_update=False):
        row = self.articles.get(article_id)
        return self._with_checksum(row) if row else None

    def find_topic_article(self, shared_content_id, topic_id):
        for row in self.articles.values():
            if row["shared_content_id"] == shared_content_id and row["topic_id"] == topic_id:
                return self._with_checksum(row)
        return None

    def find_active_by_url(self, topic_id, normalized_url):
        for row in sorted(self.articles.values(), key=lambda r: r["created_at"]):
            if (
                row["topic_id"] == topic_id
                and row["normalized_url"] == normalized_url
                and row["processing_status"] not in INACTIVE_STATUSES
            ):
                return {"id": row["id"], "processing_status": row["processing_status"]}
        return None

    def _insert(self, **values) -> dict:
        article_id = uuid4()
        row = {
            "id": article_id,
            "shared_content_id": values["shared_content_id"],
            "topic_id": values["topic_id"],
            "source_id": values.get("source_id"),
            "normalized_url": values["normalized_url"],
            "normalized_title": values.get("normalized_title", ""),
            "processing_status": values.get("processing_status", "new"),
            "regional_relevance_score": 0,
            "content_quality_score": 0,
            "keyword_matches": list(values.get("keyword_matches") or []),
            "import_metadata": dict(values.get("import_metadata") or {}),
            "created_at": self._tick(),
        }
        self.articles[article_id] = row
        return row

    def insert_topic_article(self, **values):
        if self.simulate_race:
            # A concurrent writer commits the same row first.
            self.simulate_race = False
            self._insert(**values)
            raise UniqueViolation("duplicate key value violates unique constraint")
        row = self._insert(**values)
        return self._with_checksum(row)

    def set_status(self, article_id, status, metadata=None):
        row = self.articles[article_id]
        row["processing_status"] = status
        row["import_metadata"].update(metadata or {})

    def merge_metadata(self, article_id, metadata):
        self.articles[article_id]["import_metadata"].update(metadata)

    def set_relevance_score(self, article_id, score):
        row = self.articles[article_id]
        row["regional_relevance_score"] = score
        row["import_metadata"]["regional_relevance_score"] = score

    def discard_new(self, article_id, metadata):
        row = self.articles[article_id]
        if row["processing_status"] != "new":
            return False
        row["processing_status"] = "discarded"
        row["import_metadata"].update(metadata)
        return True

    def _candidates(self, article, topic_id):
        for row in sorted(self.articles.values(), key=lambda r: r["created_at"]):
            if row["id"] == article["id"] or row["processing_status"] in DETECTION_EXCLUDED_STATUSES:
                continue
            if topic_id is not None and row["topic_id"] != topic_id:
                continue
            yield self._with_checksum(row)

    def exact_url_matches(self, article, topic_id):
        return [
            DuplicateMatch(row["id"], 1.0, "exact_url")
            for row in self._candidates(article, topic_id)
            if row["normalized_url"] == article["normalized_url"]
        ]

    def checksum_matches(self, article, topic_id):
        return [
            DuplicateMatch(row["id"], 1.0, "content_checksum")
            for row in self._candidates(article, topic_id)
            if row["content_checksum"] == article["content_checksum"]
        ]

    def title_matches(self, article, topic_id, threshold):
        scored = []
        for row in self._candidates(article, topic_id):
            score = similarity(article["normalized_title"], row["normalized_title"])
            if score >= threshold:
                scored.append(DuplicateMatch(row["id"], round(score, 4), "title_similarity"))
        return sorted(scored, key=lambda match: -match.similarity_score)

    def record_pending_duplicates(self, article_id, matches):
        inserted = 0
        for match in matches:
            if any(
                p["original_article_id"] == article_id and p["duplicate_article_id"] == match.duplicate_id
                for p in self.pending.values()
            ):
                continue
            pending_id = uuid4()
            self.pending[pending_id] = {
                "id": pending_id,
                "original_article_id": article_id,
                "duplicate_article_id": match.duplicate_id,
                "similarity_score": match.similarity_score,
                "detection_method": match.detection_method,
                "status": "pending",
            }
            inserted += 1
        return inserted

    def pending_pair_exists(self, article_id, other_id):
        pair = {article_id, other_id}
        return any({p["original_article_id"], p["duplicate_article_id"]} == pair for p in self.pending.values())

    def recent_new_articles(self, limit):
        rows = sorted(self.articles.values(), key=lambda r: r["created_at"], reverse=True)
        return [row["id"] for row in rows if row["processing_status"] == "new"][:limit]

    def fingerprint_candidates(self, limit):
        rows = sorted(self.articles.values(), key=lambda r: r["created_at"], reverse=True)
        return [
            {
                "id": row["id"],
                "topic_id": row["topic_id"],
                "created_at": row["created_at"],
                "fingerprint": self.fingerprints[row["shared_content_id"]],
            }
            for row in rows
            if row["processing_status"] not in DETECTION_EXCLUDED_STATUSES
            and row["shared_content_id"] in self.fingerprints
        ][:limit]

    def get_pending_duplicate(self, pending_id):
        return self.pending.get(pending_id)

    def close_pending_duplicate(self, pending_id, status):
        self.pending[pending_id]["status"] = status

    def open_pending_count(self, article_id):
        return sum(
            1
            for p in self.pending.values()
            if p["original_article_id"] == article_id and p["status"] == "pending"
        )


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()
