from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable
from uuid import UUID

from pydantic import BaseModel, Field

from storyline.common.db import get_conn
from storyline.pipeline.errors import TopicNotFound

MP_NAME_PREFIX_RE = re.compile(r"^rt\.?\s+hon\.?\s+", re.IGNORECASE)
MP_NAME_SUFFIX_RE = re.compile(r"\s+mp$", re.IGNORECASE)

TOPIC_LOOKUP_SQL = """
SELECT id, slug, name
FROM topics
WHERE id::text = %(topic)s OR slug = %(topic)s
ORDER BY (id::text = %(topic)s) DESC
LIMIT 1
"""

# Stories are paged first so that limit/offset count stories, not slide rows.
TOPIC_STORIES_SQL = r"""
WITH page AS (
  SELECT s.id,
         s.title,
         s.status,
         s.is_parliamentary,
         s.cover_url,
         s.created_at,
         ta.id AS topic_article_id,
         sac.id AS shared_content_id,
         sac.url AS source_url,
         sac.source_domain,
         sac.published_at,
         COALESCE(sac.published_at, s.created_at) AS sort_at
  FROM stories s
  JOIN topic_articles ta ON ta.id = s.topic_article_id
  JOIN shared_article_content sac ON sac.id = ta.shared_content_id
  WHERE ta.topic_id = %(topic_id)s
    AND s.is_published = true
    AND s.status IN ('ready', 'published')
    AND EXISTS (SELECT 1 FROM slides sl WHERE sl.story_id = s.id)
    AND (
      %(keywords)s::text[] IS NULL
      OR ta.keyword_matches && %(keywords)s::text[]
      OR EXISTS (
        SELECT 1 FROM unnest(%(keywords)s::text[]) kw
        WHERE sac.title ILIKE '%%' || kw || '%%'
           OR sac.body ILIKE '%%' || kw || '%%'
           OR EXISTS (
             SELECT 1 FROM slides ks
             WHERE ks.story_id = s.id AND ks.content ILIKE '%%' || kw || '%%'
           )
      )
    )
    AND (
      %(source_domains)s::text[] IS NULL
      OR EXISTS (
        SELECT 1 FROM unnest(%(source_domains)s::text[]) sd
        WHERE sac.source_domain ILIKE '%%' || sd || '%%'
      )
    )
    AND (
      %(mp_names)s::text[] IS NULL
      OR (
        s.is_parliamentary = true
        AND EXISTS (
          SELECT 1 FROM parliamentary_mentions pm
          WHERE pm.story_id = s.id
            AND lower(trim(regexp_replace(pm.mp_name, '^[Rr]t\.?\s+[Hh]on\.?\s+|\s+[Mm][Pp]$', '', 'g')))
                = ANY(%(mp_names)s::text[])
        )
      )
    )
  ORDER BY sort_at DESC, s.id
  LIMIT %(limit)s OFFSET %(offset)s
)
SELECT p.*,
       sl.id AS slide_id,
       sl.slide_number,
       sl.content AS slide_content,
       mp.mp_name,
       mp.party AS mp_party,
       mp.constituency
FROM page p
JOIN slides sl ON sl.story_id = p.id
LEFT JOIN LATERAL (
  SELECT pm.mp_name, pm.party, pm.constituency
  FROM parliamentary_mentions pm
  WHERE pm.story_id = p.id
  ORDER BY pm.created_at ASC
  LIMIT 1
) mp ON TRUE
ORDER BY p.sort_at DESC, p.id, sl.slide_number ASC
"""


class Slide(BaseModel):
    id: UUID
    slide_number: int
    content: str


class TopicStory(BaseModel):
    id: UUID
    title: str
    status: str
    is_parliamentary: bool = False
    cover_url: str | None = None
    created_at: datetime
    published_at: datetime | None = None
    topic_article_id: UUID
    shared_content_id: UUID
    source_url: str
    source_domain: str | None = None
    mp_name: str | None = None
    mp_party: str | None = None
    constituency: str | None = None
    slides: list[Slide] = Field(default_factory=list)


class TopicStoriesResponse(BaseModel):
    topic_id: UUID
    stories: list[TopicStory]
    count: int


def clean_mp_name(name: str) -> str:
    stripped = MP_NAME_PREFIX_RE.sub("", (name or "").strip())
    return MP_NAME_SUFFIX_RE.sub("", stripped).strip().lower()


def _clean_filter(values: Iterable[str] | None) -> list[str] | None:
    if values is None:
        return None
    cleaned = [value.strip() for value in values if value and value.strip()]
    return cleaned or None


def assemble_stories(rows: Iterable[dict[str, Any]]) -> list[TopicStory]:
    """Fold flat story/slide rows into stories, keeping first-seen story order."""
    stories: dict[UUID, TopicStory] = {}
    seen_slides: set[UUID] = set()
    for row in rows:
        story = stories.get(row["id"])
        if story is None:
            story = TopicStory(
                id=row["id"],
                title=row["title"],
                status=row["status"],
                is_parliamentary=bool(row.get("is_parliamentary")),
                cover_url=row.get("cover_url"),
                created_at=row["created_at"],
                published_at=row.get("published_at"),
                topic_article_id=row["topic_article_id"],
                shared_content_id=row["shared_content_id"],
                source_url=row["source_url"],
                source_domain=row.get("source_domain"),
                mp_name=row.get("mp_name"),
                mp_party=row.get("mp_party"),
                constituency=row.get("constituency"),
            )
            stories[row["id"]] = story

        slide_id = row.get("slide_id")
        if slide_id is None or slide_id in seen_slides:
            continue
        seen_slides.add(slide_id)
        story.slides.append(Slide(id=slide_id, slide_number=row["slide_number"], content=row["slide_content"] or ""))

    for story in stories.values():
        story.slides.sort(key=lambda slide: slide.slide_number)
    return list(stories.values())


class FeedService:
    def get_topic_stories(
        self,
        *,
        topic: str,
        keywords: list[str] | None = None,
        source_domains: list[str] | None = None,
        mp_names: list[str] | None = None,
        limit: int = 40,
        offset: int = 0,
    ) -> TopicStoriesResponse:
        mp_filter = _clean_filter(mp_names)
        params = {
            "keywords": _clean_filter(keywords),
            "source_domains": _clean_filter(source_domains),
            "mp_names": [clean_mp_name(name) for name in mp_filter] if mp_filter else None,
            "limit": limit,
            "offset": offset,
        }

        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute(TOPIC_LOOKUP_SQL, {"topic": str(topic)})
                topic_row = cur.fetchone()
                if topic_row is None:
                    raise TopicNotFound(topic)
                params["topic_id"] = topic_row["id"]
                cur.execute(TOPIC_STORIES_SQL, params)
                rows = cur.fetchall()

        stories = assemble_stories(rows)
        return TopicStoriesResponse(topic_id=topic_row["id"], stories=stories, count=len(stories))


feed_service = FeedService()


def get_topic_stories(
    topic: str,
    keywords: list[str] | None = None,
    source_domains: list[str] | None = None,
    mp_names: list[str] | None = None,
    limit: int = 40,
    offset: int = 0,
) -> TopicStoriesResponse:
    return feed_service.get_topic_stories(
        topic=topic,
        keywords=keywords,
        source_domains=source_domains,
        mp_names=mp_names,
        limit=limit,
        offset=offset,
    )
