from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from storyline.api import feed_service
from storyline.api.feed_service import assemble_stories, clean_mp_name
from storyline.pipeline.errors import TopicNotFound

TOPIC_ID = uuid4()


def _row(story_id, slide_number, *, slide_id=None, title="Story", mp_name=None):
    return {
        "id": story_id,
        "title": title,
        "status": "published",
        "is_parliamentary": mp_name is not None,
        "cover_url": None,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "published_at": None,
        "topic_article_id": uuid4(),
        "shared_content_id": uuid4(),
        "source_url": "https://example.com/a",
        "source_domain": "example.com",
        "slide_id": slide_id or uuid4(),
        "slide_number": slide_number,
        "slide_content": f"slide {slide_number}",
        "mp_name": mp_name,
        "mp_party": None,
        "constituency": None,
    }


class _FakeCursor:
    def __init__(self, topic_row, rows) -> None:
        self._topic_row = topic_row
        self._rows = rows
        self.calls: list[tuple[str, dict]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return None

    def execute(self, sql, params):
        self.calls.append((sql, params))

    def fetchone(self):
        return self._topic_row

    def fetchall(self):
        return self._rows


class _FakeConn:
    def __init__(self, cursor: _FakeCursor) -> None:
        self._cursor = cursor

    def cursor(self):
        return self._cursor


@contextmanager
def _fake_get_conn(cursor: _FakeCursor):
    yield _FakeConn(cursor)


def test_assemble_dedupes_stories_and_orders_slides() -> None:
    first, second = uuid4(), uuid4()
    shared_slide = uuid4()
    rows = [
        _row(first, 2),
        _row(first, 1, slide_id=shared_slide),
        _row(first, 1, slide_id=shared_slide),
        _row(second, 1, title="Second"),
    ]

    stories = assemble_stories(rows)

    assert [story.id for story in stories] == [first, second]
    assert [slide.slide_number for slide in stories[0].slides] == [1, 2]
    assert len(stories[0].slides) == 2


def test_clean_mp_name_strips_honorifics() -> None:
    assert clean_mp_name("Rt Hon Jane Smith MP") == "jane smith"
    assert clean_mp_name("rt. hon. John Doe") == "john doe"
    assert clean_mp_name("Alex Jones") == "alex jones"


def test_get_topic_stories_passes_cleaned_filters(monkeypatch) -> None:
    story_id = uuid4()
    cursor = _FakeCursor({"id": TOPIC_ID, "slug": "example-town", "name": "Example"}, [_row(story_id, 1)])
    monkeypatch.setattr(feed_service, "get_conn", lambda: _fake_get_conn(cursor))

    response = feed_service.get_topic_stories(
        "example-town",
        keywords=["  ", "housing"],
        source_domains=[],
        mp_names=["Rt Hon Jane Smith MP"],
        limit=5,
        offset=10,
    )

    assert response.topic_id == TOPIC_ID
    assert response.count == 1
    _, params = cursor.calls[1]
    assert params["topic_id"] == TOPIC_ID
    assert params["keywords"] == ["housing"]
    assert params["source_domains"] is None
    assert params["mp_names"] == ["jane smith"]
    assert (params["limit"], params["offset"]) == (5, 10)


def test_story_query_filters_publication_state() -> None:
    sql = feed_service.TOPIC_STORIES_SQL
    assert "s.is_published = true" in sql
    assert "s.status IN ('ready', 'published')" in sql
    assert "LIMIT %(limit)s OFFSET %(offset)s" in sql


def test_unknown_topic_raises(monkeypatch) -> None:
    cursor = _FakeCursor(None, [])
    monkeypatch.setattr(feed_service, "get_conn", lambda: _fake_get_conn(cursor))

    with pytest.raises(TopicNotFound):
        feed_service.get_topic_stories("nowhere")
