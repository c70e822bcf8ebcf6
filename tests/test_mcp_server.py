from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from storyline.api.feed_service import Slide, TopicStoriesResponse, TopicStory
from storyline.mcp import server
from storyline.pipeline.store import DuplicateMatch


def test_topic_stories_renders_slides_and_bounds_paging(monkeypatch) -> None:
    captured: dict = {}
    story = TopicStory(
        id=uuid4(),
        title="Bridge reopens",
        status="published",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        topic_article_id=uuid4(),
        shared_content_id=uuid4(),
        source_url="https://example.com/bridge",
        slides=[Slide(id=uuid4(), slide_number=1, content="Traffic returns.")],
    )

    def _fake_stories(topic, *, keywords, limit, offset):
        captured.update(topic=topic, keywords=keywords, limit=limit, offset=offset)
        return TopicStoriesResponse(topic_id=uuid4(), stories=[story], count=1)

    monkeypatch.setattr(server, "get_topic_stories", _fake_stories)

    text = server.topic_stories_text("example-town", limit=999, offset=-3)

    assert text == "## [Bridge reopens](https://example.com/bridge)\n1. Traffic returns."
    assert captured == {"topic": "example-town", "keywords": None, "limit": 100, "offset": 0}


def test_duplicates_text_lists_matches(monkeypatch) -> None:
    article_id, other_id = uuid4(), uuid4()
    monkeypatch.setattr(
        server,
        "detect_duplicates",
        lambda article, topic: [DuplicateMatch(other_id, 1.0, "exact_url")] if topic is None else [],
    )

    assert server.duplicates_text(str(article_id)) == f"{other_id} exact_url 1.00"
    assert server.duplicates_text(str(article_id), str(uuid4())) == "No duplicates found."
