from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient
from psycopg.errors import UniqueViolation

from storyline.api import main
from storyline.api.feed_service import TopicStoriesResponse
from storyline.ingest.models import SubmitResult, SubmitStatus
from storyline.pipeline.errors import InvalidStatusTransition, TopicArticleNotFound, TopicNotFound
from storyline.pipeline.store import DuplicateMatch

client = TestClient(main.app)


def test_submit_article_returns_typed_result(monkeypatch) -> None:
    topic_id = uuid4()
    source_id = uuid4()
    article_id = uuid4()
    captured = {}

    def _fake_submit(raw, topic, source):
        captured.update(raw=raw, topic=topic, source=source)
        return SubmitResult(status=SubmitStatus.ACCEPTED, topic_article_id=article_id, threshold=22)

    monkeypatch.setattr(main, "submit_article", _fake_submit)

    response = client.post(
        f"/topics/{topic_id}/articles",
        json={"source_url": "https://example.com/a", "title": "<b>Hi</b>", "source_id": str(source_id)},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["topic_article_id"] == str(article_id)
    assert captured["topic"] == topic_id
    assert captured["source"] == source_id
    assert captured["raw"].title == "Hi"


def test_submit_to_unknown_topic_is_404(monkeypatch) -> None:
    def _missing(raw, topic, source):
        raise TopicNotFound(topic)

    monkeypatch.setattr(main, "submit_article", _missing)

    response = client.post(f"/topics/{uuid4()}/articles", json={"source_url": "https://e.com/a", "title": "x"})

    assert response.status_code == 404


def test_integrity_error_maps_to_conflict(monkeypatch) -> None:
    def _conflict(raw, topic, source):
        raise UniqueViolation("duplicate key")

    monkeypatch.setattr(main, "submit_article", _conflict)

    response = client.post(f"/topics/{uuid4()}/articles", json={"source_url": "https://e.com/a", "title": "x"})

    assert response.status_code == 409


def test_duplicates_endpoint_scopes_by_topic(monkeypatch) -> None:
    article_id, topic_id, other_id = uuid4(), uuid4(), uuid4()
    seen = {}

    def _fake_detect(article, topic):
        seen.update(article=article, topic=topic)
        return [DuplicateMatch(other_id, 0.91, "title_similarity")]

    monkeypatch.setattr(main, "detect_duplicates", _fake_detect)

    response = client.get(f"/topic-articles/{article_id}/duplicates", params={"topic_id": str(topic_id)})

    assert response.status_code == 200
    body = response.json()
    assert body["topic_scoped"] is True
    assert body["count"] == 1
    assert body["duplicates"][0]["detection_method"] == "title_similarity"
    assert seen == {"article": article_id, "topic": topic_id}


def test_recover_invalid_transition_is_409(monkeypatch) -> None:
    def _invalid(article_id, note):
        raise InvalidStatusTransition("new", "new")

    monkeypatch.setattr(main, "recover_topic_article", _invalid)

    response = client.post(f"/topic-articles/{uuid4()}/recover", json={"note": "retry"})

    assert response.status_code == 409


def test_relevance_update_missing_row_is_404(monkeypatch) -> None:
    def _missing(article_id, score):
        raise TopicArticleNotFound(article_id)

    monkeypatch.setattr(main, "rescore_topic_article", _missing)

    response = client.put(f"/topic-articles/{uuid4()}/relevance", json={"score": 12})

    assert response.status_code == 404


def test_resolve_rejects_unknown_action() -> None:
    response = client.post(f"/duplicates/{uuid4()}/resolve", json={"action": "delete"})

    assert response.status_code == 422


def test_stories_endpoint_forwards_filters(monkeypatch) -> None:
    topic_id = uuid4()
    captured = {}

    def _fake_stories(topic, **kwargs):
        captured.update(kwargs, topic=topic)
        return TopicStoriesResponse(topic_id=topic_id, stories=[], count=0)

    monkeypatch.setattr(main, "get_topic_stories", _fake_stories)

    response = client.get(
        "/topics/example-town/stories",
        params=[("keywords", "housing"), ("keywords", "roads"), ("mp_names", "Jane Smith"), ("limit", "5")],
    )

    assert response.status_code == 200
    assert response.json() == {"topic_id": str(topic_id), "stories": [], "count": 0}
    assert captured["topic"] == "example-town"
    assert captured["keywords"] == ["housing", "roads"]
    assert captured["mp_names"] == ["Jane Smith"]
    assert captured["source_domains"] is None
    assert captured["limit"] == 5
