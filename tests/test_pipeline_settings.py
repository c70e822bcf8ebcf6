from __future__ import annotations

import pytest

from storyline.pipeline.errors import InvalidPipelineSettings
from storyline.pipeline.settings import (
    MAX_CREDIBILITY,
    PipelineSettings,
    load_pipeline_settings,
    parse_pipeline_settings,
)


class _FakeResult:
    def __init__(self, row) -> None:
        self._row = row

    def fetchone(self):
        return self._row


class _FakeConn:
    def __init__(self, row) -> None:
        self._row = row
        self.statements: list[str] = []

    def execute(self, sql, params=None):
        self.statements.append(sql)
        return _FakeResult(self._row)


@pytest.mark.parametrize(
    ("credibility", "source_type", "expected"),
    [
        (95, "hyperlocal", -10000),
        (90, "national", -10000),
        (85, "regional", -500),
        (80, "hyperlocal", -1000),
        (75, "national", -25),
        (65, None, -10),
        (60, "regional", -15),
        (59, "regional", 22),
        (10, "hyperlocal", 20),
        (0, "national", 25),
    ],
)
def test_default_thresholds(credibility, source_type, expected) -> None:
    assert PipelineSettings().relevance.threshold(credibility, source_type) == expected


def test_default_thresholds_never_rise_with_credibility() -> None:
    policy = PipelineSettings().relevance
    for source_type in ("hyperlocal", "regional", "national"):
        values = [policy.threshold(c, source_type) for c in range(MAX_CREDIBILITY + 1)]
        assert values == sorted(values, reverse=True)


def test_rising_threshold_is_rejected() -> None:
    payload = {
        "relevance": {
            "tiers": [
                {"min_credibility": 80, "thresholds": {"default": 50}},
                {"min_credibility": 0, "thresholds": {"default": 10}},
            ]
        }
    }
    with pytest.raises(InvalidPipelineSettings):
        parse_pipeline_settings(4, payload)


def test_policy_without_floor_tier_is_rejected() -> None:
    payload = {"relevance": {"tiers": [{"min_credibility": 50, "thresholds": {"default": 0}}]}}
    with pytest.raises(InvalidPipelineSettings):
        parse_pipeline_settings(2, payload)


def test_custom_policy_keeps_version() -> None:
    loaded = parse_pipeline_settings(
        3,
        {
            "title_similarity_threshold": 0.9,
            "relevance": {
                "tiers": [
                    {"min_credibility": 0, "thresholds": {"default": 5, "hyperlocal": 3}},
                    {"min_credibility": 70, "thresholds": {"default": -5, "hyperlocal": -8}},
                ]
            },
        },
    )
    assert loaded.version == 3
    assert loaded.title_similarity_threshold == 0.9
    assert loaded.relevance.threshold(75, "hyperlocal") == -8
    assert loaded.relevance.threshold(20, "regional") == 5


def test_load_without_rows_uses_defaults() -> None:
    loaded = load_pipeline_settings(_FakeConn(None))
    assert loaded.version == 0
    assert loaded.relevance.threshold(50, "regional") == 22


def test_load_uses_newest_row() -> None:
    conn = _FakeConn({"version": 9, "settings": {"title_similarity_threshold": 0.8}})
    loaded = load_pipeline_settings(conn)
    assert loaded.version == 9
    assert loaded.title_similarity_threshold == 0.8
    assert "ORDER BY version DESC" in conn.statements[0]
