"""Versioned decision tunables.

Similarity and relevance cutoffs live in the ``pipeline_settings`` table; the
newest row wins and its version number is recorded with every decision.
Version 0 means the built-in defaults below were used.
"""

from __future__ import annotations

import logging
from typing import Any

from psycopg import Connection
from pydantic import BaseModel, Field, ValidationError, model_validator

from storyline.common.config import settings as env_settings
from storyline.pipeline.errors import InvalidPipelineSettings

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TYPE = "default"
MAX_CREDIBILITY = 100


class RelevanceTier(BaseModel):
    min_credibility: int = Field(ge=0, le=MAX_CREDIBILITY)
    thresholds: dict[str, int]

    @model_validator(mode="after")
    def _has_default(self) -> "RelevanceTier":
        if DEFAULT_SOURCE_TYPE not in self.thresholds:
            raise ValueError(f"tier {self.min_credibility} has no '{DEFAULT_SOURCE_TYPE}' threshold")
        return self

    def threshold_for(self, source_type: str | None) -> int:
        return self.thresholds.get(source_type or DEFAULT_SOURCE_TYPE, self.thresholds[DEFAULT_SOURCE_TYPE])


DEFAULT_RELEVANCE_TIERS = [
    RelevanceTier(min_credibility=90, thresholds={"hyperlocal": -10000, "regional": -10000, "default": -10000}),
    RelevanceTier(min_credibility=80, thresholds={"hyperlocal": -1000, "regional": -500, "default": -250}),
    RelevanceTier(min_credibility=70, thresholds={"hyperlocal": -100, "regional": -50, "default": -25}),
    RelevanceTier(min_credibility=60, thresholds={"hyperlocal": -25, "regional": -15, "default": -10}),
    RelevanceTier(min_credibility=0, thresholds={"hyperlocal": 20, "regional": 22, "default": 25}),
]


class RelevancePolicy(BaseModel):
    tiers: list[RelevanceTier] = Field(default_factory=lambda: list(DEFAULT_RELEVANCE_TIERS))

    @model_validator(mode="after")
    def _validate_shape(self) -> "RelevancePolicy":
        self.tiers = sorted(self.tiers, key=lambda tier: tier.min_credibility, reverse=True)
        if not self.tiers or self.tiers[-1].min_credibility != 0:
            raise ValueError("relevance policy needs a floor tier with min_credibility 0")

        source_types = {DEFAULT_SOURCE_TYPE}
        for tier in self.tiers:
            source_types.update(tier.thresholds)

        for source_type in sorted(source_types):
            previous: int | None = None
            for credibility in range(MAX_CREDIBILITY + 1):
                current = self.threshold(credibility, source_type)
                if previous is not None and current > previous:
                    raise ValueError(
                        f"threshold for {source_type} rises from {previous} to {current} at credibility {credibility}"
                    )
                previous = current
        return self

    def threshold(self, credibility: int, source_type: str | None) -> int:
        credibility = max(0, min(MAX_CREDIBILITY, int(credibility)))
        for tier in self.tiers:
            if credibility >= tier.min_credibility:
                return tier.threshold_for(source_type)
        return self.tiers[-1].threshold_for(source_type)


class PipelineSettings(BaseModel):
    version: int = 0
    title_similarity_threshold: float = Field(default=env_settings.title_similarity_threshold, gt=0.0, le=1.0)
    relevance: RelevancePolicy = Field(default_factory=RelevancePolicy)


def parse_pipeline_settings(version: int, payload: dict[str, Any]) -> PipelineSettings:
    try:
        return PipelineSettings.model_validate({**payload, "version": version})
    except ValidationError as exc:
        raise InvalidPipelineSettings(f"pipeline_settings version {version} is invalid: {exc}") from exc


def load_pipeline_settings(conn: Connection[Any]) -> PipelineSettings:
    row = conn.execute(
        "SELECT version, settings FROM pipeline_settings ORDER BY version DESC LIMIT 1"
    ).fetchone()
    if row is None:
        return PipelineSettings()
    loaded = parse_pipeline_settings(row["version"], row["settings"] or {})
    logger.debug("loaded pipeline settings version=%s", loaded.version)
    return loaded
