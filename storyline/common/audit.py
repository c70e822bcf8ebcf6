"""Audit trail for pipeline decisions.

Every admission, relevance and cleanup decision is written twice: a row in
``system_logs`` (queried by operators when diagnosing over-filtering) and a
line on the module logger at the same level.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from psycopg import Connection

from storyline.common.db import jsonb

logger = logging.getLogger(__name__)

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def log_event(
    conn: Connection[Any],
    level: str,
    message: str,
    context: Mapping[str, Any] | None = None,
    function_name: str | None = None,
) -> None:
    if level not in LEVELS:
        raise ValueError(f"unknown audit level: {level}")

    payload = dict(context or {})
    conn.execute(
        """
        INSERT INTO system_logs(level, message, context, function_name)
        VALUES (%s, %s, %s, %s)
        """,
        (level, message, jsonb(payload), function_name),
    )
    logger.log(
        LEVELS[level],
        "%s function=%s %s",
        message,
        function_name or "-",
        " ".join(f"{key}={value}" for key, value in sorted(payload.items())),
    )
