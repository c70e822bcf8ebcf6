from __future__ import annotations

from uuid import uuid4

from storyline.batch.stale import expire_stale_entries, reset_stalled_jobs


class _FakeResult:
    def __init__(self, rows) -> None:
        self._rows = rows

    def fetchall(self):
        return self._rows


class _FakeConn:
    def __init__(self, responses: dict[str, list]) -> None:
        self._responses = responses
        self.statements: list[tuple[str, object]] = []

    def execute(self, sql, params=None):
        compact = " ".join(sql.split())
        self.statements.append((compact, params))
        for prefix, rows in self._responses.items():
            if compact.startswith(prefix):
                return _FakeResult(rows)
        return _FakeResult([])


def test_stalled_jobs_requeue_their_articles() -> None:
    article_id = uuid4()
    conn = _FakeConn(
        {
            "UPDATE content_generation_queue": [
                {"id": uuid4(), "topic_article_id": article_id},
                {"id": uuid4(), "topic_article_id": None},
            ]
        }
    )

    assert reset_stalled_jobs(conn, 30) == 2

    assert conn.statements[0][1] == (30,)
    article_update = next(params for sql, params in conn.statements if sql.startswith("UPDATE topic_articles"))
    assert article_update == ([article_id],)
    audit_sql, audit_params = conn.statements[-1]
    assert audit_sql.startswith("INSERT INTO system_logs")
    assert audit_params[0] == "warn"


def test_nothing_stalled_writes_nothing_else() -> None:
    conn = _FakeConn({})

    assert reset_stalled_jobs(conn, 30) == 0
    assert len(conn.statements) == 1


def test_expiry_reports_counts_per_table() -> None:
    conn = _FakeConn(
        {
            "DELETE FROM system_logs": [{"id": 1}, {"id": 2}],
            "DELETE FROM article_duplicates_pending": [{"id": uuid4()}],
        }
    )

    assert expire_stale_entries(conn, 30, 14) == {
        "system_logs": 2,
        "resolved_duplicates": 1,
        "finished_jobs": 0,
    }
    assert conn.statements[1][1] == (14,)
