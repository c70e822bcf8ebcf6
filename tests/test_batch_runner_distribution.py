from storyline.batch import runner
from storyline.batch.runner import _legacy_import_enabled, _should_run_global_jobs


def test_run_global_jobs_default_single_node() -> None:
    assert _should_run_global_jobs(1, 0)


def test_run_global_jobs_auto_uses_node_zero(monkeypatch) -> None:
    monkeypatch.delenv("BATCH_ROLE", raising=False)
    assert _should_run_global_jobs(3, 0)
    assert not _should_run_global_jobs(3, 1)


def test_run_global_jobs_honors_explicit_role(monkeypatch) -> None:
    monkeypatch.setenv("BATCH_ROLE", "worker")
    assert not _should_run_global_jobs(1, 0)
    monkeypatch.setenv("BATCH_ROLE", "coordinator")
    assert _should_run_global_jobs(3, 2)


def test_legacy_import_is_opt_in(monkeypatch) -> None:
    monkeypatch.delenv("LEGACY_IMPORT", raising=False)
    assert not _legacy_import_enabled()
    monkeypatch.setenv("LEGACY_IMPORT", "true")
    assert _legacy_import_enabled()


def _record_jobs(monkeypatch) -> list[str]:
    calls: list[str] = []
    for name in ("run_fingerprints", "run_legacy_import", "run_reconcile", "rescan_duplicates", "run_stale_sweep"):
        monkeypatch.setattr(runner, name, lambda name=name: calls.append(name))
    return calls


def test_worker_node_only_fingerprints(monkeypatch) -> None:
    calls = _record_jobs(monkeypatch)
    monkeypatch.setenv("BATCH_TOTAL_NODES", "3")
    monkeypatch.setenv("BATCH_NODE_INDEX", "2")
    monkeypatch.delenv("BATCH_ROLE", raising=False)

    runner.run_once()

    assert calls == ["run_fingerprints"]


def test_coordinator_reconciles_before_rescan(monkeypatch) -> None:
    calls = _record_jobs(monkeypatch)
    monkeypatch.setenv("BATCH_TOTAL_NODES", "1")
    monkeypatch.setenv("BATCH_NODE_INDEX", "0")
    monkeypatch.delenv("BATCH_ROLE", raising=False)
    monkeypatch.setenv("LEGACY_IMPORT", "1")

    runner.run_once()

    assert calls[:3] == ["run_fingerprints", "run_legacy_import", "run_reconcile"]
    assert set(calls[3:]) == {"rescan_duplicates", "run_stale_sweep"}
