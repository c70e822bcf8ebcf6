import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor

from dotenv import load_dotenv

from storyline.batch.duplicate_rescan import rescan_duplicates, run_fingerprints
from storyline.batch.legacy_import import run as run_legacy_import
from storyline.batch.reconcile import run as run_reconcile
from storyline.batch.stale import run as run_stale_sweep

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _batch_node_config() -> tuple[int, int]:
    total_nodes = max(1, int(os.environ.get("BATCH_TOTAL_NODES", "1")))
    node_index = int(os.environ.get("BATCH_NODE_INDEX", "0"))
    return total_nodes, node_index


def _should_run_global_jobs(total_nodes: int, node_index: int) -> bool:
    role = os.environ.get("BATCH_ROLE", "auto").strip().lower()
    if role == "coordinator":
        return True
    if role == "worker":
        return False
    return total_nodes == 1 or node_index == 0


def _legacy_import_enabled() -> bool:
    return os.environ.get("LEGACY_IMPORT", "0").strip().lower() in {"1", "true", "yes"}


def run_once() -> None:
    total_nodes, node_index = _batch_node_config()
    run_global = _should_run_global_jobs(total_nodes, node_index)

    # Sharded tasks run on every node.
    run_fingerprints()

    if not run_global:
        logger.info(
            "skipping global jobs on worker node_index=%s total_nodes=%s",
            node_index,
            total_nodes,
        )
        return

    if _legacy_import_enabled():
        run_legacy_import()

    # Reconciliation rewrites source ids, so it finishes before the rescan reads them.
    run_reconcile()

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [
            executor.submit(rescan_duplicates),
            executor.submit(run_stale_sweep),
        ]
        for future in futures:
            future.result()


def main() -> None:
    interval_s = int(os.environ["BATCH_INTERVAL_S"])
    logger.info("starting batch runner with interval=%ss", interval_s)

    while True:
        started = time.time()
        try:
            run_once()
            elapsed = time.time() - started
            sleep_for = max(1, interval_s - int(elapsed))
            logger.info("batch cycle complete in %.2fs; sleeping %ss", elapsed, sleep_for)
            time.sleep(sleep_for)
        except Exception:
            logger.exception("batch cycle failed; retrying in 15s")
            time.sleep(15)


if __name__ == "__main__":
    main()
