"""Run the Matcher then the RetentionEngine as one serialized unit."""

import threading
from pathlib import Path

from nfr_engine.data.contracts import load_contracts
from nfr_engine.matching import run_matching
from nfr_engine.retention import run_retention
from nfr_engine.store import ContractStore

# Both steps replace whole tables; overlapping runs in one process must queue here.
# Runs from separate processes still need to be serialized by the caller.
_RUN_LOCK = threading.Lock()


def run_pipeline(store: ContractStore) -> dict[str, object]:
    """Match customers, then recompute retention results.

    Returns:
        Summary with total_contracts, unique_customers, match_pairs_by_method and
        retention_rows, for the caller's audit log.
    """
    with _RUN_LOCK:
        summary = run_matching(store)
        summary['retention_rows'] = run_retention(store)
    return summary


def ingest_and_run(store: ContractStore, path: str | Path, mode: str = 'append') -> dict[str, object]:
    """Upsert a contract extract into the store and rerun the pipeline.

    Args:
        store: Target contract store.
        path: Parquet file, directory of parquet files, or CSV file.
        mode: 'append' to upsert by contract_id, 'replace' to clear the store first.

    Returns:
        Pipeline summary plus the number of ingested rows under 'ingested'.
    """
    ingested = store.upsert_contracts(load_contracts(path), mode=mode)
    summary = run_pipeline(store)
    summary['ingested'] = ingested
    return summary


def recover_if_needed(store: ContractStore) -> dict[str, object] | None:
    """Rerun the pipeline when contracts are stored but no retention results exist."""
    if store.count_contracts() > 0 and store.count_retention_results() == 0:
        return run_pipeline(store)
    return None
