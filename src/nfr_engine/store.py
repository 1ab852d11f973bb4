"""Parquet-backed contract store shared by the Matcher and the RetentionEngine.

Three tables live under the store root: contracts, match_events and retention_results.
Every write is a staged commit: all tables are written to temporary files beside their
targets first and only moved into place once every write succeeded, so a failed run
leaves the previous data untouched.
"""

import os
import uuid
from pathlib import Path

import polars as pl

from nfr_engine import config
from nfr_engine.data.contracts import empty_contracts, prepare_contracts

CONTRACTS: str = 'contracts'
MATCH_EVENTS: str = 'match_events'
RETENTION_RESULTS: str = 'retention_results'

MATCH_EVENT_SCHEMA: dict[str, pl.DataType] = {
    'contract_id_a': pl.Utf8,
    'contract_id_b': pl.Utf8,
    'rule_name': pl.Utf8,
    'confidence_tier': pl.Utf8,
    'assigned_customer_id': pl.Utf8,
}

UPSERT_MODES: tuple[str, ...] = ('append', 'replace')


def retained_column(label: str) -> str:
    """Column name holding the retention flag for a window label."""
    return f'retained_{label}'


def retention_result_schema(
    windows: list[tuple[str, int, int]] | None = None,
) -> dict[str, pl.DataType]:
    """Result schema: contract_id, one boolean flag per window, next-contract attributes."""
    windows = windows if windows is not None else config.RETENTION_WINDOWS
    schema: dict[str, pl.DataType] = {'contract_id': pl.Utf8}
    for label, _, _ in windows:
        schema[retained_column(label)] = pl.Boolean
    schema.update({
        'next_contract_id': pl.Utf8,
        'same_dealer': pl.Boolean,
        'brand_loyal': pl.Boolean,
        'transition_label': pl.Utf8,
    })
    return schema


class ContractStore:
    """Directory of parquet tables holding contracts and their derived state."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else config.STORE_DIR

    def path_for(self, table: str) -> Path:
        return self.root / f'{table}.parquet'

    def read_contracts(self) -> pl.LazyFrame:
        return self._read(CONTRACTS, empty_contracts())

    def read_match_events(self) -> pl.LazyFrame:
        return self._read(MATCH_EVENTS, pl.LazyFrame(schema=MATCH_EVENT_SCHEMA))

    def read_retention_results(self) -> pl.LazyFrame:
        return self._read(RETENTION_RESULTS, pl.LazyFrame(schema=retention_result_schema()))

    def count_contracts(self) -> int:
        return self._count(CONTRACTS)

    def count_retention_results(self) -> int:
        return self._count(RETENTION_RESULTS)

    def upsert_contracts(self, contracts: pl.LazyFrame | pl.DataFrame, mode: str = 'append') -> int:
        """Insert or update contracts keyed by contract_id; incoming rows win.

        ``replace`` clears all stored contracts and both derived tables first.

        Returns:
            Number of incoming contract rows.

        Raises:
            ValueError: On an unknown mode or missing required columns.
        """
        if mode not in UPSERT_MODES:
            raise ValueError(f'Unknown upsert mode {mode!r}; expected one of {list(UPSERT_MODES)}')
        incoming = prepare_contracts(contracts).collect()

        if mode == 'replace':
            self._commit({
                CONTRACTS: incoming,
                MATCH_EVENTS: pl.DataFrame(schema=MATCH_EVENT_SCHEMA),
                RETENTION_RESULTS: pl.DataFrame(schema=retention_result_schema()),
            })
            return incoming.height

        existing = self.read_contracts().collect()
        merged = pl.concat([existing, incoming], how='diagonal_relaxed').unique(
            subset='contract_id', keep='last', maintain_order=True,
        )
        self._commit({CONTRACTS: merged})
        return incoming.height

    def write_matching(self, assignments: pl.DataFrame, events: pl.DataFrame) -> None:
        """Overwrite customer_id on every contract and replace the match event log."""
        contracts = self.read_contracts().collect()
        updated = (
            contracts.drop('customer_id')
            .join(assignments.select('contract_id', 'customer_id'), on='contract_id', how='left')
            .select(contracts.columns)
        )
        self._commit({CONTRACTS: updated, MATCH_EVENTS: events})

    def replace_retention(self, results: pl.DataFrame) -> None:
        self._commit({RETENTION_RESULTS: results})

    def _read(self, table: str, default: pl.LazyFrame) -> pl.LazyFrame:
        path = self.path_for(table)
        if not path.exists():
            return default
        # Eager read so the file can be replaced while the frame is still in use
        return pl.read_parquet(path).lazy()

    def _count(self, table: str) -> int:
        path = self.path_for(table)
        if not path.exists():
            return 0
        return pl.scan_parquet(path).select(pl.len()).collect().item()

    def _commit(self, tables: dict[str, pl.DataFrame]) -> None:
        """Write every table to a staged file, then move each one over its target.

        No target changes unless every staged write succeeded. Each move is atomic for its
        own table only: a failure between two moves leaves the earlier tables replaced and
        the later ones untouched, which the next pipeline run rebuilds. Staged files left
        behind by any failure are removed before the error propagates.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        staged: list[tuple[Path, Path]] = []
        try:
            for table, frame in tables.items():
                target = self.path_for(table)
                tmp = target.with_name(f'.{target.name}.{uuid.uuid4().hex}.tmp')
                staged.append((tmp, target))
                frame.write_parquet(tmp)
            for tmp, target in staged:
                os.replace(tmp, target)
        finally:
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
