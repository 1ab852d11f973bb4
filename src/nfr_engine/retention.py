"""Retention window computation (the NFR engine).

For every closed contract, searches the same customer's other contracts for one whose start
date falls inside each configured window around the closed contract's end date. Windows are
evaluated independently against one candidate set. The nearest candidate by absolute day
distance is recorded as the next contract and supplies the dealer, brand and New/Used
transition attributes.
"""

import polars as pl

from nfr_engine import config
from nfr_engine.data.contracts import date_exprs
from nfr_engine.store import ContractStore, retained_column, retention_result_schema

ATTRIBUTE_COLUMNS: list[str] = ['dealer_ref', 'dealer_name', 'make', 'new_used']

NEW_CODES: list[str] = ['N', 'NEW']
USED_CODES: list[str] = ['U', 'USED']

TRANSITION_SEPARATOR: str = ' → '


def condition_label_expr(col: str) -> pl.Expr:
    """Map a New/Used code to 'New' or 'Used'; anything else is null."""
    code = pl.col(col).str.strip_chars().str.to_uppercase()
    return (
        pl.when(code.is_in(NEW_CODES))
        .then(pl.lit('New'))
        .when(code.is_in(USED_CODES))
        .then(pl.lit('Used'))
        .otherwise(pl.lit(None, dtype=pl.Utf8))
    )


def _present(col: str) -> pl.Expr:
    c = pl.col(col)
    return c.is_not_null() & (c.str.len_chars() > 0)


def _both_equal(left: str, right: str, *, ignore_case: bool = False) -> pl.Expr:
    lhs, rhs = pl.col(left), pl.col(right)
    if ignore_case:
        lhs, rhs = lhs.str.to_uppercase(), rhs.str.to_uppercase()
    return _present(left) & _present(right) & (lhs == rhs)


def candidate_bounds(windows: list[tuple[str, int, int]]) -> tuple[int, int]:
    """Widest (backward_days, forward_days) across all windows."""
    if not windows:
        raise ValueError('At least one retention window is required')
    return max(back for _, back, _ in windows), max(fwd for _, _, fwd in windows)


def find_candidates(
    contracts: pl.LazyFrame,
    windows: list[tuple[str, int, int]],
) -> pl.LazyFrame:
    """Pair each closed contract with the same customer's contracts starting in the widest window.

    Args:
        contracts: Contracts with contract_id, customer_id, start_date, end_date, is_open and
                   the attribute columns.
        windows: Window definitions; only their outer bounds are used here.

    Returns:
        LazyFrame with the closed contract's columns, next_* columns for the candidate,
        and offset_days (candidate start minus end date, in days).
    """
    max_back, max_fwd = candidate_bounds(windows)

    ended = contracts.filter(
        pl.col('is_open').not_() & pl.col('end_date').is_not_null(),
    ).select(['contract_id', 'customer_id', 'end_date'] + ATTRIBUTE_COLUMNS)

    successors = contracts.filter(
        pl.col('customer_id').is_not_null() & pl.col('start_date').is_not_null(),
    ).select(
        pl.col('customer_id'),
        pl.col('contract_id').alias('next_contract_id'),
        pl.col('start_date').alias('next_start_date'),
        *[pl.col(c).alias(f'next_{c}') for c in ATTRIBUTE_COLUMNS],
    )

    return (
        ended.join(successors, on='customer_id', how='inner')
        .filter(pl.col('next_contract_id') != pl.col('contract_id'))
        .with_columns(
            (pl.col('next_start_date') - pl.col('end_date')).dt.total_days().alias('offset_days'),
        )
        .filter(pl.col('offset_days').is_between(-max_back, max_fwd))
    )


def compute_retention(
    contracts: pl.LazyFrame | pl.DataFrame,
    windows: list[tuple[str, int, int]] | None = None,
) -> pl.LazyFrame:
    """Compute one retention result per closed contract with a known end date.

    Each window flag is true when any candidate starts within
    [end_date - backward_days, end_date + forward_days]. The next contract is the candidate
    closest to the end date in absolute days, ties going to the smaller contract_id.
    Closed contracts without candidates get all flags false and null next-contract
    attributes. Open contracts and contracts without an end date produce no row.

    Args:
        contracts: Contracts carrying customer ids from the Matcher.
        windows: (label, backward_days, forward_days) tuples; defaults to config.RETENTION_WINDOWS.

    Returns:
        LazyFrame matching retention_result_schema(windows), sorted by contract_id.
    """
    windows = windows if windows is not None else config.RETENTION_WINDOWS
    lf = contracts.lazy()
    lf = lf.with_columns(
        *[pl.col(c).cast(pl.Utf8) for c in ['contract_id', 'customer_id'] + ATTRIBUTE_COLUMNS],
        *date_exprs(lf.collect_schema()),
        pl.col('is_open').cast(pl.Int8, strict=False).cast(pl.Boolean),
    )
    candidates = find_candidates(lf, windows)

    flags = candidates.group_by('contract_id').agg(
        [
            pl.col('offset_days').is_between(-back, fwd).any().alias(retained_column(label))
            for label, back, fwd in windows
        ],
    )

    nearest = (
        candidates.with_columns(pl.col('offset_days').abs().alias('_distance'))
        .sort(['contract_id', '_distance', 'next_contract_id'])
        .unique(subset='contract_id', keep='first', maintain_order=True)
        .select(
            pl.col('contract_id'),
            pl.col('next_contract_id'),
            (
                _both_equal('dealer_ref', 'next_dealer_ref')
                | _both_equal('dealer_name', 'next_dealer_name')
            ).alias('same_dealer'),
            _both_equal('make', 'next_make', ignore_case=True).alias('brand_loyal'),
            pl.concat_str([
                condition_label_expr('new_used'),
                pl.lit(TRANSITION_SEPARATOR),
                condition_label_expr('next_new_used'),
            ]).alias('transition_label'),
        )
    )

    ended = lf.filter(pl.col('is_open').not_() & pl.col('end_date').is_not_null()).select('contract_id')
    return (
        ended.join(flags, on='contract_id', how='left')
        .join(nearest, on='contract_id', how='left')
        .with_columns([pl.col(retained_column(label)).fill_null(False) for label, _, _ in windows])
        .select(list(retention_result_schema(windows)))
        .sort('contract_id')
    )


def run_retention(store: ContractStore) -> int:
    """Recompute every retention result and replace the stored table in one commit."""
    results = compute_retention(store.read_contracts()).collect()
    store.replace_retention(results)
    return results.height
