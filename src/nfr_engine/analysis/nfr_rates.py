"""NFR rates over stored retention results.

NFR rate = retained / ended * 100 (2dp) for a chosen window. Population exclusions
(deceased, over-75, arrears) are applied here as filters; the core engine never sees them.
"""

from datetime import date

import polars as pl

from nfr_engine import config
from nfr_engine.bands import TERM_BAND_LABELS, with_term_band
from nfr_engine.store import retained_column

# Exclusion name -> contract flag column; contracts are kept only where the flag is 0
EXCLUSION_COLUMNS: dict[str, str] = {
    'deceased': 'is_deceased',
    'over75': 'age_over_75',
    'arrears': 'in_arrears',
}


def exclusion_predicates(names: list[str]) -> list[pl.Expr]:
    """Filter expressions for named population exclusions.

    Raises:
        ValueError: If a name is not in EXCLUSION_COLUMNS.
    """
    unknown = [n for n in names if n not in EXCLUSION_COLUMNS]
    if unknown:
        raise ValueError(f'Unknown exclusions: {unknown}; expected some of {list(EXCLUSION_COLUMNS)}')
    return [pl.col(EXCLUSION_COLUMNS[n]).cast(pl.Int8) == 0 for n in names]


def nfr_rate_expr(retained: str = 'retained', ended: str = 'ended') -> pl.Expr:
    """Percentage of ended contracts retained, rounded to 2dp; 0 when nothing ended."""
    return (
        pl.when(pl.col(ended) > 0)
        .then((pl.col(retained) / pl.col(ended) * 100).round(2))
        .otherwise(pl.lit(0.0))
    )


def ended_with_results(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Closed contracts joined to their retention results, with a 0/1 'retained' column for window.

    Raises:
        ValueError: If results carry no flag for window.
    """
    col = retained_column(window)
    if col not in results.collect_schema().names():
        raise ValueError(f'Unknown retention window {window!r}')
    lf = contracts.filter(pl.col('is_open').not_()).join(results, on='contract_id', how='inner')
    for predicate in exclusions or []:
        lf = lf.filter(predicate)
    return lf.with_columns(pl.col(col).cast(pl.Int64).alias('retained'))


def compute_national_nfr(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Single-row ended, retained, nfr_rate over the whole population."""
    return ended_with_results(contracts, results, window, exclusions).select(
        pl.len().alias('ended'),
        pl.col('retained').sum().alias('retained'),
    ).with_columns(nfr_rate_expr().alias('nfr_rate'))


def compute_nfr_by_dimension(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    grouping_cols: list[str],
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Ended, retained and nfr_rate per group, highest rate first.

    Args:
        contracts: Stored contracts (any extra columns may serve as grouping columns).
        results: Stored retention results.
        window: Window label, e.g. 'core'.
        grouping_cols: Columns to group by (e.g. ['region'], ['dealer_group']).
        exclusions: Extra filter predicates, see exclusion_predicates.

    Returns:
        LazyFrame with grouping_cols, ended, retained, nfr_rate.
    """
    agg = ended_with_results(contracts, results, window, exclusions).group_by(grouping_cols).agg(
        pl.len().alias('ended'),
        pl.col('retained').sum().alias('retained'),
    ).with_columns(nfr_rate_expr().alias('nfr_rate'))
    return agg.sort(
        ['nfr_rate'] + grouping_cols,
        descending=[True] + [False] * len(grouping_cols),
        nulls_last=True,
    )


def compute_nfr_by_year(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """NFR by year of end_date, in year order."""
    with_year = contracts.with_columns(pl.col('end_date').dt.year().alias('year'))
    return compute_nfr_by_dimension(with_year, results, window, ['year'], exclusions).sort('year')


def compute_nfr_by_term(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """NFR by agreement term band, in band order (contracts without a band last)."""
    banded = with_term_band(contracts)
    order = {label: i for i, label in enumerate(TERM_BAND_LABELS)}
    return (
        compute_nfr_by_dimension(banded, results, window, ['term_band'], exclusions)
        .with_columns(
            pl.col('term_band')
            .replace_strict(order, default=len(order), return_dtype=pl.Int64)
            .fill_null(len(order))
            .alias('_order'),
        )
        .sort('_order')
        .drop('_order')
    )


def compute_dealer_retention(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    dealer_col: str = 'dealer_name',
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Per dealer: retained with the same dealer vs a different one, busiest dealers first.

    Returns:
        LazyFrame with dealer_col, ended, same_dealer_retained, diff_dealer_retained,
        total_retained, nfr_rate, dealer_retained_pct.
    """
    retained = pl.col('retained') == 1
    same = pl.col('same_dealer').fill_null(False)
    agg = ended_with_results(contracts, results, window, exclusions).group_by(dealer_col).agg(
        pl.len().alias('ended'),
        (retained & same).sum().alias('same_dealer_retained'),
        (retained & same.not_()).sum().alias('diff_dealer_retained'),
        pl.col('retained').sum().alias('total_retained'),
    )
    return agg.with_columns(
        nfr_rate_expr('total_retained').alias('nfr_rate'),
        nfr_rate_expr('same_dealer_retained').alias('dealer_retained_pct'),
    ).sort(['ended', dealer_col], descending=[True, False], nulls_last=True)


def compute_transition_mix(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    window: str,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Count and share of each New/Used transition among retained contracts."""
    retained = ended_with_results(contracts, results, window, exclusions).filter(
        (pl.col('retained') == 1) & pl.col('transition_label').is_not_null(),
    )
    return (
        retained.group_by('transition_label')
        .agg(pl.len().alias('contracts'))
        .with_columns((pl.col('contracts') / pl.col('contracts').sum()).alias('share'))
        .sort(['contracts', 'transition_label'], descending=[True, False])
    )


def compute_window_comparison(
    contracts: pl.LazyFrame,
    results: pl.LazyFrame,
    exclusions: list[pl.Expr] | None = None,
    windows: list[tuple[str, int, int]] | None = None,
) -> pl.LazyFrame:
    """National ended, retained and nfr_rate for every retention window, one row per window.

    Args:
        contracts: Stored contracts.
        results: Stored retention results.
        exclusions: Extra filter predicates, see exclusion_predicates.
        windows: Windows to compare; defaults to config.RETENTION_WINDOWS.

    Returns:
        LazyFrame with window, backward_days, forward_days, ended, retained, nfr_rate
        in window order.

    Raises:
        ValueError: If no windows are given or results carry no flag for one of them.
    """
    windows = windows if windows is not None else config.RETENTION_WINDOWS
    if not windows:
        raise ValueError('At least one retention window is required')
    return pl.concat([
        compute_national_nfr(contracts, results, label, exclusions).select(
            pl.lit(label).alias('window'),
            pl.lit(back, dtype=pl.Int64).alias('backward_days'),
            pl.lit(fwd, dtype=pl.Int64).alias('forward_days'),
            pl.all(),
        )
        for label, back, fwd in windows
    ])


def compute_at_risk(
    contracts: pl.LazyFrame,
    today: date,
    months: int = 6,
    exclusions: list[pl.Expr] | None = None,
) -> pl.LazyFrame:
    """Open contracts ending between today and `months` calendar months ahead, per end month."""
    start = pl.lit(today, dtype=pl.Date)
    horizon = start.dt.offset_by(f'{months}mo')
    lf = contracts.filter(pl.col('is_open') & pl.col('end_date').is_between(start, horizon))
    for predicate in exclusions or []:
        lf = lf.filter(predicate)
    return (
        lf.group_by(pl.col('end_date').dt.strftime('%Y-%m').alias('month'))
        .agg(pl.len().alias('contracts'))
        .sort('month')
    )
