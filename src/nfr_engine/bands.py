"""Agreement term bands."""

import polars as pl

from nfr_engine import config

TERM_BAND_LABELS: list[str] = [
    '12-24 mo',
    '25-36 mo',
    '37-48 mo',
    '49-60 mo',
    '60+ mo',
]

# Upper bounds for each term band: 12-24, 25-36, 37-48, 49-60, 60+
_TERM_BAND_UPPERS: list[int] = [24, 36, 48, 60]


def assign_term_band(term_months: int | None) -> str | None:
    """Assign a term band label from an agreement term in months.

    Args:
        term_months: Agreement term; terms under 12 months have no band.

    Returns:
        Label such as '12-24 mo', ..., '60+ mo', or None.
    """
    if term_months is None or term_months < 12:
        return None
    for i, upper in enumerate(_TERM_BAND_UPPERS):
        if term_months <= upper:
            return TERM_BAND_LABELS[i]
    return TERM_BAND_LABELS[-1]


def term_band_expr(col: str) -> pl.Expr:
    """Polars expression for the term band from a term-in-months column."""
    e = pl.col(col)
    return (
        pl.when(e.is_null() | (e < 12))
        .then(pl.lit(None, dtype=pl.Utf8))
        .when(e <= 24)
        .then(pl.lit('12-24 mo'))
        .when(e <= 36)
        .then(pl.lit('25-36 mo'))
        .when(e <= 48)
        .then(pl.lit('37-48 mo'))
        .when(e <= 60)
        .then(pl.lit('49-60 mo'))
        .otherwise(pl.lit('60+ mo'))
    )


def term_months_expr(start_col: str = 'start_date', end_col: str = 'end_date') -> pl.Expr:
    """Whole months between two date columns using the average month length."""
    days = (pl.col(end_col) - pl.col(start_col)).dt.total_days()
    return (days / config.AVG_MONTH_DAYS).round(0).cast(pl.Int64)


def with_term_band(contracts: pl.LazyFrame) -> pl.LazyFrame:
    """Add term_band, from term_months when the extract carries it, else from the contract dates."""
    if 'term_months' in contracts.collect_schema().names():
        months = pl.col('term_months').cast(pl.Int64, strict=False)
    else:
        months = term_months_expr()
    return contracts.with_columns(months.alias('_term_months')).with_columns(
        term_band_expr('_term_months').alias('term_band'),
    ).drop('_term_months')
