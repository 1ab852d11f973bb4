"""Load and validate contract extracts."""

from pathlib import Path

import polars as pl

REQUIRED_COLUMNS: list[str] = [
    'contract_id',
    'sortname',
    'phone',
    'postcode',
    'bank_sortcode',
    'account_number',
    'start_date',
    'end_date',
    'is_open',
    'dealer_ref',
    'dealer_name',
    'make',
    'new_used',
]

# Free-text columns; read as text so sort codes and phones keep their leading zeros
TEXT_COLUMNS: list[str] = [
    'contract_id',
    'customer_id',
    'sortname',
    'phone',
    'postcode',
    'bank_sortcode',
    'account_number',
    'dealer_ref',
    'dealer_name',
    'make',
    'new_used',
]

CONTRACT_SCHEMA: dict[str, pl.DataType] = {
    'contract_id': pl.Utf8,
    'customer_id': pl.Utf8,
    'sortname': pl.Utf8,
    'phone': pl.Utf8,
    'postcode': pl.Utf8,
    'bank_sortcode': pl.Utf8,
    'account_number': pl.Utf8,
    'start_date': pl.Date,
    'end_date': pl.Date,
    'is_open': pl.Boolean,
    'dealer_ref': pl.Utf8,
    'dealer_name': pl.Utf8,
    'make': pl.Utf8,
    'new_used': pl.Utf8,
}

DATE_COLUMNS: list[str] = ['start_date', 'end_date']

ISO_DATE_FORMAT: str = '%Y-%m-%d'


def date_exprs(schema: pl.Schema, cols: list[str] = DATE_COLUMNS) -> list[pl.Expr]:
    """Expressions casting each date column to Date.

    Text columns are parsed as ISO-8601 dates; values that do not parse become null.
    Date and datetime columns are cast directly.
    """
    exprs = []
    for col in cols:
        if schema[col] == pl.Utf8:
            exprs.append(pl.col(col).str.to_date(ISO_DATE_FORMAT, strict=False))
        else:
            exprs.append(pl.col(col).cast(pl.Date, strict=False))
    return exprs


def empty_contracts() -> pl.LazyFrame:
    """Empty LazyFrame carrying the core contract schema."""
    return pl.LazyFrame(schema=CONTRACT_SCHEMA)


def load_contracts(path: str | Path) -> pl.LazyFrame:
    """Load a contract extract from parquet or CSV, validate, and cast types.

    Args:
        path: Path to a single parquet file, a directory of parquet files, or a CSV file.

    Returns:
        LazyFrame with the core contract columns first, then any extra columns.

    Raises:
        ValueError: If required columns are missing.
    """
    p = Path(path)
    if p.is_dir():
        lf = pl.scan_parquet(p / '*.parquet')
    elif p.suffix.lower() == '.csv':
        header = pl.read_csv(p, n_rows=0).columns
        overrides = {c: pl.Utf8 for c in TEXT_COLUMNS if c in header}
        lf = pl.scan_csv(p, schema_overrides=overrides)
    else:
        lf = pl.scan_parquet(p)

    return prepare_contracts(lf)


def prepare_contracts(contracts: pl.LazyFrame | pl.DataFrame) -> pl.LazyFrame:
    """Validate required columns and cast a contract frame to the store schema.

    Dates arrive as ISO-8601 strings (or null) and become ``Date``; values that do not
    parse become null. ``is_open`` arrives as 0/1 and becomes ``Boolean``. A null
    ``customer_id`` column is added when absent. Duplicate contract ids keep the last row.

    Args:
        contracts: Raw contract rows.

    Returns:
        LazyFrame with CONTRACT_SCHEMA columns first, then any extras.

    Raises:
        ValueError: If required columns are missing.
    """
    lf = contracts.lazy()
    schema_cols = lf.collect_schema().names()
    missing = [c for c in REQUIRED_COLUMNS if c not in schema_cols]
    if missing:
        raise ValueError(f'Contract data missing required columns: {missing}; got {schema_cols}')

    if 'customer_id' not in schema_cols:
        lf = lf.with_columns(pl.lit(None, dtype=pl.Utf8).alias('customer_id'))
        schema_cols = schema_cols + ['customer_id']

    core_cols = list(CONTRACT_SCHEMA)
    extra_cols = [c for c in schema_cols if c not in CONTRACT_SCHEMA]

    return (
        lf
        .select(core_cols + extra_cols)
        .with_columns(
            *[pl.col(c).cast(pl.Utf8) for c in TEXT_COLUMNS],
            *date_exprs(lf.collect_schema()),
            pl.col('is_open').cast(pl.Int8, strict=False).cast(pl.Boolean),
        )
        .filter(pl.col('contract_id').is_not_null())
        .unique(subset='contract_id', keep='last', maintain_order=True)
    )
