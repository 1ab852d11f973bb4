"""Group record ids by key expressions."""

import polars as pl


def group_by_key(
    frame: pl.LazyFrame | pl.DataFrame,
    keys: list[pl.Expr],
    id_col: str = 'contract_id',
) -> dict[str, list[str]]:
    """Group record ids by one or more key expressions.

    Each expression yields a string key or null for every row. A row joins one group per
    non-null key, so a record can sit in several groups when more than one expression is
    given. Groups come back in first-encountered order (row order, then expression order)
    and members keep row order.

    Args:
        frame: Records with an id column plus whatever columns the key expressions read.
        keys: Key expressions; null means the row does not qualify for that key.
        id_col: Column holding the record id.

    Returns:
        Dict of key -> list of record ids.
    """
    lf = frame.lazy().with_row_index('_row')
    parts = [
        lf.select(
            pl.col('_row'),
            pl.lit(slot, dtype=pl.UInt32).alias('_slot'),
            expr.cast(pl.Utf8).alias('_key'),
            pl.col(id_col).alias('_id'),
        )
        for slot, expr in enumerate(keys)
    ]
    if not parts:
        return {}
    grouped = (
        pl.concat(parts)
        .drop_nulls('_key')
        .sort(['_row', '_slot'])
        .group_by('_key', maintain_order=True)
        .agg(pl.col('_id'))
        .collect()
    )
    return dict(zip(grouped['_key'].to_list(), grouped['_id'].to_list()))
