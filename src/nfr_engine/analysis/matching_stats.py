"""Customer matching statistics over stored contracts and match events."""

import polars as pl


def compute_matching_stats(contracts: pl.LazyFrame) -> dict[str, float | int]:
    """Totals for the matching summary.

    Returns:
        Dict with total_contracts, unique_customers, repeat_customers (customers holding
        more than one contract) and repeat_rate (repeat / unique * 100, 2dp).
    """
    sizes = compute_cluster_sizes(contracts).collect()
    total = contracts.select(pl.len()).collect().item()
    unique = int(sizes['customers'].sum()) if sizes.height else 0
    repeat = int(sizes.filter(pl.col('cluster_size') > 1)['customers'].sum()) if sizes.height else 0
    return {
        'total_contracts': total,
        'unique_customers': unique,
        'repeat_customers': repeat,
        'repeat_rate': round(repeat / unique * 100, 2) if unique > 0 else 0.0,
    }


def compute_cluster_sizes(contracts: pl.LazyFrame) -> pl.LazyFrame:
    """Number of customers by cluster size (contracts per customer)."""
    return (
        contracts.filter(pl.col('customer_id').is_not_null())
        .group_by('customer_id')
        .agg(pl.len().alias('cluster_size'))
        .group_by('cluster_size')
        .agg(pl.len().alias('customers'))
        .sort('cluster_size')
    )


def compute_method_breakdown(events: pl.LazyFrame) -> pl.LazyFrame:
    """Match pairs per rule and confidence tier, most pairs first."""
    return (
        events.group_by(['rule_name', 'confidence_tier'])
        .agg(pl.len().alias('pairs'))
        .sort(['pairs', 'rule_name'], descending=[True, False])
    )
