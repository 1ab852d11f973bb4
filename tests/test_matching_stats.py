"""Tests for matching statistics."""

import polars as pl

from nfr_engine.analysis.matching_stats import (
    compute_cluster_sizes,
    compute_matching_stats,
    compute_method_breakdown,
)


def _make_contracts() -> pl.LazyFrame:
    return pl.LazyFrame({
        'contract_id': ['A', 'B', 'C', 'D', 'E', 'F', 'G'],
        'customer_id': ['CUST-0', 'CUST-0', 'CUST-1', 'CUST-2', 'CUST-2', 'CUST-2', None],
    })


def test_matching_stats() -> None:
    assert compute_matching_stats(_make_contracts()) == {
        'total_contracts': 7,
        'unique_customers': 3,
        'repeat_customers': 2,
        'repeat_rate': 66.67,
    }


def test_matching_stats_empty() -> None:
    empty = pl.LazyFrame(schema={'contract_id': pl.Utf8, 'customer_id': pl.Utf8})
    assert compute_matching_stats(empty) == {
        'total_contracts': 0,
        'unique_customers': 0,
        'repeat_customers': 0,
        'repeat_rate': 0.0,
    }


def test_cluster_sizes() -> None:
    out = compute_cluster_sizes(_make_contracts()).collect()
    assert out['cluster_size'].to_list() == [1, 2, 3]
    assert out['customers'].to_list() == [1, 1, 1]


def test_method_breakdown() -> None:
    events = pl.LazyFrame({
        'rule_name': ['Name + Phone', 'Bank Account (No Name)', 'Name + Phone'],
        'confidence_tier': ['High', 'Very High', 'High'],
    })
    out = compute_method_breakdown(events).collect()
    assert out.rows() == [('Name + Phone', 'High', 2), ('Bank Account (No Name)', 'Very High', 1)]
