"""Tests for retention window computation."""

from datetime import date, timedelta

import polars as pl
import pytest

from nfr_engine.retention import candidate_bounds, compute_retention, condition_label_expr
from nfr_engine.store import retention_result_schema

END = date(2023, 1, 1)


def _make_contract(
    contract_id: str,
    customer_id: str | None = 'CUST-0',
    start_date: date | None = date(2020, 1, 1),
    end_date: date | None = None,
    is_open: int = 1,
    dealer_ref: str | None = 'D1',
    dealer_name: str | None = 'Northside Motors',
    make: str | None = 'Ford',
    new_used: str | None = 'U',
) -> dict[str, object]:
    return {
        'contract_id': contract_id,
        'customer_id': customer_id,
        'start_date': start_date,
        'end_date': end_date,
        'is_open': is_open,
        'dealer_ref': dealer_ref,
        'dealer_name': dealer_name,
        'make': make,
        'new_used': new_used,
    }


def _ended(contract_id: str = 'A', **kwargs: object) -> dict[str, object]:
    return _make_contract(contract_id, end_date=END, is_open=0, **kwargs)


def _starting(contract_id: str, offset_days: int, **kwargs: object) -> dict[str, object]:
    return _make_contract(contract_id, start_date=END + timedelta(days=offset_days), **kwargs)


def _make_frame(rows: list[dict[str, object]]) -> pl.DataFrame:
    return pl.DataFrame(rows, schema={
        'contract_id': pl.Utf8,
        'customer_id': pl.Utf8,
        'start_date': pl.Date,
        'end_date': pl.Date,
        'is_open': pl.Int64,
        'dealer_ref': pl.Utf8,
        'dealer_name': pl.Utf8,
        'make': pl.Utf8,
        'new_used': pl.Utf8,
    })


def _flags(row: dict[str, object]) -> dict[str, object]:
    return {k: v for k, v in row.items() if k.startswith('retained_')}


def test_forward_offset_between_windows() -> None:
    out = compute_retention(_make_frame([_ended(), _starting('B', 40)])).collect()
    assert out['contract_id'].to_list() == ['A']
    assert _flags(out.row(0, named=True)) == {
        'retained_core': False,
        'retained_6_1': False,
        'retained_3_3': True,
        'retained_3_6': True,
        'retained_3_12': True,
    }
    assert out['next_contract_id'].to_list() == ['B']


def test_backward_offset_only_in_wide_lookback() -> None:
    out = compute_retention(_make_frame([_ended(), _starting('B', -100)])).collect()
    assert _flags(out.row(0, named=True)) == {
        'retained_core': False,
        'retained_6_1': True,
        'retained_3_3': False,
        'retained_3_6': False,
        'retained_3_12': False,
    }


def test_window_boundaries_are_inclusive() -> None:
    windows = [('w', 91, 30)]
    at_edge = compute_retention(_make_frame([_ended(), _starting('B', 30)]), windows).collect()
    past_edge = compute_retention(_make_frame([_ended(), _starting('B', 31)]), windows).collect()
    back_edge = compute_retention(_make_frame([_ended(), _starting('B', -91)]), windows).collect()
    assert at_edge['retained_w'].to_list() == [True]
    assert past_edge['retained_w'].to_list() == [False]
    assert back_edge['retained_w'].to_list() == [True]


def test_no_candidate_gives_false_flags_and_null_next() -> None:
    out = compute_retention(_make_frame([_ended(), _starting('B', 400)])).collect()
    row = out.row(0, named=True)
    assert not any(_flags(row).values())
    assert row['next_contract_id'] is None
    assert row['same_dealer'] is None
    assert row['brand_loyal'] is None
    assert row['transition_label'] is None


def test_nearest_candidate_by_absolute_distance() -> None:
    out = compute_retention(_make_frame([
        _ended(),
        _starting('B', 20),
        _starting('C', -10),
        _starting('D', 200),
    ])).collect()
    assert out['next_contract_id'].to_list() == ['C']


def test_nearest_tie_goes_to_smaller_contract_id() -> None:
    out = compute_retention(_make_frame([_ended(), _starting('C', 10), _starting('B', -10)])).collect()
    assert out['next_contract_id'].to_list() == ['B']


def test_next_contract_attributes() -> None:
    out = compute_retention(_make_frame([
        _ended(dealer_ref='D1', make='Ford', new_used='U'),
        _starting('B', 5, dealer_ref='D1', dealer_name='Other Name', make='FORD', new_used='new'),
    ])).collect()
    row = out.row(0, named=True)
    assert row['same_dealer'] is True
    assert row['brand_loyal'] is True
    assert row['transition_label'] == 'Used → New'


def test_same_dealer_falls_back_to_dealer_name() -> None:
    out = compute_retention(_make_frame([
        _ended(dealer_ref='D1', dealer_name='Northside Motors', make='Ford'),
        _starting('B', 5, dealer_ref='D9', dealer_name='Northside Motors', make='Audi'),
        _ended('X', customer_id='CUST-1', dealer_ref='D1', dealer_name='Northside Motors'),
        _starting('Y', 5, customer_id='CUST-1', dealer_ref='D2', dealer_name='Southside Cars'),
    ])).collect()
    assert out['same_dealer'].to_list() == [True, False]
    assert out['brand_loyal'].to_list() == [False, True]


def test_unknown_new_used_code_gives_null_transition() -> None:
    out = compute_retention(_make_frame([
        _ended(new_used='X'),
        _starting('B', 5, new_used='N'),
    ])).collect()
    assert out['transition_label'].to_list() == [None]


def test_only_closed_contracts_with_end_date_get_rows() -> None:
    out = compute_retention(_make_frame([
        _ended('A'),
        _make_contract('B', end_date=None, is_open=0),
        _make_contract('C', end_date=END, is_open=1),
        _starting('D', 5),
    ])).collect()
    assert out['contract_id'].to_list() == ['A']


def test_other_customers_and_self_are_not_candidates() -> None:
    out = compute_retention(_make_frame([
        _ended('A', start_date=END - timedelta(days=10)),
        _starting('B', 5, customer_id='CUST-9'),
        _ended('N', customer_id=None),
        _starting('M', 5, customer_id=None),
    ])).collect()
    assert out['contract_id'].to_list() == ['A', 'N']
    for row in out.iter_rows(named=True):
        assert not any(_flags(row).values())
        assert row['next_contract_id'] is None


def test_closed_contracts_can_succeed_each_other() -> None:
    out = compute_retention(_make_frame([
        _ended('A'),
        _make_contract('B', start_date=END + timedelta(days=3), end_date=date(2024, 1, 1), is_open=0),
    ])).collect()
    assert out['contract_id'].to_list() == ['A', 'B']
    assert out['next_contract_id'].to_list() == ['B', None]


def test_result_columns_follow_windows() -> None:
    windows = [('w10', 91, 10), ('w30', 91, 30)]
    out = compute_retention(_make_frame([_ended(), _starting('B', 20)]), windows).collect()
    assert out.columns == list(retention_result_schema(windows))
    assert out.row(0, named=True)['retained_w10'] is False
    assert out.row(0, named=True)['retained_w30'] is True


def test_candidate_bounds() -> None:
    assert candidate_bounds([('a', 91, 30), ('b', 183, 10)]) == (183, 30)
    with pytest.raises(ValueError, match='At least one retention window'):
        candidate_bounds([])


def test_condition_label_expr() -> None:
    df = pl.DataFrame({'code': ['N', ' used ', 'New', 'X', None]})
    out = df.select(condition_label_expr('code').alias('label'))['label'].to_list()
    assert out == ['New', 'Used', 'New', None, None]


def test_iso_date_strings_are_parsed() -> None:
    frame = _make_frame([
        _ended(),
        _starting('B', 20),
        _ended('C', customer_id='CUST-1'),
    ]).with_columns(
        pl.col('start_date').dt.strftime('%Y-%m-%d'),
        pl.col('end_date').dt.strftime('%Y-%m-%d'),
    ).with_columns(
        pl.when(pl.col('contract_id') == 'C')
        .then(pl.lit('31/01/2023'))
        .otherwise(pl.col('end_date'))
        .alias('end_date'),
    )
    assert frame.schema['end_date'] == pl.Utf8
    out = compute_retention(frame).collect()
    # Non-ISO text does not parse, so C has no end date and no result row
    assert out['contract_id'].to_list() == ['A']
    assert out['retained_core'].to_list() == [True]
    assert out['next_contract_id'].to_list() == ['B']
