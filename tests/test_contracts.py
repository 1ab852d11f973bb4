"""Tests for contract loading and validation."""

import tempfile
from datetime import date
from pathlib import Path

import polars as pl
import pytest

from nfr_engine.data.contracts import CONTRACT_SCHEMA, REQUIRED_COLUMNS, load_contracts, prepare_contracts

_CSV = """contract_id,sortname,phone,postcode,bank_sortcode,account_number,start_date,end_date,is_open,dealer_ref,dealer_name,make,new_used,region
K1,SMITH JOHN,07700900123,AB1 2CD,012345,01234567,2020-01-15,2023-01-31,0,D1,Northside Motors,Ford,U,North
K2,SMITH JOHN,,AB1 2CD,012345,01234567,2023-02-20,,1,D1,Northside Motors,Ford,N,North
"""


def _make_raw() -> pl.DataFrame:
    return pl.DataFrame({
        'contract_id': ['K1', 'K2', 'K1'],
        'sortname': ['SMITH JOHN', 'BROWN AMY', 'SMITH JOHN'],
        'phone': ['07700900123', None, '07700900999'],
        'postcode': ['AB1 2CD', None, 'AB1 2CD'],
        'bank_sortcode': ['112233', None, '112233'],
        'account_number': ['44556677', None, '44556677'],
        'start_date': ['2020-01-15', '2023-02-20', '2020-01-15'],
        'end_date': ['2023-01-31', None, 'not a date'],
        'is_open': [0, 1, 0],
        'dealer_ref': ['D1', 'D2', 'D1'],
        'dealer_name': ['Northside Motors', 'Southside Cars', 'Northside Motors'],
        'make': ['Ford', 'Audi', 'Ford'],
        'new_used': ['U', 'N', 'U'],
        'region': ['North', 'South', 'North'],
    })


def test_prepare_contracts_casts_types() -> None:
    out = prepare_contracts(_make_raw()).collect()
    for col, dtype in CONTRACT_SCHEMA.items():
        assert out.schema[col] == dtype, f"Wrong dtype for {col}"
    k2 = out.filter(pl.col('contract_id') == 'K2')
    assert k2['start_date'].to_list() == [date(2023, 2, 20)]
    assert k2['is_open'].to_list() == [True]


def test_prepare_contracts_adds_customer_id_and_keeps_extras() -> None:
    out = prepare_contracts(_make_raw()).collect()
    assert out.columns[:len(CONTRACT_SCHEMA)] == list(CONTRACT_SCHEMA)
    assert 'region' in out.columns
    assert out['customer_id'].null_count() == out.height


def test_prepare_contracts_keeps_last_duplicate() -> None:
    out = prepare_contracts(_make_raw()).collect()
    assert out.height == 2
    k1 = out.filter(pl.col('contract_id') == 'K1')
    assert k1['phone'].to_list() == ['07700900999']
    # Unparseable dates become null rather than failing the load
    assert k1['end_date'].to_list() == [None]


def test_prepare_contracts_missing_column_raises() -> None:
    raw = _make_raw().drop('bank_sortcode')
    with pytest.raises(ValueError, match='missing required columns'):
        prepare_contracts(raw)


def test_load_contracts_csv_keeps_leading_zeros() -> None:
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / 'extract.csv'
        path.write_text(_CSV)
        out = load_contracts(path).collect().sort('contract_id')
    assert out['bank_sortcode'].to_list() == ['012345', '012345']
    assert out['account_number'].to_list() == ['01234567', '01234567']
    assert out['phone'].to_list() == ['07700900123', None]
    assert out['end_date'].to_list() == [date(2023, 1, 31), None]
    assert out['is_open'].to_list() == [False, True]


def test_load_contracts_parquet() -> None:
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / 'extract.parquet'
        _make_raw().write_parquet(path)
        out = load_contracts(path).collect()
    assert set(REQUIRED_COLUMNS) <= set(out.columns)
    assert out.height == 2
