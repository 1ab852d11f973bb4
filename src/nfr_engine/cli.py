"""Typer CLI entry point."""

from datetime import date
from pathlib import Path

import polars as pl
import typer

from nfr_engine import config
from nfr_engine.analysis import matching_stats, nfr_rates
from nfr_engine.matching import run_matching
from nfr_engine.pipeline import ingest_and_run, recover_if_needed, run_pipeline
from nfr_engine.retention import run_retention
from nfr_engine.store import ContractStore

app = typer.Typer(help='Match finance customers and compute Net Finance Retained.')


def _open_store(store_dir: str | None) -> ContractStore:
    if store_dir is not None:
        config.STORE_DIR = Path(store_dir).resolve()
    return ContractStore(config.STORE_DIR)


def _echo_summary(summary: dict[str, object]) -> None:
    for key, value in summary.items():
        if isinstance(value, dict):
            typer.echo(f'{key}:')
            for name, count in value.items():
                typer.echo(f'  {name}: {count}')
        else:
            typer.echo(f'{key}: {value}')


@app.command()
def ingest(
    input_path: str = typer.Option(..., help='Contract extract: parquet file, parquet directory, or CSV'),
    store_dir: str | None = typer.Option(None, help='Contract store directory (default: $NFR_STORE_DIR or ./store)'),
    mode: str = typer.Option('append', help="'append' upserts by contract_id, 'replace' clears the store first"),
) -> None:
    """Load an extract into the store, then run matching and retention."""
    store = _open_store(store_dir)
    typer.echo(f'Ingesting {input_path} ({mode})...')
    try:
        summary = ingest_and_run(store, input_path, mode=mode)
    except ValueError as e:
        typer.echo(f'Ingest failed: {e}', err=True)
        raise typer.Exit(1)
    _echo_summary(summary)


@app.command()
def match(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
) -> None:
    """Run customer matching only."""
    store = _open_store(store_dir)
    typer.echo('Matching customers...')
    _echo_summary(run_matching(store))


@app.command()
def retention(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
) -> None:
    """Recompute retention results only (matching must have run)."""
    store = _open_store(store_dir)
    typer.echo('Computing retention windows...')
    typer.echo(f'retention_rows: {run_retention(store)}')


@app.command()
def run(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
) -> None:
    """Run matching then retention over the stored contracts."""
    store = _open_store(store_dir)
    typer.echo('Running matching and retention...')
    _echo_summary(run_pipeline(store))


@app.command()
def recover(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
) -> None:
    """Recompute everything if contracts exist but retention results are missing."""
    store = _open_store(store_dir)
    summary = recover_if_needed(store)
    if summary is None:
        typer.echo('Nothing to recover.')
        return
    typer.echo('Recomputed missing retention results.')
    _echo_summary(summary)


@app.command()
def report(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
    window: str = typer.Option(config.DEFAULT_WINDOW, help='Retention window label'),
    by: str = typer.Option(
        'national',
        help="'national', 'windows', 'year', 'term', 'dealer', 'transition', 'at-risk', or a contract column",
    ),
    exclude: str = typer.Option('', help='Comma-separated exclusions: deceased, over75, arrears'),
    months: int = typer.Option(6, help="Months ahead for 'at-risk'"),
    output: str | None = typer.Option(None, help='Optional CSV path for the table'),
) -> None:
    """Print NFR rates for one window, optionally grouped."""
    store = _open_store(store_dir)
    contracts = store.read_contracts()
    results = store.read_retention_results()
    try:
        exclusions = nfr_rates.exclusion_predicates([e for e in exclude.split(',') if e])
        if by == 'national':
            table = nfr_rates.compute_national_nfr(contracts, results, window, exclusions)
        elif by == 'windows':
            table = nfr_rates.compute_window_comparison(contracts, results, exclusions)
        elif by == 'at-risk':
            table = nfr_rates.compute_at_risk(contracts, date.today(), months, exclusions)
        elif by == 'year':
            table = nfr_rates.compute_nfr_by_year(contracts, results, window, exclusions)
        elif by == 'term':
            table = nfr_rates.compute_nfr_by_term(contracts, results, window, exclusions)
        elif by == 'dealer':
            table = nfr_rates.compute_dealer_retention(contracts, results, window, exclusions=exclusions)
        elif by == 'transition':
            table = nfr_rates.compute_transition_mix(contracts, results, window, exclusions)
        else:
            table = nfr_rates.compute_nfr_by_dimension(contracts, results, window, [by], exclusions)
        df = table.collect()
    except (ValueError, pl.exceptions.ColumnNotFoundError) as e:
        typer.echo(f'Report failed: {e}', err=True)
        raise typer.Exit(1)

    with pl.Config(tbl_rows=-1):
        typer.echo(str(df))
    if output:
        out = Path(output)
        out.parent.mkdir(parents=True, exist_ok=True)
        df.write_csv(out)
        typer.echo(f'Written to {out}')


@app.command('matching-stats')
def matching_stats_cmd(
    store_dir: str | None = typer.Option(None, help='Contract store directory'),
) -> None:
    """Print matching totals and pairs per rule."""
    store = _open_store(store_dir)
    _echo_summary(matching_stats.compute_matching_stats(store.read_contracts()))
    with pl.Config(tbl_rows=-1):
        typer.echo(str(matching_stats.compute_method_breakdown(store.read_match_events()).collect()))


if __name__ == '__main__':
    app()
