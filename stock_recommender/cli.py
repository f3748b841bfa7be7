"""
Stock Recommender — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, ingest, generation run, read).
  5. Report result to stdout.

Exit codes: 0 for every completed run, including no-ops (lock held,
snapshot already stored) and recorded failures; 1 for setup failures
(bad config, missing API key, unreachable store, invalid arguments).

Install and run::

    pip install -e .
    stock-recommender --help
    stock-recommender init-db
    stock-recommender validate-config
    stock-recommender ingest-features --stub --size 500
    stock-recommender generate --as-of-date 2026-01-27
    stock-recommender show-snapshot --as-of-date 2026-01-27
    stock-recommender list-attempts --as-of-date 2026-01-27
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="stock-recommender",
    help="Daily LLM stock recommendation snapshots — local-first CLI.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from stock_recommender.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from stock_recommender.utils.logging import configure_logging
    configure_logging(config.logging)


def _resolve_date_or_exit(as_of_date: Optional[str], config):
    from stock_recommender.utils.time_utils import resolve_as_of_date

    try:
        return resolve_as_of_date(as_of_date, config.market)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid as-of date: {exc}", err=True)
        raise typer.Exit(code=1)


def _connect(config, db_path: Optional[str]):
    from stock_recommender.db.connection import get_connection

    return get_connection(
        db_path or config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )


def _echo_snapshot(record) -> None:
    typer.echo(
        f"Snapshot {record.snapshot_id} | as_of={record.as_of_date} | "
        f"generated_at={record.generated_at.isoformat()} | provider={record.provider}"
    )
    for item in record.items:
        confidence = "-" if item.confidence is None else f"{item.confidence:.2f}"
        typer.echo(f"  {item.rank:>2}. {item.ticker:<12} {item.name}  (confidence {confidence})")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from stock_recommender.db.migrations import run_migrations
    from stock_recommender.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    try:
        with _connect(config, target_path) as conn:
            apply_schema(conn)
            migrations_applied = run_migrations(conn)
    except sqlite3.Error as exc:
        typer.echo(f"[ERROR] Database initialization failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    from stock_recommender.config import ENV_ANTHROPIC_API_KEY, get_secret

    config = _load_config_or_exit(config_path)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  Lock directory:   {config.database.lock_dir}")
    typer.echo(f"  Universe size:    {config.universe.size} (stub={config.universe.use_stub})")
    typer.echo(f"  LLM model:        {config.llm.provider}/{config.llm.model}")
    typer.echo(f"  Repair attempts:  {config.llm.max_repair_attempts}")
    typer.echo(f"  Market offset:    UTC{config.market.utc_offset_hours:+d}, cutoff {config.market.close_cutoff}")
    typer.echo(f"  API key set:      {get_secret(ENV_ANTHROPIC_API_KEY) is not None}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("ingest-features")
def ingest_features(
    as_of_date: Optional[str] = typer.Option(
        None,
        "--as-of-date",
        help="Trading date YYYY-MM-DD (default: resolved from the market calendar).",
    ),
    stub: bool = typer.Option(
        False,
        "--stub",
        help="Seed deterministic synthetic rows instead of calling the feature provider.",
    ),
    size: Optional[int] = typer.Option(
        None,
        "--size",
        help="Stub row count, 1..5000 (default: feature_provider.stub_size).",
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Load one trading date of features into stock_features_daily."""
    from stock_recommender.pipeline.ingest import FeatureIngestStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    target_date = _resolve_date_or_exit(as_of_date, config)

    if size is not None and not stub:
        typer.echo("[ERROR] --size only applies with --stub.", err=True)
        raise typer.Exit(code=1)
    if size is not None and not 1 <= size <= 5000:
        typer.echo("[ERROR] --size must be in [1, 5000].", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Ingesting features for {target_date} ({'stub' if stub else 'provider'})")

    stage = FeatureIngestStage(config=config, db_path=db_path)
    try:
        run = stage.run(as_of_date=target_date, stub=stub, size=size)
    except Exception as exc:
        typer.echo(f"[ERROR] Ingest failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"  Rows upserted: {run.rows_upserted}")
    typer.echo(f"  Run id:        {run.run_id}")
    typer.echo("[OK] Features ingested.")


@app.command("generate")
def generate(
    as_of_date: Optional[str] = typer.Option(
        None,
        "--as-of-date",
        help="Trading date YYYY-MM-DD (default: resolved from the market calendar).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Build the candidate universe and report it; no model call, no writes.",
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Generate and store the recommendation snapshot for one trading date.

    \b
    Outcomes (all exit 0):
      success            snapshot stored (or stored concurrently by another run)
      already_satisfied  a snapshot for the date already exists
      lock_denied        another run for the date is in progress
      failure            generation failed; an error row was recorded
    """
    from stock_recommender.config import ENV_ANTHROPIC_API_KEY, get_secret
    from stock_recommender.errors import InsufficientCandidatesError
    from stock_recommender.generation.client import GenerationClient
    from stock_recommender.generation.transport import AnthropicTransport
    from stock_recommender.pipeline.coordinator import RunCoordinator

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    target_date = _resolve_date_or_exit(as_of_date, config)

    if dry_run:
        coordinator = RunCoordinator(config, generator=None, db_path=db_path)
        try:
            candidates = coordinator.build_universe(target_date)
        except InsufficientCandidatesError as exc:
            typer.echo(f"[ERROR] {exc}", err=True)
            raise typer.Exit(code=1)
        except sqlite3.Error as exc:
            typer.echo(f"[ERROR] Database unavailable: {exc}", err=True)
            raise typer.Exit(code=1)

        typer.echo(f"[DRY RUN] {len(candidates)} candidates for {target_date}; no model call made.")
        for cand in candidates[:10]:
            typer.echo(f"  {cand.ticker:<12} {cand.name}  score={cand.score:.4f}")
        if len(candidates) > 10:
            typer.echo(f"  ... and {len(candidates) - 10} more.")
        return

    api_key = get_secret(ENV_ANTHROPIC_API_KEY)
    if api_key is None:
        typer.echo(f"[ERROR] {ENV_ANTHROPIC_API_KEY} is not set (.env or environment).", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Generating snapshot for {target_date} with {config.llm.model}")

    with AnthropicTransport(config.llm, api_key) as transport:
        coordinator = RunCoordinator(
            config,
            generator=GenerationClient(transport, config.llm),
            db_path=db_path,
        )
        try:
            outcome = coordinator.run(target_date)
        except (OSError, sqlite3.Error) as exc:
            typer.echo(f"[ERROR] Run setup failed: {exc}", err=True)
            raise typer.Exit(code=1)

    typer.echo(f"  State:       {outcome.state}")
    if outcome.snapshot_id:
        typer.echo(f"  Snapshot id: {outcome.snapshot_id}")
    if outcome.conflict:
        typer.echo("  Note:        stored concurrently by another run.")
    if outcome.error:
        typer.echo(f"  Error:       {outcome.error}")
        if not outcome.failure_recorded:
            typer.echo("  Warning:     the failure row could not be written.")
    typer.echo(f"[OK] Run finished: {outcome.state}.")


@app.command("show-snapshot")
def show_snapshot(
    as_of_date: Optional[str] = typer.Option(
        None,
        "--as-of-date",
        help="Trading date YYYY-MM-DD (default: latest stored snapshot).",
    ),
    ticker: Optional[str] = typer.Option(
        None,
        "--ticker",
        help="Show only this ticker's item (requires --as-of-date).",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the snapshot as JSON.",
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Print a stored success snapshot (or a single item of it)."""
    from datetime import date

    from stock_recommender.db.repositories.snapshot_repo import SnapshotRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_date = None
    if as_of_date:
        try:
            target_date = date.fromisoformat(as_of_date)
        except ValueError as exc:
            typer.echo(f"[ERROR] Invalid date format: {exc}", err=True)
            raise typer.Exit(code=1)
    if ticker and target_date is None:
        typer.echo("[ERROR] --ticker requires --as-of-date.", err=True)
        raise typer.Exit(code=1)

    try:
        with _connect(config, db_path) as conn:
            repo = SnapshotRepository(conn)
            if ticker:
                item = repo.get_item(target_date, ticker.strip())
                record = None
            elif target_date is not None:
                record = repo.get_success_snapshot(target_date)
            else:
                record = repo.get_latest_success()
    except sqlite3.Error as exc:
        typer.echo(f"[ERROR] Database unavailable: {exc}", err=True)
        raise typer.Exit(code=1)

    if ticker:
        if item is None:
            typer.echo(f"No recommendation for {ticker} on {target_date}.")
            return
        payload = item.model_dump(mode="json")
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    if record is None:
        typer.echo("No success snapshot found.")
        return

    if as_json:
        typer.echo(json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False))
    else:
        _echo_snapshot(record)


@app.command("list-attempts")
def list_attempts(
    as_of_date: str = typer.Option(
        ...,
        "--as-of-date",
        help="Trading date YYYY-MM-DD.",
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """List every stored attempt (success and error rows) for a date."""
    from datetime import date

    from stock_recommender.db.repositories.snapshot_repo import SnapshotRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        target_date = date.fromisoformat(as_of_date)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid date format: {exc}", err=True)
        raise typer.Exit(code=1)

    try:
        with _connect(config, db_path) as conn:
            attempts = SnapshotRepository(conn).list_attempts(target_date)
    except sqlite3.Error as exc:
        typer.echo(f"[ERROR] Database unavailable: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"{len(attempts)} attempt(s) for {target_date}:")
    for rec in attempts:
        line = f"  {(rec.created_at or rec.generated_at).isoformat()} | {rec.status:<7} | {rec.provider} | {rec.snapshot_id}"
        if rec.error:
            line += f" | {rec.error[:120]}"
        typer.echo(line)


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
