"""
catalog-etl CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, seeding, transform, resync, full run).
  5. Report result to stdout.

Exit codes: 0 success, 1 partial or failed, 2 aborted (a store could not be
opened, nothing was written).

Install and run::

    pip install -e .
    catalog-etl --help
    catalog-etl init-db
    catalog-etl validate-config
    catalog-etl seed
    catalog-etl transform --input data/enriched.jsonl
    catalog-etl resync
    catalog-etl run
    catalog-etl check-collections
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="catalog-etl",
    help="Enriched product catalog ETL: classify, score, project to SQLite, mirror to MongoDB.",
    add_completion=False,
)

EXIT_ABORTED = 2


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from catalog_etl.config import load_config

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
    from catalog_etl.utils.logging import configure_logging
    configure_logging(config.logging)


def _load_taxonomy_or_exit(config):
    from catalog_etl.taxonomy.product_taxonomy import load_taxonomy

    try:
        return load_taxonomy(Path(config.data.taxonomy_file))
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] Taxonomy: {exc}", err=True)
        raise typer.Exit(code=1)


def _read_input_or_exit(input_file: str):
    from catalog_etl.transform.records import read_records_file

    try:
        return read_records_file(Path(input_file))
    except (FileNotFoundError, ValueError) as exc:
        typer.echo(f"[ERROR] Input: {exc}", err=True)
        raise typer.Exit(code=1)


def _ensure_store_or_abort(config, db_path: Optional[str]) -> None:
    """Pre-flight the SQLite store; exit 2 if it cannot be opened."""
    from catalog_etl.db.schema import ensure_schema
    from catalog_etl.docstore.connection import StoreUnavailableError

    try:
        ensure_schema(
            db_path or config.database.db_path,
            wal_mode=config.database.wal_mode,
            busy_timeout_ms=config.database.busy_timeout_ms,
        )
    except StoreUnavailableError as exc:
        typer.echo(f"[ABORTED] {exc}", err=True)
        raise typer.Exit(code=EXIT_ABORTED)


def _echo_steps(steps) -> None:
    for step in steps:
        line = f"        {step.name:<18} {step.status:<8} {step.documents:>7} docs"
        if step.error:
            line += f"  ({step.error})"
        typer.echo(line)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.sqlite).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times: all DDL uses IF NOT EXISTS.
    """
    from catalog_etl.db.schema import ALL_TABLE_NAMES

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    _ensure_store_or_abort(config, target_path)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
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
    """Validate the configuration file and the taxonomy it points to.

    Exits with code 1 if either fails validation.
    """
    config = _load_config_or_exit(config_path)
    taxonomy = _load_taxonomy_or_exit(config)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:    {config.database.db_path}")
    typer.echo(f"  MongoDB:          {config.docstore.uri} / {config.docstore.db_name}")
    typer.echo(f"  Enriched input:   {config.docstore.enriched_collection}")
    typer.echo(f"  Taxonomy:         {len(taxonomy.categories)} categories, "
               f"{len(taxonomy.allergens)} allergens")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("seed")
def seed(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Insert missing categories, subcategories and allergens (idempotent)."""
    from catalog_etl.pipeline.seed import SeedStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    taxonomy = _load_taxonomy_or_exit(config)

    _ensure_store_or_abort(config, db_path)
    stage = SeedStage(config=config, db_path=db_path)
    try:
        stage.run(taxonomy=taxonomy)
    except Exception as exc:
        typer.echo(f"[ERROR] Seeding failed: {exc}", err=True)
        raise typer.Exit(code=1)

    result = stage.result
    typer.echo(
        f"[OK] Seeded: {result.categories_inserted} categories, "
        f"{result.subcategories_inserted} subcategories, "
        f"{result.allergens_inserted} allergens inserted."
    )


@app.command("transform")
def transform(
    input_file: Optional[str] = typer.Option(
        None,
        "--input",
        help="Enriched records file (.jsonl or .json). Defaults to the enrichment collection.",
    ),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Seed, then classify, score and upsert enriched records into SQLite.

    Does not touch the mirrored MongoDB collections; run ``resync`` afterwards.
    """
    from contextlib import ExitStack

    from catalog_etl.docstore.connection import StoreUnavailableError, get_document_db
    from catalog_etl.pipeline.seed import SeedStage
    from catalog_etl.pipeline.transform import TransformStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    taxonomy = _load_taxonomy_or_exit(config)

    _ensure_store_or_abort(config, db_path)

    with ExitStack() as stack:
        if input_file:
            records = _read_input_or_exit(input_file)
        else:
            try:
                db = stack.enter_context(get_document_db(config.docstore))
            except StoreUnavailableError as exc:
                typer.echo(f"[ABORTED] {exc}", err=True)
                raise typer.Exit(code=EXIT_ABORTED)
            records = db[config.docstore.enriched_collection].find({})

        stage = TransformStage(config=config, db_path=db_path)
        try:
            SeedStage(config=config, db_path=db_path).run(taxonomy=taxonomy)
            stage.run(records=records, taxonomy=taxonomy)
        except Exception as exc:
            typer.echo(f"[ERROR] Transform failed: {exc}", err=True)
            raise typer.Exit(code=1)

    stats = stage.stats
    typer.echo(
        f"[OK] read={stats.records_read} | projected={stats.products_projected} | "
        f"skipped={stats.records_skipped} | failed={stats.records_failed} | "
        f"links={stats.links_written}"
    )


@app.command("resync")
def resync(
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Mirror the relational store into the MongoDB collections.

    Exits 1 if any step failed or was skipped, 2 if either store cannot be opened.
    """
    from catalog_etl.db.schema import ensure_schema
    from catalog_etl.docstore.connection import StoreUnavailableError, get_document_db
    from catalog_etl.pipeline.resync import ResyncIncompleteError, ResyncStage

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    stage = ResyncStage(config=config, db_path=db_path)
    try:
        with get_document_db(config.docstore) as db:
            ensure_schema(
                stage.db_path,
                wal_mode=config.database.wal_mode,
                busy_timeout_ms=config.database.busy_timeout_ms,
            )
            stage.run(db=db)
    except StoreUnavailableError as exc:
        typer.echo(f"[ABORTED] {exc}", err=True)
        raise typer.Exit(code=EXIT_ABORTED)
    except ResyncIncompleteError as exc:
        _echo_steps(stage.result.steps)
        typer.echo(f"[PARTIAL] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Resync failed: {exc}", err=True)
        raise typer.Exit(code=1)

    _echo_steps(stage.result.steps)
    typer.echo("[OK] Document store synchronized.")


@app.command("run")
def run(
    input_file: Optional[str] = typer.Option(
        None,
        "--input",
        help="Enriched records file (.jsonl or .json). Defaults to the enrichment collection.",
    ),
    no_resync: bool = typer.Option(False, "--no-resync", help="Stop after the transform stage."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Override DB path from config."),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Run the full pipeline: seed → transform → resync.

    \b
    Status / exit code:
      success  0   everything completed
      partial  1   some resync steps failed or were skipped
      failed   1   seed or transform raised
      aborted  2   a store could not be opened; nothing written
    """
    from catalog_etl.pipeline.orchestrator import PipelineOrchestrator

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    records = _read_input_or_exit(input_file) if input_file else None

    summary = PipelineOrchestrator(config=config, db_path=db_path).run(
        records=records, resync=not no_resync
    )

    typer.echo(f"run | status={summary.status} | db={db_path or config.database.db_path}")
    typer.echo(
        f"  seeded:    {summary.categories_seeded} categories, "
        f"{summary.subcategories_seeded} subcategories, {summary.allergens_seeded} allergens"
    )
    raw = summary.raw_records if summary.raw_records is not None else "n/a"
    typer.echo(
        f"  records:   raw={raw} | read={summary.records_read} | "
        f"enriched={summary.enriched_records} | skipped={summary.records_skipped} | "
        f"failed={summary.records_failed}"
    )
    typer.echo(f"  products:  {summary.products_projected} projected, "
               f"{summary.links_written} allergen links")
    if summary.resync_steps:
        typer.echo("  resync:")
        _echo_steps(summary.resync_steps)
    for error in summary.errors:
        typer.echo(f"  ! {error}", err=True)

    if summary.exit_code:
        raise typer.Exit(code=summary.exit_code)
    typer.echo("[OK] Pipeline complete.")


@app.command("check-collections")
def check_collections(
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to TOML config file."),
) -> None:
    """Print the document count of every pipeline collection."""
    from catalog_etl.docstore.collections import collection_counts
    from catalog_etl.docstore.connection import StoreUnavailableError, get_document_db

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    extra = (config.docstore.raw_collection, config.docstore.enriched_collection)
    try:
        with get_document_db(config.docstore) as db:
            counts = collection_counts(db, extra=extra)
    except StoreUnavailableError as exc:
        typer.echo(f"[ABORTED] {exc}", err=True)
        raise typer.Exit(code=EXIT_ABORTED)

    typer.echo(f"Collections in {config.docstore.db_name}:")
    for name, count in counts.items():
        typer.echo(f"  {name:<20} {count:>8}")


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
