"""
Full pipeline run: pre-flight → seed → transform → resync.

The ``PipelineOrchestrator`` drives one complete run in a deterministic,
testable sequence:

  Step 1 Pre-flight:  Load the taxonomy, open MongoDB (ping), open SQLite
                        and apply the schema. Nothing is written before all
                        three succeed.
  Step 2 Seed:        ``SeedStage`` inserts missing taxonomy/allergen rows.
  Step 3 Transform:   ``TransformStage`` projects the enriched records
                        (from ``--input`` or the enrichment collection).
  Step 4 Resync:      ``ResyncStage`` snapshot-replaces the mirrored
                        collections and writes ``sync_metadata``.

Status
------
- ``aborted``:  pre-flight failed; no store was written.
- ``failed``:   seed or transform raised; later steps did not run.
- ``partial``:  at least one resync step failed or was skipped.
- ``success``:  everything completed. Individual malformed records are
                counted in ``records_failed`` but do not change the status.

Every stage writes its own ``run_metadata`` row; the orchestrator adds one
more row (stage ``orchestrator``) spanning the whole run.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional
from uuid import uuid4

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog_etl.config import AppConfig
from catalog_etl.docstore.connection import StoreUnavailableError, get_document_db
from catalog_etl.pipeline.resync import ResyncIncompleteError, ResyncStage, StepResult
from catalog_etl.pipeline.seed import SeedStage
from catalog_etl.pipeline.transform import TransformStage
from catalog_etl.taxonomy.product_taxonomy import Taxonomy, load_taxonomy
from catalog_etl.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

EXIT_CODES = {"success": 0, "partial": 1, "failed": 1, "aborted": 2}


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class RunSummary:
    """Complete result of one pipeline run.

    Attributes:
        status:                 "success", "partial", "failed" or "aborted".
        run_id:                 DB run_id of the orchestrator run record.
        raw_records:            Documents in the collector's raw collection
                                (``None`` when it could not be counted).
        records_read:           Enriched documents read.
        enriched_records:       Documents with ``status == "success"``.
        records_skipped:        Documents with any other status.
        records_failed:         Documents that could not be projected.
        products_projected:     Product rows upserted.
        links_written:          Product ↔ allergen links stored.
        categories_seeded:      New category rows.
        subcategories_seeded:   New subcategory rows.
        allergens_seeded:       New allergen rows.
        resync_steps:           Per-step resync outcomes, in protocol order.
        errors:                 Accumulated error messages.
    """

    status: str = "started"
    run_id: Optional[int] = None
    raw_records: Optional[int] = None
    records_read: int = 0
    enriched_records: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    products_projected: int = 0
    links_written: int = 0
    categories_seeded: int = 0
    subcategories_seeded: int = 0
    allergens_seeded: int = 0
    resync_steps: list[StepResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def resync_counts(self) -> dict[str, int]:
        return {s.name: s.documents for s in self.resync_steps}

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.status, 1)


# ── Orchestrator ──────────────────────────────────────────────────────────────

class PipelineOrchestrator:
    """Coordinates seed, transform and resync for one run.

    Args:
        config:       AppConfig for this run.
        db_path:      Override DB path (defaults to config.database.db_path).
        taxonomy:     Pre-loaded taxonomy (defaults to ``config.data.taxonomy_file``).
        mongo_client: Pre-built MongoDB client (e.g. ``mongomock.MongoClient()``).
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        taxonomy: Optional[Taxonomy] = None,
        mongo_client: Optional[MongoClient] = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.taxonomy = taxonomy
        self.mongo_client = mongo_client

    def run(
        self,
        records: Optional[Iterable[Mapping[str, Any]]] = None,
        resync: bool = True,
    ) -> RunSummary:
        """Execute the full pipeline.

        Args:
            records: Enriched documents to project. Defaults to every document
                of the configured enrichment collection.
            resync:  Whether to mirror the relational store into MongoDB.

        Returns:
            ``RunSummary`` for the run.
        """
        summary = RunSummary(started_at=utcnow())
        run_slug = str(uuid4())
        logger.info("PipelineOrchestrator | run_slug=%s | db=%s", run_slug, self.db_path)

        with ExitStack() as stack:
            # ── Step 1: Pre-flight ────────────────────────────────────────────
            try:
                taxonomy = self.taxonomy or load_taxonomy(Path(self.config.data.taxonomy_file))
                db = stack.enter_context(
                    get_document_db(self.config.docstore, client=self.mongo_client)
                )
                self._ensure_schema()
            except (StoreUnavailableError, FileNotFoundError, ValueError) as exc:
                summary.status = "aborted"
                summary.errors.append(f"Pre-flight failed: {exc}")
                summary.finished_at = utcnow()
                logger.error("Pre-flight failed, nothing written: %s", exc)
                return summary

            summary.run_id = self._persist_run_start(run_slug)

            # ── Step 2: Seed ──────────────────────────────────────────────────
            logger.info("[1/3] SeedStage ...")
            if self._run_seed(summary, taxonomy):
                # ── Step 3: Transform ─────────────────────────────────────────
                logger.info("[2/3] TransformStage ...")
                source = records if records is not None else self._enriched_cursor(db)
                if self._run_transform(summary, source, taxonomy):
                    summary.raw_records = self._count_raw(db)

                    # ── Step 4: Resync ────────────────────────────────────────
                    if resync:
                        logger.info("[3/3] ResyncStage ...")
                        self._run_resync(summary, db)
                    else:
                        logger.info("[3/3] Resync skipped (resync=False).")

        if summary.status == "started":
            summary.status = "success"
        summary.finished_at = utcnow()
        self._persist_run_finish(run_slug, summary)

        logger.info(
            "PipelineOrchestrator finished | status=%s | read=%d | projected=%d "
            "| skipped=%d | failed=%d | errors=%d",
            summary.status, summary.records_read, summary.products_projected,
            summary.records_skipped, summary.records_failed, len(summary.errors),
        )
        return summary

    # ── Private helpers ───────────────────────────────────────────────────────

    def _connection(self):
        from catalog_etl.db.connection import get_connection

        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def _ensure_schema(self) -> None:
        """Verify the DB is accessible and the schema current (idempotent)."""
        from catalog_etl.db.schema import ensure_schema

        ensure_schema(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def _enriched_cursor(self, db: Database):
        return db[self.config.docstore.enriched_collection].find({})

    def _count_raw(self, db: Database) -> Optional[int]:
        try:
            return db[self.config.docstore.raw_collection].count_documents({})
        except PyMongoError as exc:
            logger.warning("Could not count raw records: %s", exc)
            return None

    def _run_seed(self, summary: RunSummary, taxonomy: Taxonomy) -> bool:
        stage = SeedStage(config=self.config, db_path=self.db_path)
        try:
            stage.run(taxonomy=taxonomy)
        except Exception as exc:
            summary.status = "failed"
            summary.errors.append(f"SeedStage: {exc}")
            return False

        summary.categories_seeded = stage.result.categories_inserted
        summary.subcategories_seeded = stage.result.subcategories_inserted
        summary.allergens_seeded = stage.result.allergens_inserted
        return True

    def _run_transform(
        self,
        summary: RunSummary,
        records: Iterable[Mapping[str, Any]],
        taxonomy: Taxonomy,
    ) -> bool:
        stage = TransformStage(config=self.config, db_path=self.db_path)
        try:
            stage.run(records=records, taxonomy=taxonomy)
        except Exception as exc:
            summary.status = "failed"
            summary.errors.append(f"TransformStage: {exc}")
            return False

        stats = stage.stats
        summary.records_read = stats.records_read
        summary.enriched_records = stats.enriched_records
        summary.records_skipped = stats.records_skipped
        summary.records_failed = stats.records_failed
        summary.products_projected = stats.products_projected
        summary.links_written = stats.links_written
        return True

    def _run_resync(self, summary: RunSummary, db: Database) -> None:
        stage = ResyncStage(config=self.config, db_path=self.db_path)
        try:
            stage.run(db=db)
        except ResyncIncompleteError as exc:
            summary.status = "partial"
            summary.errors.append(str(exc))
            summary.errors.extend(
                f"resync[{s.name}]: {s.error}" for s in exc.result.steps if s.error
            )
        except Exception as exc:
            summary.status = "failed"
            summary.errors.append(f"ResyncStage: {exc}")
        summary.resync_steps = list(stage.result.steps)

    def _persist_run_start(self, run_slug: str) -> Optional[int]:
        """Write the orchestrator run_metadata record.

        Returns the run_id, or None if persistence fails (non-fatal).
        """
        try:
            from catalog_etl.db.repositories.run_repo import RunMetadataRepository
            from catalog_etl.models.meta import RunMetadata

            run = RunMetadata(
                run_slug=run_slug,
                pipeline_stage="orchestrator",
                config_snapshot=self.config.model_dump(),
                started_at=utcnow(),
            )
            with self._connection() as conn:
                return RunMetadataRepository(conn).insert_run(run)
        except Exception as exc:
            logger.warning("Could not persist orchestrator run start: %s", exc)
            return None

    def _persist_run_finish(self, run_slug: str, summary: RunSummary) -> None:
        """Update the orchestrator run_metadata record with the final status."""
        if summary.run_id is None:
            return
        try:
            from catalog_etl.db.repositories.run_repo import RunMetadataRepository

            with self._connection() as conn:
                repo = RunMetadataRepository(conn)
                run = repo.get_run_by_slug(run_slug)
                if run is None:
                    return
                run.status = summary.status
                run.rows_processed = summary.products_projected
                run.error_message = "; ".join(summary.errors) or None
                run.finished_at = summary.finished_at
                repo.update_run(run)
        except Exception as exc:
            logger.warning("Could not persist orchestrator run finish: %s", exc)
