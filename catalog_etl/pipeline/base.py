"""
Audit-logged pipeline stage contract.

``SeedStage``, ``TransformStage`` and ``ResyncStage`` subclass
``PipelineStage``. ``run()`` writes one ``run_metadata`` row per invocation
(started, then success or failed with the error), delegates to ``_execute()``
and re-raises any failure so the orchestrator can mark the run ``failed``.
Stage inputs (taxonomy, enriched records, MongoDB database) are passed as
keyword arguments to ``run()``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from uuid import uuid4

from catalog_etl.config import AppConfig
from catalog_etl.models.meta import RunMetadata
from catalog_etl.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Base for the seed, transform and resync stages.

    Attributes:
        stage_name: ``"seed"``, ``"transform"`` or ``"resync"``.
        config: The application configuration for this run.
        db_path: Path to the SQLite database (defaults to ``config.database.db_path``).
    """

    stage_name: str  # Override in subclass

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path

    def run(self, **kwargs) -> RunMetadata:
        """Execute this pipeline stage.

        Args:
            **kwargs: Stage-specific keyword arguments passed to ``_execute()``.

        Returns:
            ``RunMetadata`` with ``status='success'``, ``rows_processed`` and
            ``finished_at`` set.

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording ``status='failed'`` in the run record.
        """
        run = RunMetadata(
            run_slug=str(uuid4()),
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(),
            started_at=utcnow(),
        )
        logger.info("Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug)

        try:
            rows = self._execute(run=run, **kwargs)
            run.status = "success"
            run.rows_processed = rows
            run.finished_at = utcnow()
            logger.info(
                "Stage [%s] completed | rows=%d | run_slug=%s",
                self.stage_name, rows, run.run_slug,
            )

        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = utcnow()
            logger.error(
                "Stage [%s] FAILED: %s | run_slug=%s",
                self.stage_name, exc, run.run_slug,
            )
            self._persist_run(run)
            raise

        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Stage-specific implementation.

        Args:
            run: The in-progress ``RunMetadata`` record (mutable).
            **kwargs: Stage-specific parameters.

        Returns:
            Integer count of rows/records processed.
        """
        ...

    def _connection(self):
        from catalog_etl.db.connection import get_connection

        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def _persist_run(self, run: RunMetadata) -> None:
        """Insert or update the run row; failures are logged, not raised."""
        try:
            from catalog_etl.db.repositories.run_repo import RunMetadataRepository

            with self._connection() as conn:
                repo = RunMetadataRepository(conn)
                if run.run_id is None:
                    run.run_id = repo.insert_run(run)
                else:
                    repo.update_run(run)
        except Exception as exc:
            logger.error(
                "Failed to persist RunMetadata for run_slug=%s: %s",
                run.run_slug, exc,
            )
