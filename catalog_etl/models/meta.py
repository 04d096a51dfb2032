"""
Run and sync metadata.

``RunMetadata`` is the pipeline execution audit log, one row per stage run
in ``run_metadata``. It records a complete ``config_snapshot`` so a run can
be reproduced, and it is the only mutable model: ``status``,
``rows_processed``, ``error_message`` and ``finished_at`` are updated while
the stage executes.

``SyncMetadata`` describes the most recent resynchronization of the document
store. It lives in the singleton ``sync_metadata`` document.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_PIPELINE_STAGES = frozenset({"seed", "transform", "resync", "orchestrator"})
VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed", "skipped"})

SYNC_METADATA_ID = "latest_sync"


class RunMetadata(BaseModel):
    """Pipeline execution audit record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        pipeline_stage: Which stage produced this run record.
        status: Current execution status.
        config_snapshot: Full ``AppConfig.model_dump()`` at run start time.
        rows_processed: Count of records processed.
        error_message: Error description if ``status == "failed"``.
        started_at: UTC datetime when the run began.
        finished_at: UTC datetime when the run completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    pipeline_stage: str
    status: str = "started"
    config_snapshot: dict[str, Any]
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("pipeline_stage")
    @classmethod
    def validate_pipeline_stage(cls, v: str) -> str:
        if v not in VALID_PIPELINE_STAGES:
            raise ValueError(
                f"Unknown pipeline_stage '{v}'. Must be one of {sorted(VALID_PIPELINE_STAGES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v


class SyncMetadata(BaseModel):
    """Aggregate counts of the last document-store resynchronization."""

    model_config = ConfigDict(frozen=True)

    total_categories: int
    total_subcategories: int
    total_products: int
    total_allergens: int
    total_links: int
    last_synced_at: datetime
    collections: tuple[str, ...] = ()

    def to_document(self) -> dict[str, Any]:
        """Fields for the ``$set`` of the singleton metadata document."""
        doc = self.model_dump()
        doc["collections"] = list(self.collections)
        return doc
