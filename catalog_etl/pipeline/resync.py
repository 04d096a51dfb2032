"""
Resynchronization of the MongoDB document store from SQLite.

Protocol
--------
Six ordered steps, each a snapshot replace of one collection:

  1. allergens          {_id, name}
  2. categories         {_id, name, icon}
  3. subcategories      {_id, category_id, name}
  4. products           {_id, raw_id, ..., nutrients: {...}, ...}
  5. product_allergens  {_id: 1..n, product_id, allergen_id}
  6. sync_metadata      singleton {_id: "latest_sync", totals..., last_synced_at}

Steps 1–5 read the full table, ``delete_many({})`` the collection and
``insert_many`` the documents. Relational surrogate ids become ``_id`` so
cross-references (``category_id``, ``subcategory_id``, ``product_id``,
``allergen_id``) stay valid without remapping, and stay stable across runs.
Link documents get a sequential ``_id`` in ``(product_id, allergen_id)``
order.

Failure handling
----------------
There is no transaction across collections. A failing step is recorded as
``failed`` and the protocol moves on; a step whose dependency did not
complete is ``skipped``; ``sync_metadata`` is only written when all five
collection steps are ``ok``. The relational store stays authoritative, so
re-running the whole protocol is always safe.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog_etl.db.repositories.product_repo import (
    ProductAllergenRepository,
    ProductRepository,
)
from catalog_etl.db.repositories.taxonomy_repo import (
    AllergenRepository,
    CategoryRepository,
    SubcategoryRepository,
)
from catalog_etl.db.schema import apply_schema
from catalog_etl.docstore import collections as coll
from catalog_etl.models.meta import SYNC_METADATA_ID, RunMetadata, SyncMetadata
from catalog_etl.pipeline.base import PipelineStage
from catalog_etl.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

STEP_OK = "ok"
STEP_FAILED = "failed"
STEP_SKIPPED = "skipped"

Document = dict[str, Any]
Reader = Callable[[sqlite3.Connection], list[Document]]


# ── Document builders ─────────────────────────────────────────────────────────

def allergen_documents(conn: sqlite3.Connection) -> list[Document]:
    return [{"_id": a.id, "name": a.name} for a in AllergenRepository(conn).get_all()]


def category_documents(conn: sqlite3.Connection) -> list[Document]:
    return [
        {"_id": c.id, "name": c.name, "icon": c.icon}
        for c in CategoryRepository(conn).get_all()
    ]


def subcategory_documents(conn: sqlite3.Connection) -> list[Document]:
    return [
        {"_id": s.id, "category_id": s.category_id, "name": s.name}
        for s in SubcategoryRepository(conn).get_all()
    ]


def product_documents(conn: sqlite3.Connection) -> list[Document]:
    return [
        {
            "_id": p.id,
            "raw_id": p.raw_id,
            "barcode": p.barcode,
            "subcategory_id": p.subcategory_id,
            "product_name": p.product_name,
            "brand": p.brand,
            "nutriscore": p.nutriscore,
            "nutrients": {
                "energy_kcal_100g": p.energy_kcal_100g,
                "sugars_100g": p.sugars_100g,
                "salt_100g": p.salt_100g,
                "protein_100g": p.protein_100g,
            },
            "price": p.price,
            "healthy_score": p.healthy_score,
            "image_url": p.image_url,
        }
        for p in ProductRepository(conn).iter_all()
    ]


def link_documents(conn: sqlite3.Connection) -> list[Document]:
    return [
        {"_id": seq, "product_id": link.product_id, "allergen_id": link.allergen_id}
        for seq, link in enumerate(ProductAllergenRepository(conn).iter_all(), start=1)
    ]


# ── Protocol types ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResyncStep:
    """One snapshot-replace step.

    Attributes:
        name:       Step identifier (equal to the collection name).
        collection: Target MongoDB collection.
        read:       Builds the full document list from SQLite.
        depends_on: Steps that must be ``ok`` before this one may run.
    """

    name: str
    collection: str
    read: Reader
    depends_on: tuple[str, ...] = ()


@dataclass
class StepResult:
    """Outcome of one step: ``ok``, ``failed`` or ``skipped``."""

    name: str
    status: str
    documents: int = 0
    error: Optional[str] = None


@dataclass
class ResyncResult:
    """Outcome of one full resynchronization."""

    steps: list[StepResult] = field(default_factory=list)
    metadata: Optional[SyncMetadata] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return bool(self.steps) and all(s.status == STEP_OK for s in self.steps)

    @property
    def failed_steps(self) -> list[str]:
        return [s.name for s in self.steps if s.status == STEP_FAILED]

    @property
    def documents_written(self) -> int:
        return sum(s.documents for s in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    def counts(self) -> dict[str, int]:
        """Documents written per collection step."""
        return {s.name: s.documents for s in self.steps if s.name != coll.SYNC_METADATA}


DEFAULT_STEPS: tuple[ResyncStep, ...] = (
    ResyncStep(coll.ALLERGENS, coll.ALLERGENS, allergen_documents),
    ResyncStep(coll.CATEGORIES, coll.CATEGORIES, category_documents),
    ResyncStep(coll.SUBCATEGORIES, coll.SUBCATEGORIES, subcategory_documents,
               depends_on=(coll.CATEGORIES,)),
    ResyncStep(coll.PRODUCTS, coll.PRODUCTS, product_documents,
               depends_on=(coll.SUBCATEGORIES,)),
    ResyncStep(coll.PRODUCT_ALLERGENS, coll.PRODUCT_ALLERGENS, link_documents,
               depends_on=(coll.PRODUCTS, coll.ALLERGENS)),
)


# ── Protocol runner ───────────────────────────────────────────────────────────

class Resynchronizer:
    """Runs the resync protocol from one SQLite connection into one database.

    Args:
        conn:  Open SQLite connection (read only by this class).
        db:    Target MongoDB database.
        steps: Collection steps in execution order.
        clock: Source of ``last_synced_at``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        db: Database,
        steps: tuple[ResyncStep, ...] = DEFAULT_STEPS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.conn = conn
        self.db = db
        self.steps = steps
        self.clock = clock

    def run(self) -> ResyncResult:
        result = ResyncResult(started_at=self.clock())
        completed: set[str] = set()

        for index, step in enumerate(self.steps, start=1):
            missing = [d for d in step.depends_on if d not in completed]
            if missing:
                logger.warning(
                    "[%d/%d] %s skipped: dependency %s did not complete.",
                    index, len(self.steps) + 1, step.name, ", ".join(missing),
                )
                result.steps.append(StepResult(step.name, STEP_SKIPPED))
                continue

            outcome = self._run_step(step)
            result.steps.append(outcome)
            if outcome.status == STEP_OK:
                completed.add(step.name)
                logger.info(
                    "[%d/%d] %s: %d documents synced.",
                    index, len(self.steps) + 1, step.name, outcome.documents,
                )

        result.steps.append(self._write_metadata(result, completed))
        result.finished_at = self.clock()
        return result

    def _run_step(self, step: ResyncStep) -> StepResult:
        try:
            documents = step.read(self.conn)
            collection = self.db[step.collection]
            collection.delete_many({})
            if documents:
                collection.insert_many(documents, ordered=True)
        except (sqlite3.Error, PyMongoError) as exc:
            logger.error("Resync step %s FAILED: %s", step.name, exc)
            return StepResult(step.name, STEP_FAILED, error=str(exc))
        return StepResult(step.name, STEP_OK, documents=len(documents))

    def _write_metadata(self, result: ResyncResult, completed: set[str]) -> StepResult:
        expected = {s.name for s in self.steps}
        if not expected <= completed:
            logger.warning("sync_metadata not written: %s incomplete.",
                           ", ".join(sorted(expected - completed)))
            return StepResult(coll.SYNC_METADATA, STEP_SKIPPED)

        counts = result.counts()
        metadata = SyncMetadata(
            total_categories=counts.get(coll.CATEGORIES, 0),
            total_subcategories=counts.get(coll.SUBCATEGORIES, 0),
            total_products=counts.get(coll.PRODUCTS, 0),
            total_allergens=counts.get(coll.ALLERGENS, 0),
            total_links=counts.get(coll.PRODUCT_ALLERGENS, 0),
            last_synced_at=self.clock(),
            collections=coll.MIRRORED_COLLECTIONS,
        )
        try:
            self.db[coll.SYNC_METADATA].update_one(
                {"_id": SYNC_METADATA_ID},
                {"$set": metadata.to_document()},
                upsert=True,
            )
        except PyMongoError as exc:
            logger.error("Resync step %s FAILED: %s", coll.SYNC_METADATA, exc)
            return StepResult(coll.SYNC_METADATA, STEP_FAILED, error=str(exc))

        result.metadata = metadata
        logger.info("sync_metadata updated: %s", counts)
        return StepResult(coll.SYNC_METADATA, STEP_OK, documents=1)


class ResyncIncompleteError(RuntimeError):
    """At least one resync step did not complete; ``result`` has the details."""

    def __init__(self, result: ResyncResult) -> None:
        self.result = result
        not_ok = [s.name for s in result.steps if s.status != STEP_OK]
        super().__init__(f"Resync incomplete: {', '.join(not_ok)} not synced.")


class ResyncStage(PipelineStage):
    """Audit-logged wrapper around ``Resynchronizer``.

    The stage fails (``ResyncIncompleteError``) when any step is not ``ok``;
    the partial ``ResyncResult`` stays available on ``self.result``.
    """

    stage_name = "resync"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.result = ResyncResult()

    def _execute(self, run: RunMetadata, db: Database, **kwargs) -> int:
        with self._connection() as conn:
            apply_schema(conn)
            self.result = Resynchronizer(conn, db).run()

        if not self.result.ok:
            raise ResyncIncompleteError(self.result)
        return self.result.documents_written
