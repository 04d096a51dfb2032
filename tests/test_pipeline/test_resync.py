"""
Tests for the resync protocol (catalog_etl/pipeline/resync.py).

What we test
------------
1. Every collection mirrors its table with relational ids as ``_id``.
2. Products embed the ``nutrients`` sub-document; links get sequential ids.
3. ``sync_metadata`` is a single upserted document with the totals.
4. Running twice produces identical content (idempotency).
5. Stale documents are removed, also when a table is empty.
6. A failed step does not stop independent steps; dependents are skipped;
   metadata is not written unless every collection step is ok.
7. ResyncStage raises ResyncIncompleteError with the partial result.
"""

from __future__ import annotations

import dataclasses
import sqlite3
from datetime import datetime, timezone
from unittest.mock import patch

import mongomock
import pytest
from pymongo.errors import PyMongoError

from catalog_etl.docstore import collections as coll
from catalog_etl.pipeline.resync import (
    DEFAULT_STEPS,
    STEP_FAILED,
    STEP_OK,
    STEP_SKIPPED,
    ResyncIncompleteError,
    ResyncStage,
    Resynchronizer,
)
from catalog_etl.pipeline.seed import SeedStage
from catalog_etl.pipeline.transform import TransformStage, project_records

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return FIXED_NOW


def _replace_read(step_name: str, read):
    return tuple(
        dataclasses.replace(s, read=read) if s.name == step_name else s
        for s in DEFAULT_STEPS
    )


def _broken_read(conn):
    raise sqlite3.OperationalError("table is locked")


def _snapshot(db) -> dict[str, list[dict]]:
    return {
        name: list(db[name].find({}, sort=[("_id", 1)]))
        for name in coll.MIRRORED_COLLECTIONS
        if name != coll.SYNC_METADATA
    }


@pytest.fixture
def populated_db(seeded_db, taxonomy, make_enriched):
    docs = [
        make_enriched("a", allergens=["Milk", "Gluten"], code="111"),
        make_enriched("b", product_name="Cheddar cheese", allergens=["en:milk"]),
        make_enriched("c", product_name="Chips", price=2.5),
    ]
    project_records(seeded_db, docs, taxonomy)
    seeded_db.commit()
    return seeded_db


class TestFullSync:
    def test_all_steps_ok(self, populated_db, mongo_db):
        result = Resynchronizer(populated_db, mongo_db, clock=_clock).run()

        assert result.ok
        assert [s.name for s in result.steps] == [
            "allergens", "categories", "subcategories", "products",
            "product_allergens", "sync_metadata",
        ]
        assert result.counts() == {
            "allergens": 4, "categories": 3, "subcategories": 5,
            "products": 3, "product_allergens": 3,
        }

    def test_ids_preserved(self, populated_db, mongo_db):
        Resynchronizer(populated_db, mongo_db, clock=_clock).run()

        sub_rows = populated_db.execute("SELECT id, category_id, name FROM subcategories;").fetchall()
        for row in sub_rows:
            doc = mongo_db[coll.SUBCATEGORIES].find_one({"_id": row["id"]})
            assert doc == {"_id": row["id"], "category_id": row["category_id"], "name": row["name"]}

        category_ids = {d["_id"] for d in mongo_db[coll.CATEGORIES].find({})}
        assert {d["category_id"] for d in mongo_db[coll.SUBCATEGORIES].find({})} <= category_ids

    def test_product_document_shape(self, populated_db, mongo_db):
        Resynchronizer(populated_db, mongo_db, clock=_clock).run()

        doc = mongo_db[coll.PRODUCTS].find_one({"raw_id": "a"})
        assert set(doc) == {
            "_id", "raw_id", "barcode", "subcategory_id", "product_name", "brand",
            "nutriscore", "nutrients", "price", "healthy_score", "image_url",
        }
        assert doc["barcode"] == "111"
        assert doc["nutrients"] == {
            "energy_kcal_100g": 42.0,
            "sugars_100g": 10.6,
            "salt_100g": 0.01,
            "protein_100g": 0.0,
        }
        subcategory_ids = {d["_id"] for d in mongo_db[coll.SUBCATEGORIES].find({})}
        assert doc["subcategory_id"] in subcategory_ids

    def test_links_sequential_ids_in_order(self, populated_db, mongo_db):
        Resynchronizer(populated_db, mongo_db, clock=_clock).run()

        links = list(mongo_db[coll.PRODUCT_ALLERGENS].find({}, sort=[("_id", 1)]))
        assert [d["_id"] for d in links] == [1, 2, 3]
        pairs = [(d["product_id"], d["allergen_id"]) for d in links]
        assert pairs == sorted(pairs)

    def test_sync_metadata(self, populated_db, mongo_db):
        result = Resynchronizer(populated_db, mongo_db, clock=_clock).run()

        docs = list(mongo_db[coll.SYNC_METADATA].find({}))
        assert len(docs) == 1
        meta = docs[0]
        assert meta["_id"] == "latest_sync"
        assert meta["total_products"] == 3
        assert meta["total_links"] == 3
        assert meta["total_categories"] == 3
        assert meta["total_subcategories"] == 5
        assert meta["total_allergens"] == 4
        assert meta["collections"] == list(coll.MIRRORED_COLLECTIONS)
        assert result.metadata.total_products == 3


class TestIdempotency:
    def test_two_runs_identical(self, populated_db, mongo_db):
        Resynchronizer(populated_db, mongo_db, clock=_clock).run()
        first = _snapshot(mongo_db)
        first_meta = mongo_db[coll.SYNC_METADATA].find_one({})

        Resynchronizer(populated_db, mongo_db).run()
        second_meta = mongo_db[coll.SYNC_METADATA].find_one({})

        assert _snapshot(mongo_db) == first
        first_meta.pop("last_synced_at")
        second_meta.pop("last_synced_at")
        assert first_meta == second_meta
        assert mongo_db[coll.SYNC_METADATA].count_documents({}) == 1

    def test_stale_documents_removed(self, populated_db, mongo_db):
        mongo_db[coll.PRODUCTS].insert_one({"_id": 999, "raw_id": "ghost"})
        Resynchronizer(populated_db, mongo_db, clock=_clock).run()
        assert mongo_db[coll.PRODUCTS].find_one({"raw_id": "ghost"}) is None

    def test_empty_tables_clear_collections(self, seeded_db, mongo_db):
        mongo_db[coll.PRODUCTS].insert_one({"_id": 1, "raw_id": "old"})
        mongo_db[coll.PRODUCT_ALLERGENS].insert_one({"_id": 1})

        result = Resynchronizer(seeded_db, mongo_db, clock=_clock).run()

        assert result.ok
        assert mongo_db[coll.PRODUCTS].count_documents({}) == 0
        assert mongo_db[coll.PRODUCT_ALLERGENS].count_documents({}) == 0
        assert mongo_db[coll.SYNC_METADATA].find_one({})["total_products"] == 0


class TestPartialFailure:
    def test_products_failure_skips_links_and_metadata(self, populated_db, mongo_db):
        steps = _replace_read(coll.PRODUCTS, _broken_read)
        result = Resynchronizer(populated_db, mongo_db, steps=steps, clock=_clock).run()

        status = {s.name: s.status for s in result.steps}
        assert status == {
            "allergens": STEP_OK,
            "categories": STEP_OK,
            "subcategories": STEP_OK,
            "products": STEP_FAILED,
            "product_allergens": STEP_SKIPPED,
            "sync_metadata": STEP_SKIPPED,
        }
        assert not result.ok
        assert result.failed_steps == ["products"]
        assert "locked" in result.step("products").error
        assert mongo_db[coll.SYNC_METADATA].count_documents({}) == 0
        assert mongo_db[coll.CATEGORIES].count_documents({}) == 3

    def test_failed_step_leaves_collection_untouched(self, populated_db, mongo_db):
        mongo_db[coll.PRODUCTS].insert_one({"_id": 42, "raw_id": "stale"})
        steps = _replace_read(coll.PRODUCTS, _broken_read)
        Resynchronizer(populated_db, mongo_db, steps=steps).run()
        assert mongo_db[coll.PRODUCTS].find_one({"_id": 42}) is not None

    def test_categories_failure_cascades(self, populated_db, mongo_db):
        steps = _replace_read(coll.CATEGORIES, _broken_read)
        result = Resynchronizer(populated_db, mongo_db, steps=steps).run()

        status = {s.name: s.status for s in result.steps}
        assert status["allergens"] == STEP_OK
        assert status["categories"] == STEP_FAILED
        assert status["subcategories"] == STEP_SKIPPED
        assert status["products"] == STEP_SKIPPED
        assert status["product_allergens"] == STEP_SKIPPED

    def test_mongo_error_is_captured(self, populated_db, mongo_db):
        original = mongomock.collection.Collection.insert_many

        def failing_insert(self, documents, *args, **kwargs):
            if self.name == coll.ALLERGENS:
                raise PyMongoError("write concern")
            return original(self, documents, *args, **kwargs)

        with patch.object(mongomock.collection.Collection, "insert_many", failing_insert):
            result = Resynchronizer(populated_db, mongo_db).run()

        status = {s.name: s.status for s in result.steps}
        assert status["allergens"] == STEP_FAILED
        assert status["products"] == STEP_OK
        assert status["product_allergens"] == STEP_SKIPPED
        assert status["sync_metadata"] == STEP_SKIPPED

    def test_rerun_after_failure_converges(self, populated_db, mongo_db):
        Resynchronizer(populated_db, mongo_db, steps=_replace_read(coll.PRODUCTS, _broken_read)).run()
        result = Resynchronizer(populated_db, mongo_db).run()
        assert result.ok
        assert mongo_db[coll.PRODUCTS].count_documents({}) == 3


class TestResyncStage:
    def _prepare(self, app_config, taxonomy, make_enriched):
        SeedStage(config=app_config).run(taxonomy=taxonomy)
        TransformStage(config=app_config).run(records=[make_enriched("a")], taxonomy=taxonomy)

    def test_success(self, app_config, taxonomy, make_enriched, mongo_db):
        self._prepare(app_config, taxonomy, make_enriched)
        stage = ResyncStage(config=app_config)
        run = stage.run(db=mongo_db)

        assert run.status == "success"
        # 4 allergens + 3 categories + 5 subcategories + 1 product + 0 links + 1 metadata
        assert run.rows_processed == 14
        assert stage.result.ok

    def test_incomplete_raises_with_result(self, app_config, taxonomy, make_enriched, mongo_db):
        self._prepare(app_config, taxonomy, make_enriched)
        stage = ResyncStage(config=app_config)

        with patch.object(
            mongomock.collection.Collection, "delete_many", side_effect=PyMongoError("down")
        ):
            with pytest.raises(ResyncIncompleteError) as excinfo:
                stage.run(db=mongo_db)

        assert excinfo.value.result is stage.result
        assert set(stage.result.failed_steps) == {"allergens", "categories"}
