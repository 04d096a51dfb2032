"""Tests for the taxonomy, product, link and run-metadata repositories."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from catalog_etl.db.repositories.product_repo import (
    ProductAllergenRepository,
    ProductRepository,
)
from catalog_etl.db.repositories.run_repo import RunMetadataRepository
from catalog_etl.db.repositories.taxonomy_repo import (
    AllergenRepository,
    CategoryRepository,
    SubcategoryRepository,
)
from catalog_etl.models.meta import RunMetadata
from catalog_etl.models.product import ProductRow


def _row(subcategory_id: int, raw_id: str = "r1", **overrides) -> ProductRow:
    values = dict(
        raw_id=raw_id,
        barcode="0001",
        subcategory_id=subcategory_id,
        product_name="Cola",
        brand="Fizz",
        nutriscore="E",
        energy_kcal_100g=42.0,
        sugars_100g=10.6,
        salt_100g=0.01,
        protein_100g=0.0,
        price=1.2,
        healthy_score=40,
        image_url=None,
    )
    values.update(overrides)
    return ProductRow(**values)


class TestTaxonomyRepositories:
    def test_category_insert_if_absent(self, in_memory_db):
        repo = CategoryRepository(in_memory_db)
        assert repo.insert_if_absent("Drinks", "D") is True
        assert repo.insert_if_absent("Drinks", "changed") is False
        stored = repo.get_by_name("Drinks")
        assert stored.icon == "D"
        assert repo.count() == 1

    def test_subcategory_id_map(self, seeded_db):
        ids = SubcategoryRepository(seeded_db).id_map()
        assert ("Drinks", "Sodas") in ids
        assert ("Dairy", "Cheese") in ids
        assert len(ids) == 5
        assert SubcategoryRepository(seeded_db).get_id("Drinks", "Sodas") == ids[("Drinks", "Sodas")]

    def test_get_id_missing(self, seeded_db):
        assert SubcategoryRepository(seeded_db).get_id("Drinks", "Nope") is None

    def test_allergen_lookup_is_lower_cased(self, seeded_db):
        ids = AllergenRepository(seeded_db).id_by_lower_name()
        assert set(ids) == {"milk", "gluten", "peanuts", "sesame seeds"}

    def test_allergen_insert_ignores_case_duplicates(self, seeded_db):
        assert AllergenRepository(seeded_db).insert_if_absent("MILK") is False


class TestProductRepository:
    def test_insert_then_read(self, seeded_db):
        sub_id = SubcategoryRepository(seeded_db).get_id("Drinks", "Sodas")
        repo = ProductRepository(seeded_db)
        product_id = repo.upsert(_row(sub_id))

        stored = repo.get_by_raw_id("r1")
        assert stored.id == product_id
        assert stored.product_name == "Cola"
        assert repo.get_by_id(product_id).raw_id == "r1"

    def test_upsert_same_raw_id_updates_in_place(self, seeded_db):
        ids = SubcategoryRepository(seeded_db).id_map()
        repo = ProductRepository(seeded_db)
        first = repo.upsert(_row(ids[("Drinks", "Sodas")]))
        second = repo.upsert(
            _row(ids[("Snacks", "Bars")], product_name="Cola Bar", price=None, healthy_score=70)
        )

        assert first == second
        assert repo.count() == 1
        stored = repo.get_by_raw_id("r1")
        assert stored.product_name == "Cola Bar"
        assert stored.subcategory_id == ids[("Snacks", "Bars")]
        # full-row replace: NULL overwrites the old price
        assert stored.price is None
        assert stored.healthy_score == 70

    def test_get_by_subcategory_and_iter_all(self, seeded_db):
        ids = SubcategoryRepository(seeded_db).id_map()
        repo = ProductRepository(seeded_db)
        repo.upsert(_row(ids[("Drinks", "Sodas")], raw_id="a"))
        repo.upsert(_row(ids[("Drinks", "Sodas")], raw_id="b"))
        repo.upsert(_row(ids[("Dairy", "Cheese")], raw_id="c"))

        assert len(repo.get_by_subcategory(ids[("Drinks", "Sodas")])) == 2
        assert [p.raw_id for p in repo.iter_all()] == ["a", "b", "c"]

    def test_score_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            _row(1, healthy_score=101)


class TestProductAllergenRepository:
    def test_replace_for_product(self, seeded_db):
        sub_id = SubcategoryRepository(seeded_db).get_id("Dairy", "Cheese")
        product_id = ProductRepository(seeded_db).upsert(_row(sub_id))
        allergens = AllergenRepository(seeded_db).id_by_lower_name()
        links = ProductAllergenRepository(seeded_db)

        assert links.replace_for_product(product_id, [allergens["milk"], allergens["gluten"]]) == 2
        assert links.replace_for_product(product_id, [allergens["peanuts"], allergens["peanuts"]]) == 1
        assert links.get_for_product(product_id) == [allergens["peanuts"]]

    def test_iter_all_ordered(self, seeded_db):
        sub_id = SubcategoryRepository(seeded_db).get_id("Dairy", "Cheese")
        products = ProductRepository(seeded_db)
        p1 = products.upsert(_row(sub_id, raw_id="a"))
        p2 = products.upsert(_row(sub_id, raw_id="b"))
        links = ProductAllergenRepository(seeded_db)
        links.replace_for_product(p2, [3, 1])
        links.replace_for_product(p1, [2])

        assert [(l.product_id, l.allergen_id) for l in links.iter_all()] == [
            (p1, 2), (p2, 1), (p2, 3),
        ]


class TestRunMetadataRepository:
    def test_insert_update_roundtrip(self, in_memory_db):
        repo = RunMetadataRepository(in_memory_db)
        run = RunMetadata(
            run_slug="slug-1",
            pipeline_stage="seed",
            config_snapshot={"debug": False},
            started_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        run.run_id = repo.insert_run(run)
        run.status = "success"
        run.rows_processed = 12
        run.finished_at = datetime(2026, 1, 1, 0, 1, tzinfo=timezone.utc)
        repo.update_run(run)

        stored = repo.get_run_by_slug("slug-1")
        assert stored.status == "success"
        assert stored.rows_processed == 12
        assert stored.config_snapshot == {"debug": False}
        assert repo.get_recent_runs(pipeline_stage="seed")[0].run_slug == "slug-1"
        assert repo.get_recent_runs(pipeline_stage="resync") == []

    def test_update_without_id_raises(self, in_memory_db):
        run = RunMetadata(
            run_slug="s", pipeline_stage="seed", config_snapshot={},
            started_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        with pytest.raises(ValueError):
            RunMetadataRepository(in_memory_db).update_run(run)
