"""Merge engine: source priority, merged_sources, kod handling, persistence."""
import json

import pytest

from app.core.exceptions import MergeError
from app.services.catalog_keys import PRODUCT_CATALOG_KEY, product_key, source_key
from app.services.product_merge_service import ProductMergeService, merge_sources

from conftest import FailingKeyValueStore, stored


@pytest.mark.asyncio
class TestMergeScenarios:
    """End-to-end import + merge sequences."""

    async def test_price_list_then_descriptions(self, catalog, store):
        await catalog.imports.store_products_from_source(
            [{"kod": "A1", "cena_bez_dph": 100, "cena_s_dph": 121}], "xml_cenik",
        )
        await catalog.imports.store_products_from_source(
            [{"kod": "A1", "kategorie": "Kabely"}], "xml_popisky",
        )

        product = stored(store, product_key("A1"))
        assert product["cena_bez_dph"] == 100
        assert product["kategorie"] == "Kabely"
        assert product["merged_sources"] == ["xml_cenik", "xml_popisky"]

    async def test_excel_overrides_price_keeps_category(self, catalog, store):
        await catalog.imports.store_products_from_source(
            [{"kod": "A1", "cena_bez_dph": 100, "cena_s_dph": 121}], "xml_cenik",
        )
        await catalog.imports.store_products_from_source(
            [{"kod": "A1", "kategorie": "Kabely"}], "xml_popisky",
        )
        await catalog.imports.store_products_from_source(
            [{"kod": "A1", "cena_bez_dph": 90}], "excel",
        )

        product = stored(store, product_key("A1"))
        assert product["cena_bez_dph"] == 90
        assert product["cena_s_dph"] == 121
        assert product["kategorie"] == "Kabely"
        assert product["merged_sources"] == ["xml_cenik", "xml_popisky", "excel"]

        result = await catalog.queries.get_products(kategorie="Kabely", page=1, limit=1)
        assert [p["kod"] for p in result["products"]] == ["A1"]
        assert result["pagination"]["totalProducts"] == 1

    async def test_priority_across_all_three_sources(self, catalog, store):
        await catalog.imports.store_products_from_source([{
            "kod": "P1", "nazev": "Cenik name", "ean": "111",
            "cena_bez_dph": 100, "cena_s_dph": 121, "dostupnost": 5,
            "kategorie": "Cenik cat",
        }], "xml_cenik")
        await catalog.imports.store_products_from_source([{
            "kod": "P1", "nazev": "Popisky name", "kategorie": "Popisky cat",
            "vyrobce": "Popisky vendor", "popis": "Long text", "cena_bez_dph": 1,
        }], "xml_popisky")
        await catalog.imports.store_products_from_source([{
            "kod": "P1", "nazev": "Excel name", "cena_bez_dph": 90,
            "dostupnost": 0, "vyrobce": "Excel vendor",
        }], "excel")

        product = stored(store, product_key("P1"))
        assert product["nazev"] == "Excel name"
        assert product["ean"] == "111"
        assert product["cena_bez_dph"] == 90
        assert product["cena_s_dph"] == 121
        # numeric zero is a real stock level
        assert product["dostupnost"] == 0
        # descriptive: first non-empty in pass order, excel overrides when set
        assert product["kategorie"] == "Cenik cat"
        assert product["vyrobce"] == "Excel vendor"
        assert product["popis"] == "Long text"

    async def test_detail_of_unknown_product(self, catalog):
        from app.core.exceptions import ProductNotFoundError

        with pytest.raises(ProductNotFoundError):
            await catalog.queries.get_product_detail("ZZZ")


class TestMergedSources:

    def test_popisky_only_product(self):
        merged = merge_sources([], [{"kod": "X"}], [])
        assert merged["X"]["merged_sources"] == ["xml_popisky"]

    def test_excel_only_product(self):
        merged = merge_sources([], [], [{"kod": "X", "nazev": "E"}])
        assert merged["X"]["merged_sources"] == ["excel"]

    def test_duplicate_kod_in_one_source_counts_once(self):
        merged = merge_sources(
            [{"kod": "X", "nazev": "first"}, {"kod": "X", "nazev": "second"}],
            [{"kod": "X"}, {"kod": "X"}],
            [],
        )
        assert merged["X"]["nazev"] == "second"
        assert merged["X"]["merged_sources"] == ["xml_cenik", "xml_popisky"]

    def test_insertion_order_follows_passes(self):
        merged = merge_sources(
            [{"kod": "C1"}, {"kod": "C2"}],
            [{"kod": "P1"}, {"kod": "C1"}],
            [{"kod": "E1"}, {"kod": "P1"}],
        )
        assert list(merged) == ["C1", "C2", "P1", "E1"]

    def test_popisky_never_touches_pricing(self):
        merged = merge_sources(
            [{"kod": "X", "cena_bez_dph": 10, "cena_s_dph": 12, "dostupnost": 3, "nazev": "N"}],
            [{"kod": "X", "cena_bez_dph": 99, "cena_s_dph": 99, "dostupnost": 99, "nazev": "Other"}],
            [],
        )
        assert merged["X"]["cena_bez_dph"] == 10
        assert merged["X"]["cena_s_dph"] == 12
        assert merged["X"]["dostupnost"] == 3
        assert merged["X"]["nazev"] == "N"

    def test_popisky_fills_empty_descriptive_field(self):
        merged = merge_sources(
            [{"kod": "X", "kategorie": ""}],
            [{"kod": "X", "kategorie": "Kabely", "obrazek": "http://img"}],
            [],
        )
        assert merged["X"]["kategorie"] == "Kabely"
        assert merged["X"]["obrazek"] == "http://img"

    def test_excel_non_numeric_stock_does_not_override(self):
        merged = merge_sources(
            [{"kod": "X", "dostupnost": 7}],
            [],
            [{"kod": "X"}],
        )
        assert merged["X"]["dostupnost"] == 7


@pytest.mark.asyncio
class TestMissingKod:

    async def test_records_without_kod_are_excluded_everywhere(self, catalog, store):
        count = await catalog.imports.store_products_from_source(
            [{"kod": "OK1", "kategorie": "Real", "vyrobce": "Vendor"},
             {"nazev": "No code", "kategorie": "Ghost", "vyrobce": "Ghost vendor"},
             {"kod": "   ", "kategorie": "Ghost"}],
            "xml_popisky",
        )

        assert count == 3  # ingest echoes the input length
        catalog_data = stored(store, PRODUCT_CATALOG_KEY)
        assert [p["kod"] for p in catalog_data["products"]] == ["OK1"]
        assert await catalog.queries.get_product_categories() == ["Real"]
        assert await catalog.queries.get_product_manufacturers() == ["Vendor"]
        assert "product_index_kategorie:Ghost" not in store.data


@pytest.mark.asyncio
class TestRecompute:

    async def test_absent_sources_give_empty_catalog(self, catalog, store):
        count = await catalog.merge.recompute()

        assert count == 0
        catalog_data = stored(store, PRODUCT_CATALOG_KEY)
        assert catalog_data["total_products"] == 0
        assert catalog_data["products"] == []
        assert catalog_data["last_updated"]

    async def test_corrupt_source_aborts_without_writes(self, catalog, store):
        store.data[source_key("xml_cenik")] = '[{"kod": "A1"}]'
        store.data[source_key("xml_popisky")] = "{not json"

        with pytest.raises(MergeError) as exc_info:
            await catalog.merge.recompute()

        assert exc_info.value.source == "xml_popisky"
        assert PRODUCT_CATALOG_KEY not in store.data
        assert product_key("A1") not in store.data

    async def test_source_that_is_not_a_list(self, catalog, store):
        store.data[source_key("excel")] = '{"kod": "A1"}'

        with pytest.raises(MergeError):
            await catalog.merge.recompute()

    async def test_projection_fields(self, catalog, store):
        await catalog.imports.store_products_from_source([{
            "kod": "A1", "nazev": "Cable", "cena_bez_dph": 10, "cena_s_dph": 12.1,
            "dostupnost": 4, "kategorie": "Kabely", "vyrobce": "Acme", "popis": "long",
        }], "xml_cenik")

        entry = stored(store, PRODUCT_CATALOG_KEY)["products"][0]
        assert set(entry) == {
            "kod", "nazev", "cena_bez_dph", "cena_s_dph",
            "dostupnost", "kategorie", "vyrobce", "merged_sources",
        }
        # full record keeps everything
        assert stored(store, product_key("A1"))["popis"] == "long"

    async def test_every_product_written_across_batches(self, store, settings):
        from app.services.product_index_service import ProductIndexService

        records = [{"kod": f"K{i}"} for i in range(7)]
        store.data[source_key("xml_cenik")] = json.dumps(records)
        merge = ProductMergeService(store, ProductIndexService(store), batch_size=3)

        assert await merge.recompute() == 7
        for i in range(7):
            assert stored(store, product_key(f"K{i}"))["kod"] == f"K{i}"

    async def test_write_failure_propagates(self, settings):
        from app.core.exceptions import StorageError
        from app.services.catalog_context import build_catalog_context

        failing = FailingKeyValueStore(fail_put=lambda key: key == product_key("B"))
        ctx = build_catalog_context(failing, settings=settings, policy="manual")
        await ctx.sources.ingest("xml_cenik", [{"kod": "A"}, {"kod": "B"}])

        with pytest.raises(StorageError):
            await ctx.merge.recompute()

    async def test_product_dropped_from_every_source_is_removed(self, catalog, store):
        from app.core.exceptions import ProductNotFoundError

        await catalog.imports.store_products_from_source([{"kod": "A"}, {"kod": "B"}], "xml_cenik")
        assert product_key("B") in store.data

        await catalog.imports.store_products_from_source([{"kod": "A"}], "xml_cenik")

        assert product_key("A") in store.data
        assert product_key("B") not in store.data
        with pytest.raises(ProductNotFoundError):
            await catalog.queries.get_product_detail("B")

    async def test_product_kept_while_another_source_lists_it(self, catalog, store):
        await catalog.imports.store_products_from_source([{"kod": "A"}, {"kod": "B"}], "xml_cenik")
        await catalog.imports.store_products_from_source([{"kod": "B", "popis": "text"}], "xml_popisky")

        await catalog.imports.store_products_from_source([{"kod": "A"}], "xml_cenik")

        assert stored(store, product_key("B"))["merged_sources"] == ["xml_popisky"]

    async def test_unreadable_previous_catalog_prunes_nothing(self, catalog, store):
        store.data[product_key("OLD")] = '{"kod": "OLD"}'
        store.data[PRODUCT_CATALOG_KEY] = "{broken"
        store.data[source_key("xml_cenik")] = '[{"kod": "A"}]'

        assert await catalog.merge.recompute() == 1
        assert product_key("OLD") in store.data
        assert stored(store, PRODUCT_CATALOG_KEY)["total_products"] == 1

    async def test_failed_removal_is_retried(self, settings):
        from app.core.exceptions import StorageError
        from app.services.catalog_context import build_catalog_context

        broken = {"on": False}
        failing = FailingKeyValueStore(fail_delete=lambda key: broken["on"] and key == product_key("B"))
        ctx = build_catalog_context(failing, settings=settings)
        await ctx.imports.store_products_from_source([{"kod": "A"}, {"kod": "B"}], "xml_cenik")

        broken["on"] = True
        with pytest.raises(StorageError):
            await ctx.imports.store_products_from_source([{"kod": "A"}], "xml_cenik")
        # the old projection still lists B
        assert stored(failing, PRODUCT_CATALOG_KEY)["total_products"] == 2

        broken["on"] = False
        await ctx.merge.recompute()
        assert product_key("B") not in failing.data
        assert stored(failing, PRODUCT_CATALOG_KEY)["total_products"] == 1
