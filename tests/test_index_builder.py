import asyncio

from schemas.read_model_schemas import InventoryParts, ModelResolved, ModelSimple
from services.batch_fetcher import FetchResult
from services.feature_flags import feature_flags
from services.index_builder import (
    IndexBuilder,
    decode_listing,
    inventory_stock_counts,
)


def _result(collection, docs, failed=False):
    ids = list(docs.keys())
    return FetchResult(collection=collection, ids=ids, docs=[docs[i] for i in ids], failed=failed)


def test_listing_indices_from_structured_records():
    result = _result("lists", {
        "L1": {"title": "Tee", "imageId": "img-1", "prices": [{"modelId": "M1", "price": 2000}, {"modelId": "M2", "price": 2500}]},
        "L2": None,
    })

    prices, meta = IndexBuilder().build_listing_indices(result)

    assert prices == {"L1": {"M1": 2000, "M2": 2500}}
    assert meta["L1"].title == "Tee"
    assert meta["L1"].image_id == "img-1"
    assert "L2" not in meta


def test_listing_falls_back_to_historical_field_names_per_record():
    result = _result("lists", {
        "L1": {"Title": "Legacy Tee", "ListImage": "img-9", "Prices": [{"ModelID": "M1", "Price": "1500"}]},
        "L2": {"title": "Modern", "prices": [{"modelId": "M2", "price": 900}]},
        "L3": {"title": 12345, "prices": "broken"},
    })

    prices, meta = IndexBuilder().build_listing_indices(result)

    assert meta["L1"].title == "Legacy Tee"
    assert meta["L1"].image_id == "img-9"
    assert prices["L1"] == {"M1": 1500}
    assert prices["L2"] == {"M2": 900}
    assert "L3" not in prices


def test_listing_price_table_as_mapping():
    record = decode_listing({"title": "Tee", "prices": {"M1": 100, "M2": "x"}})

    assert [(p.modelId, p.price) for p in record.prices] == [("M1", 100)]


def test_failed_listing_fetch_yields_no_indices():
    result = _result("lists", {"L1": None}, failed=True)

    assert IndexBuilder().build_listing_indices(result) == (None, None)


def test_inventory_index_fills_missing_parts_from_key():
    result = _result("inventories", {
        "PB1__TB1": {"productBlueprintId": "PB-EXPLICIT"},
        "PB2__TB2": {},
        "opaque-id": {"tokenBlueprintId": "TB3"},
    })

    index = IndexBuilder().build_inventory_index(result)

    assert index["PB1__TB1"] == InventoryParts(product_blueprint_id="PB-EXPLICIT", token_blueprint_id="TB1")
    assert index["PB2__TB2"] == InventoryParts(product_blueprint_id="PB2", token_blueprint_id="TB2")
    assert index["opaque-id"] == InventoryParts(product_blueprint_id="", token_blueprint_id="TB3")


def test_model_index_omits_entries_without_size_or_color(make_resolver):
    resolver = make_resolver(variants={
        "M1": ModelResolved(model_number="MN-1", size="M", color="Black"),
        "M2": ModelResolved(model_number="MN-2"),
    })

    index = asyncio.run(IndexBuilder().build_model_index(resolver, ["M1", "M2", "M3"]))

    assert index == {"M1": ModelSimple(size="M", color="Black")}


def test_model_index_skips_resolver_failures(make_resolver):
    resolver = make_resolver(failing=True)

    assert asyncio.run(IndexBuilder().build_model_index(resolver, ["M1"])) is None


def test_model_index_disabled_by_kill_switch(make_resolver):
    resolver = make_resolver(variants={"M1": ModelResolved(size="M")})
    feature_flags.activate_kill_switch("emergency.disable_name_resolution", "test")

    assert asyncio.run(IndexBuilder().build_model_index(resolver, ["M1"])) is None
    assert resolver.calls == []


def test_product_name_direct_record_then_resolver(make_resolver):
    result = _result("product_blueprints", {
        "PB1": {"productName": "Shirt"},
        "PB2": {"productName": "  "},
        "PB3": None,
    })
    resolver = make_resolver(product_names={"PB2": "Resolved Two", "PB1": "never used"})

    index = asyncio.run(IndexBuilder().build_product_name_index(result, resolver))

    assert index == {"PB1": "Shirt", "PB2": "Resolved Two"}
    assert sorted(resolver.called("product")) == ["PB2", "PB3"]


def test_product_name_resolver_covers_failed_fetch(make_resolver):
    result = _result("product_blueprints", {"PB1": None}, failed=True)
    resolver = make_resolver(product_names={"PB1": "From Resolver"})

    index = asyncio.run(IndexBuilder().build_product_name_index(result, resolver, ["PB1"]))

    assert index == {"PB1": "From Resolver"}


def test_product_name_legacy_key():
    result = _result("product_blueprints", {"PB1": {"Name": "Old Shirt"}})

    assert asyncio.run(IndexBuilder().build_product_name_index(result)) == {"PB1": "Old Shirt"}


def test_inventory_stock_counts_shapes():
    doc = {"stock": {"M1": {"products": {"p1": True, "p2": False, "p3": True}}, "M2": 4, "M3": {"products": ["a"]}}}

    assert inventory_stock_counts(doc) == {"M1": 2, "M2": 4, "M3": 1}
    assert inventory_stock_counts(None) == {}
