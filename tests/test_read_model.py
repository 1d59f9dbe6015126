import asyncio

import pytest

from schemas.read_model_schemas import ModelResolved
from services.errors import NotFoundError, ResolutionError
from services.feature_flags import feature_flags
from services.obs.metrics import MetricsCollector
from services.read_model import ReadModelService, build_read_model_service


def _service(store, resolver=None):
    return ReadModelService(store, resolver=resolver, metrics=MetricsCollector())


def _cart(store, items, avatar_id="avatar-1", **extra):
    store.add("carts", avatar_id, {"items": items, **extra})


def test_end_to_end_cart_view_recovers_blueprint_from_key(store):
    _cart(store, {"k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 2}})
    store.add("lists", "L1", {"title": "Tee", "prices": [{"modelId": "M1", "price": 2000}]})

    view = asyncio.run(_service(store).resolve_cart_view("avatar-1"))

    assert view.to_dict()["items"]["k1"] == {
        "inventoryId": "PB1__TB1",
        "listingId": "L1",
        "modelId": "M1",
        "quantity": 2,
        "title": "Tee",
        "price": 2000,
        "productBlueprintId": "PB1",
    }


def test_one_batched_fetch_per_collection(store, make_resolver):
    _cart(store, {
        "k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 1},
        "k2": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M2", "quantity": 1},
        "k3": {"inventoryId": "PB2__TB1", "listingId": "L1", "modelId": "M1", "quantity": 3},
    })
    resolver = make_resolver()

    asyncio.run(_service(store, resolver).resolve_cart_view("avatar-1"))

    assert store.calls_for("lists") == [["L1"]]
    assert store.calls_for("inventories") == [["PB1__TB1", "PB2__TB1"]]
    assert store.calls_for("product_blueprints") == [["PB1", "PB2"]]
    assert sorted(resolver.called("model")) == ["M1", "M2"]


def test_listing_outage_leaves_title_and_price_unset(store):
    _cart(store, {"k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 2}})
    store.add("lists", "L1", {"title": "Tee", "prices": [{"modelId": "M1", "price": 2000}]})
    store.failing.add("lists")
    metrics = MetricsCollector()
    service = ReadModelService(store, metrics=metrics)

    item = asyncio.run(service.resolve_cart_view("avatar-1")).to_dict()["items"]["k1"]

    assert "title" not in item and "price" not in item
    assert item["productBlueprintId"] == "PB1"
    assert metrics.degraded["cart_view:lists"] == 1


def test_failed_collection_blanks_field_for_every_item(store):
    _cart(store, {
        "k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 1},
        "k2": {"inventoryId": "PB2__TB2", "listingId": "L2", "modelId": "M1", "quantity": 1},
    })
    store.add("lists", "L1", {"title": "Tee"})
    store.add("lists", "L2", {"title": "Cap"})
    store.add("product_blueprints", "PB1", {"productName": "Shirt"})
    store.failing.add("product_blueprints")

    items = asyncio.run(_service(store).resolve_cart_view("avatar-1")).to_dict()["items"]

    assert [items[k]["title"] for k in ("k1", "k2")] == ["Tee", "Cap"]
    assert all("productName" not in row for row in items.values())


def test_zero_quantity_item_absent_from_output(store):
    _cart(store, {
        "k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 0},
        "k2": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M2", "quantity": 1},
    })

    items = asyncio.run(_service(store).resolve_cart_view("avatar-1")).to_dict()["items"]

    assert list(items.keys()) == ["k2"]


def test_explicit_inventory_blueprint_wins_over_key(store):
    _cart(store, {"k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 1}})
    store.add("inventories", "PB1__TB1", {"productBlueprintId": "PB-EXPLICIT"})
    store.add("product_blueprints", "PB-EXPLICIT", {"productName": "Explicit Shirt"})
    store.add("product_blueprints", "PB1", {"productName": "Decoded Shirt"})

    item = asyncio.run(_service(store).resolve_cart_view("avatar-1")).to_dict()["items"]["k1"]

    assert item["productBlueprintId"] == "PB-EXPLICIT"
    assert item["productName"] == "Explicit Shirt"


def test_resolver_supplies_sizes_and_missing_product_names(store, make_resolver):
    _cart(store, {"k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 1}})
    resolver = make_resolver(
        product_names={"PB1": "Resolved Shirt"},
        variants={"M1": ModelResolved(model_number="MN-1", size="L", color="Navy")},
    )

    item = asyncio.run(_service(store, resolver).resolve_cart_view("avatar-1")).to_dict()["items"]["k1"]

    assert item["productName"] == "Resolved Shirt"
    assert item["size"] == "L"
    assert item["color"] == "Navy"


def test_legacy_cart_shapes(store):
    _cart(
        store,
        {
            "M9": 3,
            "k1": {"inventoryId": "PB1__TB1", "listId": "L1", "modelId": "M1", "qty": "2"},
        },
        createdAt="2025-01-05T10:00:00Z",
    )

    payload = asyncio.run(_service(store).resolve_cart_view("avatar-1")).to_dict()

    assert list(payload["items"].keys()) == ["k1"]
    assert payload["items"]["k1"]["listingId"] == "L1"
    assert payload["items"]["k1"]["quantity"] == 2
    assert payload["createdAt"] == "2025-01-05T10:00:00Z"


def test_empty_cart_skips_batched_fetches(store):
    _cart(store, {})

    view = asyncio.run(_service(store).resolve_cart_view("avatar-1"))

    assert view.to_dict() == {"avatarId": "avatar-1", "items": {}}
    assert store.multi_get_calls == []


def test_missing_cart_is_not_found(store):
    with pytest.raises(NotFoundError):
        asyncio.run(_service(store).resolve_cart_view("nobody"))
    with pytest.raises(NotFoundError):
        asyncio.run(_service(store).resolve_cart_view("   "))


def test_primary_store_failure_is_hard_error(store):
    store.failing.add("carts")

    with pytest.raises(ResolutionError):
        asyncio.run(_service(store).resolve_cart_view("avatar-1"))


def test_cancellation_emits_no_view(store):
    _cart(store, {"k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 1}})
    store.delays["lists"] = 5.0
    metrics = MetricsCollector()
    service = ReadModelService(store, metrics=metrics)

    async def run():
        task = asyncio.create_task(service.resolve_cart_view("avatar-1"))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(run())
    assert metrics.counters.get("cart_view.total", 0) == 0


# ---------- preview ----------

def _seed_preview(store):
    _cart(store, {
        "k1": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 2},
        "bad": {"inventoryId": "PB1__TB1", "listingId": "L1", "modelId": "M1", "quantity": 0},
    })
    store.add("lists", "L1", {"title": "Tee", "imageId": "img-1", "prices": [{"modelId": "M1", "price": 2000}]})
    store.add("product_blueprints", "PB1", {"productName": "Shirt", "brandId": "B1", "companyId": "C9"})
    store.add("token_blueprints", "TB1", {"name": "", "symbol": "TEE", "brandId": "B2", "iconUrl": "https://cdn/tee.png"})


def test_preview_resolves_token_brand_and_model(store, make_resolver):
    _seed_preview(store)
    resolver = make_resolver(
        brand_names={"B1": "Acme", "B2": "Token Brand"},
        company_names={"C9": "Acme Holdings", "C2": "Token Co"},
        brand_companies={"B2": "C2"},
        variants={"M1": ModelResolved(model_number="MN-1", size="L", color="Navy", rgb=1122867)},
    )

    preview = asyncio.run(_service(store, resolver).resolve_preview("avatar-1", "k1")).to_dict()

    assert preview == {
        "avatarId": "avatar-1",
        "itemKey": "k1",
        "inventoryId": "PB1__TB1",
        "listingId": "L1",
        "modelId": "M1",
        "quantity": 2,
        "title": "Tee",
        "imageId": "img-1",
        "price": 2000,
        "productBlueprintId": "PB1",
        "tokenBlueprintId": "TB1",
        "productName": "Shirt",
        "productBrandName": "Acme",
        "productCompanyName": "Acme Holdings",
        "tokenName": "TEE",
        "brandName": "Token Brand",
        "companyName": "Token Co",
        "iconUrl": "https://cdn/tee.png",
        "modelNumber": "MN-1",
        "size": "L",
        "color": "Navy",
        "rgb": 1122867,
    }
    assert "brandId" not in preview and "companyId" not in preview
    assert store.calls_for("product_blueprints") == [["PB1"]]


def test_preview_without_resolver_still_renders(store):
    _seed_preview(store)

    preview = asyncio.run(_service(store).resolve_preview("avatar-1", "k1")).to_dict()

    assert preview["productName"] == "Shirt"
    assert preview["tokenName"] == "TEE"
    assert "brandName" not in preview
    assert "size" not in preview


def test_preview_resolves_missing_product_name_once(store, make_resolver):
    _seed_preview(store)
    store.add("product_blueprints", "PB1", {"productName": "", "brandId": "B1"})
    resolver = make_resolver(product_names={"PB1": "Tee"})

    preview = asyncio.run(_service(store, resolver).resolve_preview("avatar-1", "k1")).to_dict()

    assert preview["productName"] == "Tee"
    assert resolver.called("product") == ["PB1"]


def test_preview_missing_or_invalid_item_is_not_found(store):
    _seed_preview(store)
    service = _service(store)

    with pytest.raises(NotFoundError):
        asyncio.run(service.resolve_preview("avatar-1", "nope"))
    with pytest.raises(NotFoundError):
        asyncio.run(service.resolve_preview("avatar-1", "bad"))


# ---------- catalog ----------

def _seed_catalog(store, status="listing"):
    store.add("lists", "L1", {
        "status": status,
        "title": "Tee",
        "description": "Soft cotton",
        "imageId": "img-1",
        "inventoryId": "PB1__TB1",
        "prices": [{"modelId": "M1", "price": 2000}, {"modelId": "M2", "price": 2200}],
    })
    store.add("inventories", "PB1__TB1", {
        "productBlueprintId": "PB1",
        "tokenBlueprintId": "TB1",
        "stock": {"M1": {"products": {"p1": True, "p2": True}}},
    })
    store.add("product_blueprints", "PB1", {"productName": "Shirt", "brandId": "B1"})
    store.add("token_blueprints", "TB1", {"name": "Tee Token", "symbol": "TEE", "minted": True})


def test_catalog_sections(store, make_resolver):
    _seed_catalog(store)
    resolver = make_resolver(
        brand_names={"B1": "Acme"},
        brand_companies={"B1": "C1"},
        company_names={"C1": "Acme Holdings"},
        variants={"M1": ModelResolved(model_number="MN-1", size="M", color="Black")},
    )

    catalog = asyncio.run(_service(store, resolver).resolve_catalog("L1")).to_dict()

    assert catalog["listing"] == {
        "listingId": "L1",
        "title": "Tee",
        "description": "Soft cotton",
        "imageId": "img-1",
        "prices": [{"modelId": "M1", "price": 2000}, {"modelId": "M2", "price": 2200}],
    }
    assert catalog["inventoryId"] == "PB1__TB1"
    assert catalog["product"] == {"productName": "Shirt", "brandName": "Acme", "companyName": "Acme Holdings"}
    assert catalog["token"] == {"name": "Tee Token", "symbol": "TEE", "minted": True}
    assert catalog["models"] == [
        {"modelId": "M1", "modelNumber": "MN-1", "size": "M", "color": "Black", "price": 2000, "stockCount": 2},
        {"modelId": "M2", "price": 2200, "stockCount": 0},
    ]
    assert not any(key.endswith("Error") for key in catalog)


def test_catalog_hidden_listing_is_not_found(store):
    _seed_catalog(store, status="draft")

    with pytest.raises(NotFoundError):
        asyncio.run(_service(store).resolve_catalog("L1"))

    feature_flags.set_flag("catalog.require_listing_status", False, "test")
    assert asyncio.run(_service(store).resolve_catalog("L1")).listing.title == "Tee"


def test_catalog_reports_section_errors_instead_of_failing(store):
    store.add("lists", "L2", {"status": "listing", "title": "Cap", "productBlueprintId": "PB404", "tokenBlueprintId": "TB1"})
    store.failing.add("token_blueprints")

    catalog = asyncio.run(_service(store).resolve_catalog("L2")).to_dict()

    assert catalog["inventoryId"] == "PB404__TB1"
    assert catalog["inventoryError"] == "inventory not found"
    assert catalog["productError"] == "product blueprint not found"
    assert catalog["tokenError"] == "token blueprint unavailable"
    assert catalog["models"] == []


def test_factory_wires_store_backed_resolver(store):
    service = build_read_model_service(store)

    assert service.store is store
    assert service.resolver is not None
    assert build_read_model_service(store, use_resolver=False).resolver is None
