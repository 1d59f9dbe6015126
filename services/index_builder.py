"""
Index Builder
Turns batched fetch results into request-scoped lookup maps.

Every builder returns None when it has nothing to offer (failed fetch, no
documents, no usable fields). Consumers treat None exactly like a map with no
matching key.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple
import asyncio
import logging

from pydantic import ValidationError

from schemas.read_model_schemas import (
    InventoryParts,
    ListingMeta,
    ListingRecord,
    ModelSimple,
    PriceRow,
    TokenBlueprintRecord,
)
from services.batch_fetcher import FetchResult
from services.composite_key import decode_inventory_id
from services.feature_flags import feature_flags
from services.field_aliases import (
    INVENTORY_FIELDS,
    LISTING_FIELDS,
    PRICE_ROW_FIELDS,
    PRODUCT_BLUEPRINT_FIELDS,
    TOKEN_BLUEPRINT_FIELDS,
    as_int,
    canonicalize,
    pick_text,
)
from settings import mask_id, sanitize_id

logger = logging.getLogger(__name__)


def resolver_concurrency() -> int:
    """Upper bound on concurrent name-resolver calls per request."""
    limit = feature_flags.get_flag("read_model.resolver_concurrency", 8) or 8
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 8
    return max(1, limit)


PriceIndex = Dict[str, Dict[str, int]]
ListingMetaIndex = Dict[str, ListingMeta]
InventoryIndex = Dict[str, InventoryParts]
ModelIndex = Dict[str, ModelSimple]
ProductNameIndex = Dict[str, str]

_LISTING_TEXT_FIELDS = (
    "title",
    "imageId",
    "description",
    "status",
    "inventoryId",
    "productBlueprintId",
    "tokenBlueprintId",
)


# ---------- record decoding ----------

def decode_listing(doc: Optional[Dict[str, Any]]) -> Optional[ListingRecord]:
    """Structured decode first; historical key names fill whatever it left blank.

    A record that fails structured validation is read entirely through the
    alias table. Only that record is affected.
    """
    if not isinstance(doc, dict):
        return None

    try:
        record = ListingRecord.model_validate(doc)
    except ValidationError as e:
        logger.debug("Listing structured decode failed, using field aliases: %s", e.error_count())
        record = None

    fields = canonicalize(doc, LISTING_FIELDS)
    if record is None:
        values = {name: pick_text(fields, name) for name in _LISTING_TEXT_FIELDS}
        return ListingRecord(prices=_loose_prices(fields.get("prices")), **values)

    updates: Dict[str, Any] = {}
    for name in _LISTING_TEXT_FIELDS:
        if not getattr(record, name).strip():
            value = pick_text(fields, name)
            if value:
                updates[name] = value
    if not record.prices:
        prices = _loose_prices(fields.get("prices"))
        if prices:
            updates["prices"] = prices
    return record.model_copy(update=updates) if updates else record


def decode_token_blueprint(doc: Optional[Dict[str, Any]]) -> Optional[TokenBlueprintRecord]:
    if not isinstance(doc, dict):
        return None
    try:
        record = TokenBlueprintRecord.model_validate(doc)
        if record.name or record.symbol or record.brandId or record.companyId or record.iconUrl:
            return record
    except ValidationError:
        pass
    fields = canonicalize(doc, TOKEN_BLUEPRINT_FIELDS)
    minted = fields.get("minted")
    return TokenBlueprintRecord(
        name=pick_text(fields, "name"),
        symbol=pick_text(fields, "symbol"),
        brandId=pick_text(fields, "brandId"),
        companyId=pick_text(fields, "companyId"),
        iconUrl=pick_text(fields, "iconUrl"),
        minted=minted if isinstance(minted, bool) else None,
    )


def decode_inventory_parts(inventory_id: str, doc: Optional[Dict[str, Any]]) -> InventoryParts:
    """Explicit ids from the inventory document, gaps filled by decoding its key."""
    fields = canonicalize(doc, INVENTORY_FIELDS)
    pb = sanitize_id(pick_text(fields, "productBlueprintId"))
    tb = sanitize_id(pick_text(fields, "tokenBlueprintId"))
    if not (pb and tb):
        decoded_pb, decoded_tb, ok = decode_inventory_id(inventory_id)
        if ok:
            pb = pb or decoded_pb
            tb = tb or decoded_tb
    return InventoryParts(product_blueprint_id=pb, token_blueprint_id=tb)


def inventory_stock_counts(doc: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """modelId -> units in stock.

    Stock entries are either a count or ``{"products": {productId: bool}}``.
    """
    stock = canonicalize(doc, INVENTORY_FIELDS).get("stock")
    if not isinstance(stock, dict):
        return {}
    counts: Dict[str, int] = {}
    for model_id, entry in stock.items():
        model_id = sanitize_id(model_id)
        if not model_id:
            continue
        if isinstance(entry, dict):
            products = entry.get("products") or entry.get("Products")
            if isinstance(products, dict):
                counts[model_id] = sum(1 for v in products.values() if v)
            elif isinstance(products, list):
                counts[model_id] = len(products)
            continue
        count, ok = as_int(entry)
        if ok:
            counts[model_id] = count
    return counts


def product_blueprint_fields(doc: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """productName, brandId and companyId of a product blueprint document."""
    fields = canonicalize(doc, PRODUCT_BLUEPRINT_FIELDS)
    return {
        "productName": pick_text(fields, "productName"),
        "brandId": pick_text(fields, "brandId"),
        "companyId": pick_text(fields, "companyId"),
    }


def _loose_prices(value: Any) -> List[PriceRow]:
    rows: List[PriceRow] = []
    if isinstance(value, dict):
        # {modelId: price}
        for model_id, price in value.items():
            model_id = sanitize_id(model_id)
            amount, ok = as_int(price)
            if model_id and ok:
                rows.append(PriceRow(modelId=model_id, price=amount))
        return rows
    if not isinstance(value, list):
        return rows
    for raw in value:
        fields = canonicalize(raw, PRICE_ROW_FIELDS)
        model_id = sanitize_id(fields.get("modelId"))
        amount, ok = as_int(fields.get("price"))
        if model_id and ok:
            rows.append(PriceRow(modelId=model_id, price=amount))
    return rows


# ---------- index construction ----------

class IndexBuilder:
    """Builds only the indices a use case asks for."""

    def build_listing_indices(
        self, result: Optional[FetchResult]
    ) -> Tuple[Optional[PriceIndex], Optional[ListingMetaIndex]]:
        if result is None or result.failed:
            return None, None

        prices: PriceIndex = {}
        meta: ListingMetaIndex = {}
        for listing_id, doc in result.items():
            record = decode_listing(doc)
            if record is None:
                continue
            if record.title or record.imageId:
                meta[listing_id] = ListingMeta(title=record.title.strip(), image_id=record.imageId.strip())
            by_model = {}
            for row in record.prices:
                model_id = sanitize_id(row.modelId)
                if model_id and model_id not in by_model:
                    by_model[model_id] = row.price
            if by_model:
                prices[listing_id] = by_model

        return prices or None, meta or None

    def build_inventory_index(self, result: Optional[FetchResult]) -> Optional[InventoryIndex]:
        if result is None or result.failed:
            return None
        index: InventoryIndex = {}
        for inventory_id, doc in result.items():
            parts = decode_inventory_parts(inventory_id, doc)
            if parts.product_blueprint_id or parts.token_blueprint_id:
                index[inventory_id] = parts
        return index or None

    async def build_model_index(self, resolver, model_ids: Iterable[str]) -> Optional[ModelIndex]:
        """Size/color per model id, populated only through the name resolver."""
        model_ids = [m for m in (sanitize_id(i) for i in model_ids or []) if m]
        if resolver is None or not model_ids:
            return None
        if not feature_flags.get_flag("read_model.model_index_enabled", True):
            return None

        semaphore = asyncio.Semaphore(resolver_concurrency())

        async def resolve(model_id: str):
            async with semaphore:
                return await resolver.resolve_model_variant(model_id)

        resolved = await asyncio.gather(*[resolve(m) for m in model_ids], return_exceptions=True)

        index: ModelIndex = {}
        for model_id, variant in zip(model_ids, resolved):
            if isinstance(variant, asyncio.CancelledError):
                raise variant
            if isinstance(variant, Exception):
                logger.warning("Model variant lookup failed | model=%s error=%s", mask_id(model_id), variant)
                continue
            if variant is None:
                continue
            size = (variant.size or "").strip()
            color = (variant.color or "").strip()
            if size or color:
                index[model_id] = ModelSimple(size=size, color=color)
        return index or None

    async def build_product_name_index(
        self,
        result: Optional[FetchResult],
        resolver=None,
        product_blueprint_ids: Optional[Iterable[str]] = None,
    ) -> Optional[ProductNameIndex]:
        """Direct record first; resolver fills ids whose record is absent, blank or unfetched."""
        wanted: List[str] = []
        if product_blueprint_ids is not None:
            wanted = [p for p in (sanitize_id(i) for i in product_blueprint_ids) if p]
        elif result is not None:
            wanted = list(result.ids)

        index: ProductNameIndex = {}
        if result is not None and not result.failed:
            for pb_id, doc in result.items():
                name = product_blueprint_fields(doc)["productName"]
                if name:
                    index[pb_id] = name

        missing = [pb for pb in wanted if pb not in index]
        if missing and resolver is not None and feature_flags.get_flag("read_model.product_name_fallback", True):
            semaphore = asyncio.Semaphore(resolver_concurrency())

            async def resolve(pb_id: str) -> str:
                async with semaphore:
                    return await resolver.resolve_product_name(pb_id)

            names = await asyncio.gather(*[resolve(pb) for pb in missing], return_exceptions=True)
            for pb_id, name in zip(missing, names):
                if isinstance(name, asyncio.CancelledError):
                    raise name
                if isinstance(name, Exception):
                    logger.warning("Product name lookup failed | blueprint=%s error=%s", mask_id(pb_id), name)
                    continue
                name = (name or "").strip()
                if name:
                    index[pb_id] = name

        return index or None
