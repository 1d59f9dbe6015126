"""
Read-Model Resolution Service
Assembles buyer-facing views (cart, single-item preview, catalog listing)
from documents spread across independent collections.

Pipeline per request:
    primary record -> collect references -> batched fetch (concurrent per
    collection) -> build indices -> assemble DTO (single pass)

Only the primary record is mandatory. Any secondary collection that fails or
times out is logged and leaves its fields unset for every item that needed it.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
import asyncio
import logging
import time

from schemas.read_model_schemas import (
    CartViewDTO,
    CatalogDTO,
    CatalogProductDTO,
    CatalogTokenDTO,
    LineItem,
    ModelResolved,
    PreviewDTO,
    normalize_cart_record,
)
from services.batch_fetcher import BatchFetcher, FetchResult
from services.composite_key import decode_inventory_id, encode_inventory_id
from services.dto_assembler import (
    PreviewDetails,
    ReadModelIndices,
    assemble_cart_view,
    assemble_catalog_listing,
    assemble_catalog_models,
    assemble_preview,
)
from services.errors import NotFoundError, ResolutionError
from services.feature_flags import feature_flags
from services.index_builder import (
    IndexBuilder,
    decode_inventory_parts,
    decode_listing,
    decode_token_blueprint,
    inventory_stock_counts,
    product_blueprint_fields,
    resolver_concurrency,
)
from services.name_resolver import NameResolver, NameResolverProtocol, resolve_company_for_brand
from services.obs.metrics import MetricsCollector, metrics_collector
from services.reference_collector import collect_product_blueprint_ids, collect_references
from settings import (
    CART_COLLECTION,
    INVENTORY_COLLECTION,
    LISTING_COLLECTION,
    LISTING_STATUS_VISIBLE,
    PRODUCT_BLUEPRINT_COLLECTION,
    TOKEN_BLUEPRINT_COLLECTION,
    mask_id,
    sanitize_id,
)
from utils import with_retry

logger = logging.getLogger(__name__)


@dataclass
class ResolutionStats:
    """Per-request bookkeeping for logs and metrics."""
    items: int = 0
    dropped: int = 0
    degraded: List[str] = field(default_factory=list)
    stages: Dict[str, float] = field(default_factory=dict)

    def note(self, result: Optional[FetchResult]) -> None:
        if result is not None and result.failed and result.collection not in self.degraded:
            self.degraded.append(result.collection)


class ReadModelService:
    """Query functions for the buyer-facing read models.

    ``resolver`` is optional: without it the model index, product-name
    fallback and brand/company names are simply left unresolved.
    """

    def __init__(
        self,
        store,
        resolver: Optional[NameResolverProtocol] = None,
        fetcher: Optional[BatchFetcher] = None,
        index_builder: Optional[IndexBuilder] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.resolver = resolver
        self.fetcher = fetcher or BatchFetcher(store)
        self.index_builder = index_builder or IndexBuilder()
        self.metrics = metrics or metrics_collector

    # ---------- cart view ----------

    async def resolve_cart_view(self, avatar_id: str) -> CartViewDTO:
        avatar_id = sanitize_id(avatar_id)
        async with self._observe("cart_view", avatar_id) as stats:
            raw = await self._load_primary(CART_COLLECTION, avatar_id, "cart")
            cart = normalize_cart_record(avatar_id, raw)
            stats.items = len(cart.items)

            indices, _ = await self._build_item_indices(cart.items, stats, include_models=True)

            view, dropped = assemble_cart_view(cart, indices)
            stats.dropped = dropped
            if dropped:
                logger.info("Cart view dropped invalid items | avatar=%s dropped=%d", mask_id(avatar_id), dropped)
            return view

    # ---------- single-item preview ----------

    async def resolve_preview(self, avatar_id: str, item_key: str) -> PreviewDTO:
        avatar_id = sanitize_id(avatar_id)
        item_key = sanitize_id(item_key)
        async with self._observe("preview", avatar_id) as stats:
            raw = await self._load_primary(CART_COLLECTION, avatar_id, "cart")
            cart = normalize_cart_record(avatar_id, raw)

            item = cart.items.get(item_key) if item_key else None
            if item is None:
                raise NotFoundError("cart item", item_key)
            if not item.is_valid():
                stats.dropped = 1
                raise NotFoundError("cart item", item_key)
            stats.items = 1

            items = {item_key: item}
            (indices, products), variant = await asyncio.gather(
                self._build_item_indices(items, stats, include_models=False),
                self._resolve_variant(item.model_id),
            )

            pb_id, tb_id = self._blueprint_ids(item.inventory_id, indices)
            product_details, token_details = await asyncio.gather(
                self._product_brand_details(pb_id, stats, prefetched=products, resolve_name=False),
                self._token_details(tb_id, stats),
            )

            details = PreviewDetails(
                token_blueprint_id=tb_id,
                token_name=token_details.get("name", ""),
                brand_name=token_details.get("brandName", ""),
                company_name=token_details.get("companyName", ""),
                icon_url=token_details.get("iconUrl", ""),
                product_brand_name=product_details.get("brandName", ""),
                product_company_name=product_details.get("companyName", ""),
                variant=variant,
            )
            preview = assemble_preview(avatar_id, item_key, item, indices, details)
            if preview is None:
                raise NotFoundError("cart item", item_key)
            return preview

    # ---------- catalog ----------

    async def resolve_catalog(self, listing_id: str) -> CatalogDTO:
        listing_id = sanitize_id(listing_id)
        async with self._observe("catalog", listing_id) as stats:
            raw = await self._load_primary(LISTING_COLLECTION, listing_id, "listing")
            record = decode_listing(raw)
            if record is None:
                raise NotFoundError("listing", listing_id)
            if feature_flags.get_flag("catalog.require_listing_status", True):
                if record.status.strip().lower() != LISTING_STATUS_VISIBLE:
                    logger.info(
                        "Catalog listing not visible | listing=%s status=%r",
                        mask_id(listing_id),
                        record.status,
                    )
                    raise NotFoundError("listing", listing_id)

            listing = assemble_catalog_listing(listing_id, record)
            stats.items = len(listing.prices)
            catalog = CatalogDTO(listing=listing)

            # Inventory: listing ids first, inventory document overrides
            pb_id = sanitize_id(record.productBlueprintId)
            tb_id = sanitize_id(record.tokenBlueprintId)
            inventory_id = sanitize_id(record.inventoryId) or encode_inventory_id(pb_id, tb_id)
            stock_counts = None
            if not inventory_id:
                catalog.inventory_error = "inventory id is missing"
            else:
                catalog.inventory_id = inventory_id
                result = await self.fetcher.fetch(INVENTORY_COLLECTION, [inventory_id])
                stats.note(result)
                doc = result.docs[0] if result.docs else None
                if result.failed:
                    catalog.inventory_error = "inventory unavailable"
                elif doc is None:
                    catalog.inventory_error = "inventory not found"
                else:
                    stock_counts = inventory_stock_counts(doc)
                parts = decode_inventory_parts(inventory_id, doc)
                pb_id = parts.product_blueprint_id or pb_id
                tb_id = parts.token_blueprint_id or tb_id

            catalog.product_blueprint_id = pb_id or None
            catalog.token_blueprint_id = tb_id or None

            model_ids = [p.model_id for p in listing.prices]
            product, token, variants = await asyncio.gather(
                self._catalog_product(pb_id, stats),
                self._catalog_token(tb_id, stats),
                self._resolve_variants(model_ids),
            )
            catalog.product, catalog.product_error = product
            catalog.token, catalog.token_error = token

            if model_ids and self.resolver is None:
                catalog.models_error = "model details unavailable"
            catalog.models = assemble_catalog_models(listing.prices, variants, stock_counts)
            return catalog

    # ---------- primary record ----------

    async def _load_primary(self, collection: str, doc_id: str, kind: str) -> Dict[str, Any]:
        """The only mandatory read: missing is NotFound, store failure is fatal."""
        if not doc_id:
            raise NotFoundError(kind, doc_id)
        try:
            doc = await with_retry(
                self.store.get_by_id,
                collection,
                doc_id,
                max_retries=int(feature_flags.get_flag("read_model.primary_max_retries", 2) or 0),
                base_delay=float(feature_flags.get_flag("read_model.primary_retry_base_delay", 0.2) or 0.2),
            )
        except Exception as e:
            logger.error("Primary %s read failed | id=%s error=%s", kind, mask_id(doc_id), e)
            raise ResolutionError(f"failed to load {kind}") from e
        if doc is None:
            raise NotFoundError(kind, doc_id)
        return doc

    # ---------- secondary indices ----------

    async def _build_item_indices(
        self,
        items: Mapping[str, LineItem],
        stats: ResolutionStats,
        include_models: bool,
    ) -> Tuple[ReadModelIndices, Optional[FetchResult]]:
        indices = ReadModelIndices()
        refs = collect_references(items, include_models=include_models and self.resolver is not None)
        if refs is None or refs.is_empty():
            return indices, None

        stage_start = time.perf_counter()
        listings, inventories, model_index = await asyncio.gather(
            self.fetcher.fetch(LISTING_COLLECTION, refs.listing_ids),
            self.fetcher.fetch(INVENTORY_COLLECTION, refs.inventory_ids),
            self.index_builder.build_model_index(self.resolver, refs.model_ids),
        )
        stats.note(listings)
        stats.note(inventories)
        stats.stages["fetch"] = (time.perf_counter() - stage_start) * 1000

        indices.prices, indices.listing_meta = self.index_builder.build_listing_indices(listings)
        indices.inventory = self.index_builder.build_inventory_index(inventories)
        indices.models = model_index

        stage_start = time.perf_counter()
        pb_ids = collect_product_blueprint_ids(items.values(), indices.inventory)
        products = await self.fetcher.fetch(PRODUCT_BLUEPRINT_COLLECTION, pb_ids)
        stats.note(products)
        indices.product_names = await self.index_builder.build_product_name_index(
            products, self.resolver, product_blueprint_ids=pb_ids
        )
        stats.stages["blueprints"] = (time.perf_counter() - stage_start) * 1000
        return indices, products

    @staticmethod
    def _blueprint_ids(inventory_id: str, indices: ReadModelIndices) -> Tuple[str, str]:
        parts = (indices.inventory or {}).get(inventory_id)
        pb_id = parts.product_blueprint_id if parts else ""
        tb_id = parts.token_blueprint_id if parts else ""
        if not (pb_id and tb_id):
            decoded_pb, decoded_tb, ok = decode_inventory_id(inventory_id)
            if ok:
                pb_id = pb_id or decoded_pb
                tb_id = tb_id or decoded_tb
        return pb_id, tb_id

    async def _fetch_one(self, collection: str, doc_id: str, stats: ResolutionStats) -> FetchResult:
        result = await self.fetcher.fetch(collection, [doc_id] if doc_id else [])
        stats.note(result)
        return result

    # ---------- blueprint sections ----------

    async def _product_brand_details(
        self,
        pb_id: str,
        stats: ResolutionStats,
        prefetched: Optional[FetchResult] = None,
        resolve_name: bool = True,
    ) -> Dict[str, Any]:
        """productName, brandName and companyName of a product blueprint ("" when unknown).

        Preview already holds the product name in its index, so it passes
        resolve_name=False.
        """
        if not pb_id:
            return {}
        if prefetched is not None and pb_id in prefetched.ids:
            result = prefetched
            doc = prefetched.docs[prefetched.ids.index(pb_id)]
        else:
            result = await self._fetch_one(PRODUCT_BLUEPRINT_COLLECTION, pb_id, stats)
            doc = result.docs[0] if result.docs else None
        fields = product_blueprint_fields(doc)
        name = fields["productName"]
        if not name and resolve_name:
            name = await self._resolve_name("resolve_product_name", pb_id)
        brand_name, company_name = await self._brand_and_company(fields["brandId"], fields["companyId"])
        return {
            "found": doc is not None,
            "failed": result.failed,
            "productName": name,
            "brandName": brand_name,
            "companyName": company_name,
        }

    async def _token_details(self, tb_id: str, stats: ResolutionStats) -> Dict[str, Any]:
        if not tb_id:
            return {}
        result = await self._fetch_one(TOKEN_BLUEPRINT_COLLECTION, tb_id, stats)
        record = decode_token_blueprint(result.docs[0] if result.docs else None)
        name = ""
        details: Dict[str, Any] = {"found": record is not None, "failed": result.failed}
        if record is not None:
            name = record.name.strip() or record.symbol.strip()
            brand_name, company_name = await self._brand_and_company(record.brandId, record.companyId)
            details.update({
                "symbol": record.symbol.strip(),
                "iconUrl": record.iconUrl.strip(),
                "minted": record.minted,
                "brandName": brand_name,
                "companyName": company_name,
            })
        if not name:
            name = await self._resolve_name("resolve_token_name", tb_id)
        details["name"] = name
        return details

    async def _catalog_product(self, pb_id: str, stats: ResolutionStats):
        if not pb_id:
            return None, "productBlueprintId is missing"
        details = await self._product_brand_details(pb_id, stats)
        if not (details.get("found") or details.get("productName")):
            return None, "product blueprint unavailable" if details.get("failed") else "product blueprint not found"
        product = CatalogProductDTO(
            product_name=details.get("productName") or None,
            brand_name=details.get("brandName") or None,
            company_name=details.get("companyName") or None,
        )
        return product, None

    async def _catalog_token(self, tb_id: str, stats: ResolutionStats):
        if not tb_id:
            return None, "tokenBlueprintId is missing"
        details = await self._token_details(tb_id, stats)
        if not (details.get("found") or details.get("name")):
            return None, "token blueprint unavailable" if details.get("failed") else "token blueprint not found"
        token = CatalogTokenDTO(
            name=details.get("name") or None,
            symbol=details.get("symbol") or None,
            icon_url=details.get("iconUrl") or None,
            brand_name=details.get("brandName") or None,
            company_name=details.get("companyName") or None,
            minted=details.get("minted"),
        )
        return token, None

    # ---------- name resolver (best effort) ----------

    async def _brand_and_company(self, brand_id: str, company_id: str) -> Tuple[str, str]:
        if self.resolver is None or not feature_flags.get_flag("read_model.display_names", True):
            return "", ""
        brand_id = sanitize_id(brand_id)
        try:
            brand_name, company_name = await asyncio.gather(
                self._resolve_name("resolve_brand_name", brand_id),
                resolve_company_for_brand(self.resolver, company_id, brand_id),
            )
        except Exception as e:
            logger.warning("Brand/company lookup failed | brand=%s error=%s", mask_id(brand_id), e)
            return "", ""
        return brand_name, company_name

    async def _resolve_name(self, method: str, doc_id: str) -> str:
        if self.resolver is None or not doc_id:
            return ""
        if not feature_flags.get_flag("read_model.display_names", True):
            return ""
        try:
            value = await getattr(self.resolver, method)(doc_id)
        except Exception as e:
            logger.warning("Name resolver %s failed | id=%s error=%s", method, mask_id(doc_id), e)
            return ""
        return sanitize_id(value)

    async def _resolve_variant(self, model_id: str) -> ModelResolved:
        if self.resolver is None or not model_id:
            return ModelResolved()
        if not feature_flags.get_flag("read_model.model_index_enabled", True):
            return ModelResolved()
        try:
            return await self.resolver.resolve_model_variant(model_id) or ModelResolved()
        except Exception as e:
            logger.warning("Model variant lookup failed | model=%s error=%s", mask_id(model_id), e)
            return ModelResolved()

    async def _resolve_variants(self, model_ids: List[str]) -> Dict[str, ModelResolved]:
        if not model_ids or self.resolver is None:
            return {}
        limit = resolver_concurrency()
        semaphore = asyncio.Semaphore(limit)

        async def resolve(model_id: str) -> ModelResolved:
            async with semaphore:
                return await self._resolve_variant(model_id)

        variants = await asyncio.gather(*[resolve(m) for m in model_ids])
        return dict(zip(model_ids, variants))

    # ---------- observability ----------

    @asynccontextmanager
    async def _observe(self, use_case: str, subject: str):
        stats = ResolutionStats()
        start = time.perf_counter()
        try:
            yield stats
        except Exception as e:
            self._record(use_case, start, stats, success=False, error_type=type(e).__name__)
            raise
        duration_ms = self._record(use_case, start, stats, success=True)
        if feature_flags.get_flag("read_model.log_timings", True):
            stages = " ".join(f"{name}={ms:.1f}ms" for name, ms in stats.stages.items())
            logger.info(
                "Read model timings | use_case=%s subject=%s total=%.1fms %s items=%d dropped=%d degraded=%s",
                use_case,
                mask_id(subject),
                duration_ms,
                stages,
                stats.items,
                stats.dropped,
                ",".join(stats.degraded) or "-",
            )

    def _record(
        self,
        use_case: str,
        start: float,
        stats: ResolutionStats,
        success: bool,
        error_type: Optional[str] = None,
    ) -> float:
        duration_ms = (time.perf_counter() - start) * 1000
        if feature_flags.get_flag("monitoring.metrics_collection", True):
            self.metrics.record_resolution(
                use_case,
                duration_ms,
                success=success,
                degraded_collections=stats.degraded,
                dropped_items=stats.dropped,
                item_count=stats.items,
                error_type=error_type,
            )
        return duration_ms


def build_read_model_service(
    store=None,
    resolver: Optional[NameResolverProtocol] = None,
    use_resolver: bool = True,
) -> ReadModelService:
    """Explicit wiring for the read-model service.

    ``store`` defaults to the shared document store. When ``resolver`` is not
    given and ``use_resolver`` is true, a store-backed ``NameResolver`` is used.
    """
    if store is None:
        from services.storage import storage
        store = storage
    if resolver is None and use_resolver:
        resolver = NameResolver(store)
    return ReadModelService(store, resolver=resolver)
