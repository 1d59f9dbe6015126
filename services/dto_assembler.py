"""
DTO Assembler
Single pass over line items producing allow-listed response objects.
"""
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from schemas.read_model_schemas import (
    CartItemDTO,
    CartRecord,
    CartViewDTO,
    CatalogListingDTO,
    CatalogModelDTO,
    CatalogPriceDTO,
    LineItem,
    ListingRecord,
    ModelResolved,
    PreviewDTO,
    to_rfc3339,
)
from services.index_builder import (
    InventoryIndex,
    ListingMetaIndex,
    ModelIndex,
    PriceIndex,
    ProductNameIndex,
)
from services.reference_collector import resolve_product_blueprint_id
from settings import sanitize_id


@dataclass
class ReadModelIndices:
    """Request-scoped lookup maps; any of them may be None."""
    prices: Optional[PriceIndex] = None
    listing_meta: Optional[ListingMetaIndex] = None
    inventory: Optional[InventoryIndex] = None
    models: Optional[ModelIndex] = None
    product_names: Optional[ProductNameIndex] = None


@dataclass
class PreviewDetails:
    """Per-item extras resolved only for the single-item preview."""
    token_blueprint_id: str = ""
    token_name: str = ""
    brand_name: str = ""
    company_name: str = ""
    icon_url: str = ""
    product_brand_name: str = ""
    product_company_name: str = ""
    variant: ModelResolved = field(default_factory=ModelResolved)


def _text(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def assemble_cart_item(item: LineItem, indices: ReadModelIndices) -> Optional[CartItemDTO]:
    """One output row, or None when the item is missing a required field."""
    if item is None or not item.is_valid():
        return None

    dto = CartItemDTO(
        inventory_id=item.inventory_id,
        listing_id=item.listing_id,
        model_id=item.model_id,
        quantity=item.quantity,
    )

    meta = (indices.listing_meta or {}).get(item.listing_id)
    if meta is not None:
        dto.title = _text(meta.title)
        dto.image_id = _text(meta.image_id)

    price = (indices.prices or {}).get(item.listing_id, {}).get(item.model_id)
    if price is not None:
        dto.price = price

    pb_id = resolve_product_blueprint_id(item.inventory_id, indices.inventory)
    if pb_id:
        dto.product_blueprint_id = pb_id
        dto.product_name = _text((indices.product_names or {}).get(pb_id))

    variant = (indices.models or {}).get(item.model_id)
    if variant is not None:
        dto.size = _text(variant.size)
        dto.color = _text(variant.color)

    return dto


def assemble_cart_view(cart: CartRecord, indices: ReadModelIndices) -> Tuple[CartViewDTO, int]:
    """Cart view in item insertion order, plus the number of dropped items."""
    view = CartViewDTO(
        avatar_id=cart.avatar_id,
        created_at=to_rfc3339(cart.created_at),
        updated_at=to_rfc3339(cart.updated_at),
        expires_at=to_rfc3339(cart.expires_at),
    )
    dropped = 0
    for item_key, item in cart.items.items():
        dto = assemble_cart_item(item, indices)
        if dto is None:
            dropped += 1
            continue
        view.items[item_key] = dto
    return view, dropped


def assemble_preview(
    avatar_id: str,
    item_key: str,
    item: LineItem,
    indices: ReadModelIndices,
    details: Optional[PreviewDetails] = None,
) -> Optional[PreviewDTO]:
    base = assemble_cart_item(item, indices)
    if base is None:
        return None
    details = details or PreviewDetails()
    variant = details.variant or ModelResolved()

    preview = PreviewDTO(
        avatar_id=avatar_id,
        item_key=item_key,
        inventory_id=base.inventory_id,
        listing_id=base.listing_id,
        model_id=base.model_id,
        quantity=base.quantity,
        title=base.title,
        image_id=base.image_id,
        price=base.price,
        product_blueprint_id=base.product_blueprint_id,
        token_blueprint_id=_text(details.token_blueprint_id),
        product_name=base.product_name,
        product_brand_name=_text(details.product_brand_name),
        product_company_name=_text(details.product_company_name),
        token_name=_text(details.token_name),
        brand_name=_text(details.brand_name),
        company_name=_text(details.company_name),
        icon_url=_text(details.icon_url),
        model_number=_text(variant.model_number),
        size=_text(variant.size) or base.size,
        color=_text(variant.color) or base.color,
        rgb=variant.rgb,
    )
    return preview


def assemble_catalog_listing(listing_id: str, record: ListingRecord) -> CatalogListingDTO:
    prices: List[CatalogPriceDTO] = []
    seen = set()
    for row in record.prices:
        model_id = sanitize_id(row.modelId)
        if not model_id or model_id in seen:
            continue
        seen.add(model_id)
        prices.append(CatalogPriceDTO(model_id=model_id, price=row.price))
    return CatalogListingDTO(
        listing_id=listing_id,
        title=_text(record.title),
        description=_text(record.description),
        image_id=_text(record.imageId),
        prices=prices,
    )


def assemble_catalog_models(
    prices: List[CatalogPriceDTO],
    variants: Mapping[str, ModelResolved],
    stock_counts: Optional[Mapping[str, int]] = None,
) -> List[CatalogModelDTO]:
    """One row per priced model, in price-table order."""
    models: List[CatalogModelDTO] = []
    for row in prices:
        variant = variants.get(row.model_id) or ModelResolved()
        stock = None
        if stock_counts is not None:
            stock = stock_counts.get(row.model_id, 0)
        models.append(CatalogModelDTO(
            model_id=row.model_id,
            model_number=_text(variant.model_number),
            size=_text(variant.size),
            color=_text(variant.color),
            rgb=variant.rgb,
            price=row.price,
            stock_count=stock,
        ))
    return models
