"""
Read-Model Schemas
==================

Shapes used by the buyer-facing read-model resolution engine.

RECORDS:
--------
Structured views of stored documents (pydantic). A record that does not
validate is not an error: the index builder falls back to the alias tables
in ``services.field_aliases`` for that record only.

INDEX PROJECTIONS:
------------------
Request-scoped, read-only projections holding only what the assembler needs.

OUTPUT DTOs:
------------
Allow-listed response objects. ``to_dict()`` emits camelCase keys and omits
unset fields; raw secondary records never reach the response. The only ids
exposed are the ones clients need to act on an item (inventoryId, listingId,
modelId, plus the blueprint ids resolved for that item).
"""

from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging

from pydantic import BaseModel, ConfigDict

from services.field_aliases import CART_ITEM_FIELDS, canonicalize, as_int
from settings import sanitize_id, mask_id

logger = logging.getLogger(__name__)


# =============================================================================
# RECORDS (structured decode of stored documents)
# =============================================================================

class PriceRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    modelId: str
    price: int


class ListingRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    imageId: str = ""
    description: str = ""
    status: str = ""
    inventoryId: str = ""
    productBlueprintId: str = ""
    tokenBlueprintId: str = ""
    prices: List[PriceRow] = []


class TokenBlueprintRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    symbol: str = ""
    brandId: str = ""
    companyId: str = ""
    iconUrl: str = ""
    minted: Optional[bool] = None


# =============================================================================
# INDEX PROJECTIONS
# =============================================================================

@dataclass(frozen=True)
class ListingMeta:
    title: str = ""
    image_id: str = ""


@dataclass(frozen=True)
class InventoryParts:
    product_blueprint_id: str = ""
    token_blueprint_id: str = ""


@dataclass(frozen=True)
class ModelSimple:
    size: str = ""
    color: str = ""


@dataclass(frozen=True)
class ModelResolved:
    """Model variation as answered by the name resolver (blank when unknown)."""
    model_number: str = ""
    size: str = ""
    color: str = ""
    rgb: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not (self.model_number or self.size or self.color or self.rgb is not None)


# =============================================================================
# PRIMARY RECORD
# =============================================================================

@dataclass
class LineItem:
    inventory_id: str = ""
    listing_id: str = ""
    model_id: str = ""
    quantity: int = 0

    def is_valid(self) -> bool:
        return bool(self.inventory_id and self.listing_id and self.model_id and self.quantity > 0)


@dataclass
class CartRecord:
    avatar_id: str
    items: Dict[str, LineItem] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


# =============================================================================
# OUTPUT DTOs
# =============================================================================

def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


@dataclass
class CartItemDTO:
    inventory_id: str
    listing_id: str
    model_id: str
    quantity: int
    title: Optional[str] = None
    image_id: Optional[str] = None
    price: Optional[int] = None
    product_blueprint_id: Optional[str] = None
    product_name: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "inventoryId": self.inventory_id,
            "listingId": self.listing_id,
            "modelId": self.model_id,
            "quantity": self.quantity,
            "title": self.title,
            "imageId": self.image_id,
            "price": self.price,
            "productBlueprintId": self.product_blueprint_id,
            "productName": self.product_name,
            "size": self.size,
            "color": self.color,
        })


@dataclass
class CartViewDTO:
    avatar_id: str
    items: Dict[str, CartItemDTO] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    expires_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "avatarId": self.avatar_id,
            "items": {key: item.to_dict() for key, item in self.items.items()},
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "expiresAt": self.expires_at,
        })


@dataclass
class PreviewDTO:
    avatar_id: str
    item_key: str
    inventory_id: str
    listing_id: str
    model_id: str
    quantity: int
    title: Optional[str] = None
    image_id: Optional[str] = None
    price: Optional[int] = None
    product_blueprint_id: Optional[str] = None
    token_blueprint_id: Optional[str] = None
    product_name: Optional[str] = None
    product_brand_name: Optional[str] = None
    product_company_name: Optional[str] = None
    token_name: Optional[str] = None
    brand_name: Optional[str] = None
    company_name: Optional[str] = None
    icon_url: Optional[str] = None
    model_number: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    rgb: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "avatarId": self.avatar_id,
            "itemKey": self.item_key,
            "inventoryId": self.inventory_id,
            "listingId": self.listing_id,
            "modelId": self.model_id,
            "quantity": self.quantity,
            "title": self.title,
            "imageId": self.image_id,
            "price": self.price,
            "productBlueprintId": self.product_blueprint_id,
            "tokenBlueprintId": self.token_blueprint_id,
            "productName": self.product_name,
            "productBrandName": self.product_brand_name,
            "productCompanyName": self.product_company_name,
            "tokenName": self.token_name,
            "brandName": self.brand_name,
            "companyName": self.company_name,
            "iconUrl": self.icon_url,
            "modelNumber": self.model_number,
            "size": self.size,
            "color": self.color,
            "rgb": self.rgb,
        })


@dataclass
class CatalogPriceDTO:
    model_id: str
    price: int

    def to_dict(self) -> Dict[str, Any]:
        return {"modelId": self.model_id, "price": self.price}


@dataclass
class CatalogListingDTO:
    listing_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_id: Optional[str] = None
    prices: List[CatalogPriceDTO] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "listingId": self.listing_id,
            "title": self.title,
            "description": self.description,
            "imageId": self.image_id,
            "prices": [p.to_dict() for p in self.prices],
        })


@dataclass
class CatalogProductDTO:
    product_name: Optional[str] = None
    brand_name: Optional[str] = None
    company_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "productName": self.product_name,
            "brandName": self.brand_name,
            "companyName": self.company_name,
        })


@dataclass
class CatalogTokenDTO:
    name: Optional[str] = None
    symbol: Optional[str] = None
    icon_url: Optional[str] = None
    brand_name: Optional[str] = None
    company_name: Optional[str] = None
    minted: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "name": self.name,
            "symbol": self.symbol,
            "iconUrl": self.icon_url,
            "brandName": self.brand_name,
            "companyName": self.company_name,
            "minted": self.minted,
        })


@dataclass
class CatalogModelDTO:
    model_id: str
    model_number: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    rgb: Optional[int] = None
    price: Optional[int] = None
    stock_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "modelId": self.model_id,
            "modelNumber": self.model_number,
            "size": self.size,
            "color": self.color,
            "rgb": self.rgb,
            "price": self.price,
            "stockCount": self.stock_count,
        })


@dataclass
class CatalogDTO:
    listing: CatalogListingDTO
    inventory_id: Optional[str] = None
    product_blueprint_id: Optional[str] = None
    token_blueprint_id: Optional[str] = None
    product: Optional[CatalogProductDTO] = None
    token: Optional[CatalogTokenDTO] = None
    models: List[CatalogModelDTO] = field(default_factory=list)
    inventory_error: Optional[str] = None
    product_error: Optional[str] = None
    token_error: Optional[str] = None
    models_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "listing": self.listing.to_dict(),
            "inventoryId": self.inventory_id,
            "productBlueprintId": self.product_blueprint_id,
            "tokenBlueprintId": self.token_blueprint_id,
            "product": self.product.to_dict() if self.product else None,
            "token": self.token.to_dict() if self.token else None,
            "models": [m.to_dict() for m in self.models],
            "inventoryError": self.inventory_error,
            "productError": self.product_error,
            "tokenError": self.token_error,
            "modelsError": self.models_error,
        })


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def normalize_line_item(item_key: str, raw: Any) -> LineItem:
    """Parse one stored cart item.

    Supported shapes:
      - ``{inventoryId, listingId|listId, modelId, quantity|qty}``
      - legacy ``qty`` only: model id is the item key, other ids blank
        (the assembler drops such items).
    """
    if isinstance(raw, dict):
        fields = canonicalize(raw, CART_ITEM_FIELDS)
        quantity, _ = as_int(fields.get("quantity"))
        return LineItem(
            inventory_id=sanitize_id(fields.get("inventoryId")),
            listing_id=sanitize_id(fields.get("listingId")),
            model_id=sanitize_id(fields.get("modelId")),
            quantity=quantity,
        )
    quantity, _ = as_int(raw)
    return LineItem(model_id=sanitize_id(item_key), quantity=quantity)


def normalize_cart_record(avatar_id: str, raw: Optional[Dict[str, Any]]) -> CartRecord:
    """Backward-compatible parse of a stored cart document."""
    cart = CartRecord(avatar_id=sanitize_id(avatar_id))
    if not raw:
        return cart

    cart.created_at = _parse_time(raw.get("createdAt"))
    cart.updated_at = _parse_time(raw.get("updatedAt"))
    cart.expires_at = _parse_time(raw.get("expiresAt"))

    items = raw.get("items")
    if not isinstance(items, dict):
        if items is not None:
            logger.warning("Cart items has unexpected type avatar=%s type=%s", mask_id(cart.avatar_id), type(items).__name__)
        return cart

    for key, value in items.items():
        item_key = sanitize_id(key)
        if not item_key:
            continue
        cart.items[item_key] = normalize_line_item(item_key, value)
    return cart


def to_rfc3339(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None
