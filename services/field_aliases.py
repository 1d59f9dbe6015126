"""
Versioned field-name tables for documents whose key names drifted over time.

Each table maps a historical (legacy) key to its canonical name. Tables are
resolved once per record at index-build time with ``canonicalize``; later
lookups only ever use canonical names.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Tuple

FIELD_ALIASES_VERSION = 3

LISTING_FIELDS: Dict[str, str] = {
    "title": "title",
    "Title": "title",
    "imageId": "imageId",
    "ImageID": "imageId",
    "imageID": "imageId",
    "ImageId": "imageId",
    "image": "imageId",
    "Image": "imageId",
    "listImage": "imageId",
    "ListImage": "imageId",
    "imageUrl": "imageId",
    "ImageUrl": "imageId",
    "prices": "prices",
    "Prices": "prices",
    "status": "status",
    "Status": "status",
    "description": "description",
    "Description": "description",
    "inventoryId": "inventoryId",
    "InventoryID": "inventoryId",
    "InventoryId": "inventoryId",
    "productBlueprintId": "productBlueprintId",
    "productBlueprintID": "productBlueprintId",
    "ProductBlueprintID": "productBlueprintId",
    "ProductBlueprintId": "productBlueprintId",
    "tokenBlueprintId": "tokenBlueprintId",
    "tokenBlueprintID": "tokenBlueprintId",
    "TokenBlueprintID": "tokenBlueprintId",
    "TokenBlueprintId": "tokenBlueprintId",
}

PRICE_ROW_FIELDS: Dict[str, str] = {
    "modelId": "modelId",
    "ModelID": "modelId",
    "modelID": "modelId",
    "ModelId": "modelId",
    "price": "price",
    "Price": "price",
}

INVENTORY_FIELDS: Dict[str, str] = {
    "productBlueprintId": "productBlueprintId",
    "productBlueprintID": "productBlueprintId",
    "ProductBlueprintID": "productBlueprintId",
    "ProductBlueprintId": "productBlueprintId",
    "tokenBlueprintId": "tokenBlueprintId",
    "tokenBlueprintID": "tokenBlueprintId",
    "TokenBlueprintID": "tokenBlueprintId",
    "TokenBlueprintId": "tokenBlueprintId",
    "stock": "stock",
    "Stock": "stock",
}

PRODUCT_BLUEPRINT_FIELDS: Dict[str, str] = {
    "productName": "productName",
    "ProductName": "productName",
    "name": "productName",
    "Name": "productName",
    "brandId": "brandId",
    "BrandID": "brandId",
    "brandID": "brandId",
    "BrandId": "brandId",
    "companyId": "companyId",
    "CompanyID": "companyId",
    "companyID": "companyId",
    "CompanyId": "companyId",
}

TOKEN_BLUEPRINT_FIELDS: Dict[str, str] = {
    "name": "name",
    "Name": "name",
    "symbol": "symbol",
    "Symbol": "symbol",
    "brandId": "brandId",
    "BrandID": "brandId",
    "brandID": "brandId",
    "BrandId": "brandId",
    "companyId": "companyId",
    "CompanyID": "companyId",
    "companyID": "companyId",
    "CompanyId": "companyId",
    "iconUrl": "iconUrl",
    "IconURL": "iconUrl",
    "iconURL": "iconUrl",
    "IconUrl": "iconUrl",
    "minted": "minted",
    "Minted": "minted",
}

CART_ITEM_FIELDS: Dict[str, str] = {
    "inventoryId": "inventoryId",
    "InventoryID": "inventoryId",
    "inventoryID": "inventoryId",
    "listingId": "listingId",
    "listId": "listingId",
    "ListID": "listingId",
    "listID": "listingId",
    "modelId": "modelId",
    "ModelID": "modelId",
    "modelID": "modelId",
    "quantity": "quantity",
    "qty": "quantity",
    "Qty": "quantity",
}

MODEL_FIELDS: Dict[str, str] = {
    "modelNumber": "modelNumber",
    "ModelNumber": "modelNumber",
    "size": "size",
    "Size": "size",
    "color": "color",
    "Color": "color",
}

BRAND_FIELDS: Dict[str, str] = {
    "name": "name",
    "Name": "name",
    "companyId": "companyId",
    "CompanyID": "companyId",
    "companyID": "companyId",
    "CompanyId": "companyId",
}

COMPANY_FIELDS: Dict[str, str] = {
    "name": "name",
    "Name": "name",
}


def canonicalize(record: Optional[Mapping[str, Any]], table: Mapping[str, str]) -> Dict[str, Any]:
    """Project a raw record onto canonical field names.

    Canonical spellings win over legacy ones; among legacy spellings the first
    non-blank value (in table order) wins. Unknown keys are dropped.
    """
    if not isinstance(record, Mapping):
        return {}
    out: Dict[str, Any] = {}
    for legacy, canonical in table.items():
        if legacy not in record:
            continue
        value = record[legacy]
        if _is_blank(value):
            continue
        if canonical in out and legacy != canonical:
            continue
        out[canonical] = value
    return out


def pick_text(record: Mapping[str, Any], *keys: str) -> str:
    """First non-blank value among ``keys`` as a stripped string."""
    for key in keys:
        value = record.get(key)
        if _is_blank(value):
            continue
        if isinstance(value, (dict, list, tuple, set)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def as_int(value: Any) -> Tuple[int, bool]:
    """Loose int conversion used for prices/quantities stored as text or float."""
    if value is None or isinstance(value, bool):
        return 0, False
    if isinstance(value, int):
        return value, True
    if isinstance(value, float):
        return int(value), True
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0, False
        try:
            return int(text), True
        except ValueError:
            try:
                return int(float(text)), True
            except ValueError:
                return 0, False
    return 0, False


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False
