"""
Read-Model Schemas Package
Provides record shapes, index projections and allow-listed response DTOs.
"""

from .read_model_schemas import (
    # Record schemas
    PriceRow,
    ListingRecord,
    TokenBlueprintRecord,

    # Index projections
    ListingMeta,
    InventoryParts,
    ModelSimple,
    ModelResolved,

    # Primary record
    LineItem,
    CartRecord,

    # Response DTOs
    CartItemDTO,
    CartViewDTO,
    PreviewDTO,
    CatalogPriceDTO,
    CatalogListingDTO,
    CatalogProductDTO,
    CatalogTokenDTO,
    CatalogModelDTO,
    CatalogDTO,

    # Helper functions
    normalize_line_item,
    normalize_cart_record,
    to_rfc3339,
)
