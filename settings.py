"""
Centralized configuration for collection names and identifier hygiene.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

CART_COLLECTION: str = os.getenv("CART_COLLECTION") or "carts"
LISTING_COLLECTION: str = os.getenv("LISTING_COLLECTION") or "lists"
INVENTORY_COLLECTION: str = os.getenv("INVENTORY_COLLECTION") or "inventories"
PRODUCT_BLUEPRINT_COLLECTION: str = os.getenv("PRODUCT_BLUEPRINT_COLLECTION") or "product_blueprints"
TOKEN_BLUEPRINT_COLLECTION: str = os.getenv("TOKEN_BLUEPRINT_COLLECTION") or "token_blueprints"
MODEL_COLLECTION: str = os.getenv("MODEL_COLLECTION") or "models"
BRAND_COLLECTION: str = os.getenv("BRAND_COLLECTION") or "brands"
COMPANY_COLLECTION: str = os.getenv("COMPANY_COLLECTION") or "companies"

# Listing status that makes a listing visible in the buyer catalog.
LISTING_STATUS_VISIBLE: str = os.getenv("LISTING_STATUS_VISIBLE") or "listing"


def sanitize_id(value: Optional[Any]) -> str:
    """Normalize raw IDs to a stripped string ("" when unusable)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return ""
    return value.strip()


def mask_id(value: Optional[Any]) -> str:
    """Mask an identifier for logs: keep 3 chars on each side."""
    text = sanitize_id(value)
    if not text:
        return ""
    if len(text) <= 6:
        return "***"
    return f"{text[:3]}***{text[-3:]}"
