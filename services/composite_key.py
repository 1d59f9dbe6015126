"""Inventory composite key: ``productBlueprintId__tokenBlueprintId``."""
from __future__ import annotations

from typing import Any, Tuple

SEPARATOR = "__"


def decode_inventory_id(key: Any) -> Tuple[str, str, bool]:
    """Split an inventory id into (product_blueprint_id, token_blueprint_id, ok).

    ``ok`` is False unless the key holds exactly one separator with a
    non-empty part on each side (after trimming). Never raises.
    """
    if not isinstance(key, str):
        return "", "", False
    text = key.strip()
    if not text:
        return "", "", False

    parts = text.split(SEPARATOR)
    if len(parts) != 2:
        return "", "", False

    product_blueprint_id = parts[0].strip()
    token_blueprint_id = parts[1].strip()
    if not product_blueprint_id or not token_blueprint_id:
        return "", "", False
    return product_blueprint_id, token_blueprint_id, True


def encode_inventory_id(product_blueprint_id: Any, token_blueprint_id: Any) -> str:
    """Join both blueprint ids; "" when either one is blank."""
    pb = product_blueprint_id.strip() if isinstance(product_blueprint_id, str) else ""
    tb = token_blueprint_id.strip() if isinstance(token_blueprint_id, str) else ""
    if not pb or not tb:
        return ""
    return f"{pb}{SEPARATOR}{tb}"
