"""
Batched reference collection: one deduplicated id list per referenced collection.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Set

from schemas.read_model_schemas import InventoryParts, LineItem
from services.composite_key import decode_inventory_id
from settings import sanitize_id


@dataclass
class ReferenceSet:
    """Ids referenced by a primary record's line items, in first-seen order."""
    listing_ids: List[str] = field(default_factory=list)
    inventory_ids: List[str] = field(default_factory=list)
    model_ids: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.listing_ids or self.inventory_ids or self.model_ids)


class _OrderedIds:
    def __init__(self) -> None:
        self._seen: Set[str] = set()
        self.ids: List[str] = []

    def add(self, value: str) -> None:
        value = sanitize_id(value)
        if not value or value in self._seen:
            return
        self._seen.add(value)
        self.ids.append(value)


def collect_references(
    items: Optional[Mapping[str, LineItem]],
    include_models: bool = False,
) -> Optional[ReferenceSet]:
    """Scan line items once and return per-collection id lists.

    Returns None when there are no items (nothing to batch-fetch). Model ids are
    only collected when a model-detail collaborator is configured.
    """
    if not items:
        return None

    listings, inventories, models = _OrderedIds(), _OrderedIds(), _OrderedIds()
    for item in items.values():
        if item is None:
            continue
        listings.add(item.listing_id)
        inventories.add(item.inventory_id)
        if include_models:
            models.add(item.model_id)

    return ReferenceSet(
        listing_ids=listings.ids,
        inventory_ids=inventories.ids,
        model_ids=models.ids,
    )


def resolve_product_blueprint_id(
    inventory_id: str,
    inventory_index: Optional[Mapping[str, InventoryParts]],
) -> str:
    """Inventory index's explicit id, else composite key decode, else ""."""
    inventory_id = sanitize_id(inventory_id)
    if not inventory_id:
        return ""
    if inventory_index:
        parts = inventory_index.get(inventory_id)
        if parts and parts.product_blueprint_id:
            return parts.product_blueprint_id
    pb, _, ok = decode_inventory_id(inventory_id)
    return pb if ok else ""


def collect_product_blueprint_ids(
    items: Optional[Iterable[LineItem]],
    inventory_index: Optional[Mapping[str, InventoryParts]],
) -> List[str]:
    """Second-stage references: product blueprint ids behind each inventory."""
    if not items:
        return []
    blueprints = _OrderedIds()
    for item in items:
        if item is None:
            continue
        blueprints.add(resolve_product_blueprint_id(item.inventory_id, inventory_index))
    return blueprints.ids
