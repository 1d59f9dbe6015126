"""
Name Resolution
Best-effort display names for blueprints, brands, companies and model variations.

Every method answers "" (or an empty ``ModelResolved``) when the id is blank,
the document is missing or the store fails. Nothing here raises into the
caller's request except cancellation.
"""
from typing import Any, Dict, Optional, Protocol
import logging

from schemas.read_model_schemas import ModelResolved
from services.field_aliases import (
    BRAND_FIELDS,
    COMPANY_FIELDS,
    MODEL_FIELDS,
    PRODUCT_BLUEPRINT_FIELDS,
    TOKEN_BLUEPRINT_FIELDS,
    as_int,
    canonicalize,
    pick_text,
)
from settings import (
    BRAND_COLLECTION,
    COMPANY_COLLECTION,
    MODEL_COLLECTION,
    PRODUCT_BLUEPRINT_COLLECTION,
    TOKEN_BLUEPRINT_COLLECTION,
    mask_id,
    sanitize_id,
)

logger = logging.getLogger(__name__)


class NameResolverProtocol(Protocol):
    async def resolve_product_name(self, product_blueprint_id: str) -> str: ...

    async def resolve_token_name(self, token_blueprint_id: str) -> str: ...

    async def resolve_brand_name(self, brand_id: str) -> str: ...

    async def resolve_company_name(self, company_id: str) -> str: ...

    async def resolve_brand_company_id(self, brand_id: str) -> str: ...

    async def resolve_model_variant(self, model_id: str) -> ModelResolved: ...


async def resolve_company_for_brand(
    resolver: Optional[NameResolverProtocol],
    company_id: str,
    brand_id: str,
) -> str:
    """Company name from ``company_id``, or through the brand when it is blank.

    At most two hops: brand -> company id -> company name.
    """
    if resolver is None:
        return ""
    company_id = sanitize_id(company_id)
    if not company_id:
        brand_id = sanitize_id(brand_id)
        if not brand_id:
            return ""
        company_id = sanitize_id(await resolver.resolve_brand_company_id(brand_id))
        if not company_id:
            return ""
    return sanitize_id(await resolver.resolve_company_name(company_id))


class NameResolver:
    """Store-backed resolver reading one document per call."""

    def __init__(self, store):
        self.store = store

    async def resolve_product_name(self, product_blueprint_id: str) -> str:
        doc = await self._load(PRODUCT_BLUEPRINT_COLLECTION, product_blueprint_id)
        return pick_text(canonicalize(doc, PRODUCT_BLUEPRINT_FIELDS), "productName")

    async def resolve_token_name(self, token_blueprint_id: str) -> str:
        doc = await self._load(TOKEN_BLUEPRINT_COLLECTION, token_blueprint_id)
        return pick_text(canonicalize(doc, TOKEN_BLUEPRINT_FIELDS), "name", "symbol")

    async def resolve_brand_name(self, brand_id: str) -> str:
        doc = await self._load(BRAND_COLLECTION, brand_id)
        return pick_text(canonicalize(doc, BRAND_FIELDS), "name")

    async def resolve_company_name(self, company_id: str) -> str:
        doc = await self._load(COMPANY_COLLECTION, company_id)
        return pick_text(canonicalize(doc, COMPANY_FIELDS), "name")

    async def resolve_brand_company_id(self, brand_id: str) -> str:
        doc = await self._load(BRAND_COLLECTION, brand_id)
        return pick_text(canonicalize(doc, BRAND_FIELDS), "companyId")

    async def resolve_model_variant(self, model_id: str) -> ModelResolved:
        doc = await self._load(MODEL_COLLECTION, model_id)
        if not doc:
            return ModelResolved()
        fields = canonicalize(doc, MODEL_FIELDS)
        color, rgb = _color_label_and_rgb(fields.get("color"))
        return ModelResolved(
            model_number=pick_text(fields, "modelNumber"),
            size=pick_text(fields, "size"),
            color=color,
            rgb=rgb,
        )

    async def _load(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc_id = sanitize_id(doc_id)
        if not doc_id or self.store is None:
            return None
        try:
            return await self.store.get_by_id(collection, doc_id)
        except Exception as e:
            logger.warning("Name lookup failed | collection=%s id=%s error=%s", collection, mask_id(doc_id), e)
            return None


def _color_label_and_rgb(color: Any):
    """Color is stored either as ``{label|name, rgb}`` or as a plain label."""
    if isinstance(color, dict):
        label = pick_text(color, "label", "name")
        rgb, ok = as_int(color.get("rgb"))
        return label, (rgb if ok else None)
    if isinstance(color, str):
        return color.strip(), None
    return "", None
