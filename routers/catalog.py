"""
Catalog Router
Listing detail for the buyer catalog
"""
from fastapi import APIRouter, HTTPException, Depends
import logging

from routers.deps import get_read_model_service
from services.errors import NotFoundError, ResolutionError
from services.read_model import ReadModelService
from settings import mask_id

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/catalog/{listing_id}")
async def get_catalog_listing(
    listing_id: str,
    service: ReadModelService = Depends(get_read_model_service),
):
    """Listing with inventory, blueprint sections and model variations"""
    try:
        catalog = await service.resolve_catalog(listing_id)
        return catalog.to_dict()
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Listing not found")
    except ResolutionError as e:
        logger.error(f"Catalog failed for listing {mask_id(listing_id)}: {e}")
        raise HTTPException(status_code=503, detail="Catalog temporarily unavailable")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Catalog error: {e}")
        raise HTTPException(status_code=500, detail="Failed to load listing")
