"""
Carts Router
Buyer-facing cart view and single-item preview
"""
from fastapi import APIRouter, HTTPException, Depends
import logging

from routers.deps import get_read_model_service
from services.errors import NotFoundError, ResolutionError
from services.read_model import ReadModelService
from settings import mask_id

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/carts/{avatar_id}")
async def get_cart_view(
    avatar_id: str,
    service: ReadModelService = Depends(get_read_model_service),
):
    """Resolve the cart for an avatar into its display view"""
    try:
        view = await service.resolve_cart_view(avatar_id)
        return view.to_dict()
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Cart not found")
    except ResolutionError as e:
        logger.error(f"Cart view failed for avatar {mask_id(avatar_id)}: {e}")
        raise HTTPException(status_code=503, detail="Cart temporarily unavailable")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Cart view error: {e}")
        raise HTTPException(status_code=500, detail="Failed to load cart")


@router.get("/carts/{avatar_id}/items/{item_key}/preview")
async def get_cart_item_preview(
    avatar_id: str,
    item_key: str,
    service: ReadModelService = Depends(get_read_model_service),
):
    """Resolve one cart item with blueprint, token and model details"""
    try:
        preview = await service.resolve_preview(avatar_id, item_key)
        return preview.to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=f"{e.kind.capitalize()} not found")
    except ResolutionError as e:
        logger.error(f"Preview failed for avatar {mask_id(avatar_id)}: {e}")
        raise HTTPException(status_code=503, detail="Cart temporarily unavailable")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Preview error: {e}")
        raise HTTPException(status_code=500, detail="Failed to load preview")
