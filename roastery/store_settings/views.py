import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from roastery.checkout.models import ShippingSettings
from roastery.utils.security import require_user
from . import repository as settings_repo

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/settings", tags=["Settings API"])

class ShippingSettingsIn(BaseModel):
    deliveryFeePence: Optional[int] = Field(default=None, ge=0)
    freeShippingThresholdPence: Optional[int] = Field(default=None, ge=0)
    freeShippingEnabled: Optional[bool] = None

def _serialize(settings: ShippingSettings) -> Dict[str, Any]:
    return {
        "deliveryFeePence": settings.delivery_fee_pence,
        "freeShippingThresholdPence": settings.free_shipping_threshold_pence,
        "freeShippingEnabled": settings.free_shipping_enabled,
    }

# module roastery.store_settings.views
@router.get("/shipping")
def get_shipping_settings(user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    return _serialize(settings_repo.get_shipping_settings())

@router.put("/shipping")
def put_shipping_settings(payload: ShippingSettingsIn, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Met à jour frais de port / seuil de gratuité / activation.
    - Champs omis: valeur actuelle conservée.
    """
    current = settings_repo.get_shipping_settings()
    updated = ShippingSettings(
        delivery_fee_pence=current.delivery_fee_pence if payload.deliveryFeePence is None else payload.deliveryFeePence,
        free_shipping_threshold_pence=(
            current.free_shipping_threshold_pence
            if payload.freeShippingThresholdPence is None
            else payload.freeShippingThresholdPence
        ),
        free_shipping_enabled=current.free_shipping_enabled if payload.freeShippingEnabled is None else payload.freeShippingEnabled,
    )
    saved = settings_repo.update_shipping_settings(updated)
    if saved is None:
        raise HTTPException(status_code=500, detail="Settings could not be saved")
    logger.info("settings.shipping updated by=%s values=%s", user.get("id"), saved.model_dump())
    return _serialize(saved)
