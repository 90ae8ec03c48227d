"""
Réglages boutique modifiables à chaud (table shop_settings, ligne unique id=1).
"""
from typing import Any, Dict, Optional
import logging
import roastery.infra.supabase_client as supabase_client
from roastery.checkout.models import ShippingSettings

logger = logging.getLogger(__name__)

SETTINGS_TABLE = "shop_settings"
SETTINGS_ROW_ID = 1

# module roastery.store_settings.repository
def _from_row(row: Dict[str, Any]) -> ShippingSettings:
    defaults = ShippingSettings()
    fee = row.get("delivery_fee_pence")
    threshold = row.get("free_shipping_threshold_pence")
    enabled = row.get("free_shipping_enabled")
    return ShippingSettings(
        delivery_fee_pence=int(fee) if fee is not None else defaults.delivery_fee_pence,
        free_shipping_threshold_pence=int(threshold) if threshold is not None else defaults.free_shipping_threshold_pence,
        free_shipping_enabled=bool(enabled) if enabled is not None else defaults.free_shipping_enabled,
    )

def get_shipping_settings() -> ShippingSettings:
    """
    Lit les réglages de livraison.
    - Retourne les valeurs par défaut (config) si la ligne est absente ou en cas d’erreur.
    """
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(SETTINGS_TABLE)
            .select("*")
            .eq("id", SETTINGS_ROW_ID)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        if rows:
            return _from_row(rows[0])
    except Exception:
        logger.exception("store_settings.repository.get_shipping_settings failed, using defaults")
    return ShippingSettings()

def update_shipping_settings(settings: ShippingSettings) -> Optional[ShippingSettings]:
    """Upsert de la ligne de réglages; None en cas d’échec."""
    row = {"id": SETTINGS_ROW_ID, **settings.model_dump()}
    try:
        res = (
            supabase_client.get_service_supabase()
            .table(SETTINGS_TABLE)
            .upsert(row, on_conflict="id")
            .execute()
        )
        rows = res.data or []
        return _from_row(rows[0]) if rows else settings
    except Exception:
        logger.exception("store_settings.repository.update_shipping_settings failed")
        return None
