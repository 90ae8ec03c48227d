"""
Accès au catalogue (tables coffee_variants, coffees, equipment): lectures et décrément de stock.

Les erreurs d'infrastructure sont propagées: un catalogue injoignable ne doit
pas se transformer en "produit introuvable" côté client.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging
import roastery.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

VARIANTS_TABLE = "coffee_variants"
COFFEES_TABLE = "coffees"
EQUIPMENT_TABLE = "equipment"

# module roastery.catalog.repository
def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
        return True
    except (ValueError, TypeError, AttributeError):
        return False

def _first(table: str, column: str, value: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            supabase_client.get_supabase()
            .table(table)
            .select("*")
            .eq(column, value)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("catalog.repository lookup failed table=%s %s=%s", table, column, value)
        raise
    rows = res.data or []
    return rows[0] if rows else None

def find_variant(item_id: str) -> Optional[Dict[str, Any]]:
    if not _is_uuid(item_id):
        return None
    return _first(VARIANTS_TABLE, "id", item_id)

def find_coffee(item_id: str) -> Optional[Dict[str, Any]]:
    if not _is_uuid(item_id):
        return None
    return _first(COFFEES_TABLE, "id", item_id)

def find_equipment(item_id: str) -> Optional[Dict[str, Any]]:
    if not _is_uuid(item_id):
        return None
    return _first(EQUIPMENT_TABLE, "id", item_id)

def find_equipment_by_slug(slug: str) -> Optional[Dict[str, Any]]:
    """Fallback pour les paniers qui référencent le matériel par slug."""
    slug = (slug or "").strip()
    if not slug:
        return None
    return _first(EQUIPMENT_TABLE, "slug", slug)

DECREMENT_STOCK_FN = "decrement_stock"

def decrement_stock(items: List[Dict[str, Any]]) -> bool:
    """
    Décrémente le stock des lignes payées en une seule transaction (rpc decrement_stock).
    - Garde stock >= qty par ligne; tout ou rien.
    - Retourne False si une ligne manque de stock; lève sur erreur d'infrastructure.
    """
    lines = [
        {"id": str(item.get("id")), "source": item.get("source") or "variant", "qty": int(item.get("qty") or 0)}
        for item in items
    ]
    try:
        res = supabase_client.get_service_supabase().rpc(DECREMENT_STOCK_FN, {"p_items": lines}).execute()
    except Exception:
        logger.exception("catalog.repository.decrement_stock failed items=%s", [line["id"] for line in lines])
        raise
    return bool(getattr(res, "data", None))
