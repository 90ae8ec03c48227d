"""
Accès aux données pour la feature 'orders' (tables orders, refunds).

Toutes les écritures sur une commande existante sont des instructions uniques
et conditionnelles côté Postgres:
- insert_if_absent: upsert ignore_duplicates sur payment_intent_id (unique)
- transition_status: update ... where status in (...)
- merge_metadata: rpc merge_order_metadata (jsonb ||)
Les écritures lèvent en cas d'erreur; les lectures admin retournent None/[].
"""
from typing import Any, Dict, List, Optional
import logging
import roastery.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

ORDERS_TABLE = "orders"
REFUNDS_TABLE = "refunds"
MERGE_METADATA_FN = "merge_order_metadata"

# module roastery.orders.repository
def _client():
    return supabase_client.get_service_supabase()

def _first_row(res) -> Optional[Dict[str, Any]]:
    rows = getattr(res, "data", None) or []
    return rows[0] if isinstance(rows, list) and rows else None

def insert_if_absent(payment_intent_id: str, row: Dict[str, Any]) -> None:
    """
    Crée une commande provisoire si aucune n'existe pour payment_intent_id.
    - Aucune modification si la ligne existe déjà (ON CONFLICT DO NOTHING).
    """
    try:
        (
            _client()
            .table(ORDERS_TABLE)
            .upsert({**row, "payment_intent_id": payment_intent_id}, on_conflict="payment_intent_id", ignore_duplicates=True)
            .execute()
        )
    except Exception:
        logger.exception("orders.repository.insert_if_absent failed payment_intent_id=%s", payment_intent_id)
        raise

def update_fields(payment_intent_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Met à jour uniquement les colonnes fournies (fusion au niveau colonne)."""
    if not fields:
        return get_by_payment_intent(payment_intent_id)
    try:
        res = (
            _client()
            .table(ORDERS_TABLE)
            .update(fields)
            .eq("payment_intent_id", payment_intent_id)
            .execute()
        )
        return _first_row(res)
    except Exception:
        logger.exception("orders.repository.update_fields failed payment_intent_id=%s", payment_intent_id)
        raise

def transition_status(payment_intent_id: str, from_statuses: List[str], fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Mise à jour conditionnelle atomique.
    - Ne s'applique que si status ∈ from_statuses au moment de l'écriture.
    - Retourne la ligne modifiée, ou None si une autre requête a déjà fait la transition.
    """
    try:
        res = (
            _client()
            .table(ORDERS_TABLE)
            .update(fields)
            .eq("payment_intent_id", payment_intent_id)
            .in_("status", from_statuses)
            .execute()
        )
        return _first_row(res)
    except Exception:
        logger.exception(
            "orders.repository.transition_status failed payment_intent_id=%s from=%s", payment_intent_id, from_statuses
        )
        raise

def update_by_id_if(order_id: str, fields: Dict[str, Any], expected: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Update par id gardé par des égalités (verrou optimiste, ex: refunded_pence inchangé).
    Retourne None si la garde n'est plus vraie.
    """
    try:
        query = _client().table(ORDERS_TABLE).update(fields).eq("id", order_id)
        for column, value in (expected or {}).items():
            query = query.eq(column, value)
        return _first_row(query.execute())
    except Exception:
        logger.exception("orders.repository.update_by_id_if failed order_id=%s", order_id)
        raise

def merge_metadata(
    payment_intent_id: str,
    patch: Dict[str, Any],
    only_statuses: Optional[List[str]] = None,
    only_if: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Fusion atomique de clés dans orders.metadata (les autres clés sont conservées).
    - only_statuses: n'applique la fusion que si le statut courant en fait partie.
    - only_if: n'applique la fusion que si la metadata courante contient ces paires (jsonb @>).
    Retourne True si la ligne a été modifiée.
    """
    if not patch:
        return False
    params: Dict[str, Any] = {"p_payment_intent_id": payment_intent_id, "p_patch": patch}
    if only_statuses:
        params["p_only_statuses"] = only_statuses
    if only_if:
        params["p_only_if"] = only_if
    try:
        res = _client().rpc(MERGE_METADATA_FN, params).execute()
    except Exception:
        logger.exception("orders.repository.merge_metadata failed payment_intent_id=%s keys=%s", payment_intent_id, list(patch))
        raise
    return bool(getattr(res, "data", None))

def get_by_payment_intent(payment_intent_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            _client()
            .table(ORDERS_TABLE)
            .select("*")
            .eq("payment_intent_id", payment_intent_id)
            .limit(1)
            .execute()
        )
        return _first_row(res)
    except Exception:
        logger.exception("orders.repository.get_by_payment_intent failed payment_intent_id=%s", payment_intent_id)
        return None

def get_by_id(order_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = _client().table(ORDERS_TABLE).select("*").eq("id", order_id).limit(1).execute()
        return _first_row(res)
    except Exception:
        logger.exception("orders.repository.get_by_id failed order_id=%s", order_id)
        return None

def list_orders(status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    """Commandes récentes (admin), filtrables par statut."""
    try:
        query = _client().table(ORDERS_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        res = query.order("created_at", desc=True).limit(limit).execute()
        return res.data or []
    except Exception:
        logger.exception("orders.repository.list_orders failed status=%s", status)
        return []

# --- Remboursements ---

def find_refund_by_key(idempotency_key: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            _client()
            .table(REFUNDS_TABLE)
            .select("*")
            .eq("idempotency_key", idempotency_key)
            .limit(1)
            .execute()
        )
        return _first_row(res)
    except Exception:
        logger.exception("orders.repository.find_refund_by_key failed key=%s", idempotency_key)
        return None

def insert_refund(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        res = _client().table(REFUNDS_TABLE).insert(row).execute()
        return _first_row(res) or row
    except Exception:
        logger.exception("orders.repository.insert_refund failed order_id=%s", row.get("order_id"))
        raise
