"""
Accès aux données pour la feature 'invoices' (table invoices).
"""
from typing import Any, Dict, List, Optional
import logging
import roastery.infra.supabase_client as supabase_client
from .numbering import generate_order_number, is_order_number

logger = logging.getLogger(__name__)

INVOICES_TABLE = "invoices"
ORDER_NUMBER_CONSTRAINT = "invoices_order_number_key"
MAX_NUMBER_ATTEMPTS = 5

def _client():
    return supabase_client.get_service_supabase()

def _first_row(res) -> Optional[Dict[str, Any]]:
    rows = getattr(res, "data", None) or []
    return rows[0] if isinstance(rows, list) and rows else None

def _is_number_collision(exc: Exception) -> bool:
    """Violation d'unicité sur order_number uniquement (pas sur order_id)."""
    text = " ".join(str(part) for part in (exc, getattr(exc, "message", ""), getattr(exc, "details", "")) if part)
    code = getattr(exc, "code", None)
    unique = code == "23505" or "23505" in text or "duplicate key" in text.lower()
    return unique and ORDER_NUMBER_CONSTRAINT in text

# module roastery.invoices.repository
def insert_invoice(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insère une facture avec un order_number neuf.
    - En cas de collision sur l'index unique (même jour, même suffixe), régénère le numéro.
    - Lève l'erreur d'origine après MAX_NUMBER_ATTEMPTS collisions ou sur toute autre erreur.
    """
    last_error: Optional[Exception] = None
    for _ in range(MAX_NUMBER_ATTEMPTS):
        candidate = {**row, "order_number": generate_order_number()}
        try:
            res = _client().table(INVOICES_TABLE).insert(candidate).execute()
            return _first_row(res) or candidate
        except Exception as e:
            if not _is_number_collision(e):
                logger.exception("invoices.repository.insert_invoice failed order_id=%s", row.get("order_id"))
                raise
            logger.warning("invoices.repository order_number collision number=%s", candidate["order_number"])
            last_error = e
    raise last_error

def get_invoice(invoice_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = _client().table(INVOICES_TABLE).select("*").eq("id", invoice_id).limit(1).execute()
        return _first_row(res)
    except Exception:
        logger.exception("invoices.repository.get_invoice failed id=%s", invoice_id)
        return None

def get_invoice_for_order(order_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = _client().table(INVOICES_TABLE).select("*").eq("order_id", order_id).limit(1).execute()
        return _first_row(res)
    except Exception:
        logger.exception("invoices.repository.get_invoice_for_order failed order_id=%s", order_id)
        return None

def list_invoices(limit: int = 100) -> List[Dict[str, Any]]:
    try:
        res = _client().table(INVOICES_TABLE).select("*").order("created_at", desc=True).limit(limit).execute()
        return res.data or []
    except Exception:
        logger.exception("invoices.repository.list_invoices failed")
        return []

def mark_paid_if_unpaid(invoice_id: str, paid_at: str) -> Optional[Dict[str, Any]]:
    """Passage unpaid -> paid conditionnel (factures manuelles uniquement)."""
    try:
        res = (
            _client()
            .table(INVOICES_TABLE)
            .update({"payment_status": "paid", "paid_at": paid_at})
            .eq("id", invoice_id)
            .eq("source", "manual")
            .eq("payment_status", "unpaid")
            .execute()
        )
        return _first_row(res)
    except Exception:
        logger.exception("invoices.repository.mark_paid_if_unpaid failed id=%s", invoice_id)
        raise

def get_invoice_by_number(order_number: str) -> Optional[Dict[str, Any]]:
    if not is_order_number(order_number):
        return None
    try:
        res = _client().table(INVOICES_TABLE).select("*").eq("order_number", order_number).limit(1).execute()
        return _first_row(res)
    except Exception:
        logger.exception("invoices.repository.get_invoice_by_number failed number=%s", order_number)
        return None
