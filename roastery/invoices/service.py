"""
Cas d'usage 'invoices': factures manuelles (admin) et factures issues de Stripe.

Seules les factures manuelles peuvent être marquées payées par un administrateur;
les factures Stripe naissent payées lors de la première complétion de commande.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from roastery import config
from roastery.errors import InvalidRequestError, InvoiceNotFoundError
from roastery.checkout.cart import parse_quantity
from roastery.orders.models import normalize_client
from roastery.utils.money import to_major, to_pence
from . import repository

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_STRIPE = "stripe"
STATUS_UNPAID = "unpaid"
STATUS_PAID = "paid"

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _parse_due_date(raw: Any) -> str:
    if raw in (None, ""):
        return (date.today() + timedelta(days=config.INVOICE_DUE_DAYS)).isoformat()
    try:
        return date.fromisoformat(str(raw)[:10]).isoformat()
    except ValueError:
        raise InvalidRequestError("dueDate must be YYYY-MM-DD")

def _manual_items(raw_items: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidRequestError("Invoice must contain at least one item")
    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise InvalidRequestError(f"Invalid item at index {idx}")
        name = str(raw.get("name") or "").strip()
        qty = parse_quantity(raw.get("qty", raw.get("quantity")))
        unit_price = to_pence(raw.get("unitPrice", raw.get("price")))
        if not name:
            raise InvalidRequestError(f"Item {idx} has no name")
        if qty is None:
            raise InvalidRequestError(f"Item {idx} has an invalid quantity")
        if unit_price is None or unit_price < 0:
            raise InvalidRequestError(f"Item {idx} has an invalid unit price")
        items.append({"name": name, "qty": qty, "unitPrice": unit_price, "lineTotal": unit_price * qty})
    return items

# module roastery.invoices.service
def create_manual_invoice(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Facture saisie par l'admin.
    - items: [{name, qty, unitPrice (livres)}], shipping (livres, défaut 0)
    - dueDate: YYYY-MM-DD (défaut aujourd'hui + INVOICE_DUE_DAYS)
    - client: {name, email, phone}; notes libres
    """
    items = _manual_items(payload.get("items"))
    shipping = to_pence(payload.get("shipping") or 0)
    if shipping is None or shipping < 0:
        raise InvalidRequestError("Invalid shipping amount")
    client = normalize_client(payload.get("client"))
    if not client:
        raise InvalidRequestError("Client details are required")
    subtotal = sum(item["lineTotal"] for item in items)
    row = {
        "items": items,
        "subtotal": subtotal,
        "shipping": shipping,
        "total": subtotal + shipping,
        "currency": str(payload.get("currency") or config.STRIPE_CURRENCY).lower(),
        "client": client,
        "source": SOURCE_MANUAL,
        "payment_status": STATUS_UNPAID,
        "due_date": _parse_due_date(payload.get("dueDate")),
        "notes": str(payload.get("notes") or "")[:2000] or None,
    }
    invoice = repository.insert_invoice(row)
    logger.info("invoices.manual created number=%s total=%s", invoice.get("order_number"), row["total"])
    return invoice

def create_invoice_from_order(order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Facture 'stripe' (payée) pour une commande complétée; une seule par commande.
    """
    order_id = order.get("id")
    if not order_id:
        return None
    existing = repository.get_invoice_for_order(order_id)
    if existing:
        return existing
    paid_at = order.get("paid_at") or _now_iso()
    row = {
        "order_id": order_id,
        "items": order.get("items") or [],
        "subtotal": order.get("subtotal"),
        "shipping": order.get("shipping_fee"),
        "total": order.get("total"),
        "currency": order.get("currency") or config.STRIPE_CURRENCY,
        "client": order.get("client") or normalize_client(order.get("billing_address") or order.get("shipping_address")),
        "source": SOURCE_STRIPE,
        "payment_status": STATUS_PAID,
        "paid_at": paid_at,
        "due_date": str(paid_at)[:10],
    }
    invoice = repository.insert_invoice(row)
    logger.info("invoices.stripe created number=%s order_id=%s", invoice.get("order_number"), order_id)
    return invoice

def mark_paid(invoice_id: str) -> Dict[str, Any]:
    """
    unpaid -> paid pour une facture manuelle.
    - 404 si inconnue, 400 si source != manual, idempotent si déjà payée.
    """
    invoice = repository.get_invoice(invoice_id)
    if not invoice:
        raise InvoiceNotFoundError()
    if invoice.get("source") != SOURCE_MANUAL:
        raise InvalidRequestError("Only manual invoices can be marked as paid")
    if invoice.get("payment_status") == STATUS_PAID:
        return invoice
    updated = repository.mark_paid_if_unpaid(invoice_id, _now_iso())
    return updated or repository.get_invoice(invoice_id) or invoice

def serialize_invoice(row: Dict[str, Any]) -> Dict[str, Any]:
    def _major(value: Any) -> Optional[float]:
        return to_major(value) if value is not None else None

    return {
        "id": row.get("id"),
        "orderNumber": row.get("order_number"),
        "orderId": row.get("order_id"),
        "items": [
            {**item, "unitPrice": _major(item.get("unitPrice")), "lineTotal": _major(item.get("lineTotal"))}
            for item in row.get("items") or []
        ],
        "subtotal": _major(row.get("subtotal")),
        "shipping": _major(row.get("shipping")),
        "total": _major(row.get("total")),
        "currency": row.get("currency"),
        "client": row.get("client"),
        "source": row.get("source"),
        "paymentStatus": row.get("payment_status"),
        "paidAt": row.get("paid_at"),
        "dueDate": row.get("due_date"),
        "notes": row.get("notes"),
        "createdAt": row.get("created_at"),
    }
