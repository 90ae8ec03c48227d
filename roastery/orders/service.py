"""
Cas d'usage admin sur les commandes complétées: expédition et remboursement.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from roastery.errors import ConflictError, InvalidRequestError, OrderNotFoundError
from roastery.notifications import service as notifications
from roastery.notifications.templates import CARRIERS, tracking_url
from roastery.payments import stripe_client
from roastery.utils.money import to_major, to_pence
from . import repository
from .models import STATUS_COMPLETED, STATUS_REFUNDED, serialize_order

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_REFUND_WRITE_ATTEMPTS = 3

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _get_order(order_id: str) -> Dict[str, Any]:
    order = repository.get_by_id(order_id)
    if not order:
        raise OrderNotFoundError()
    return order

# module roastery.orders.service
def record_shipment(
    order_id: str,
    provider: Any,
    tracking_code: Optional[str] = None,
    estimated_delivery: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Enregistre l'expédition d'une commande complétée puis prévient le client.
    - provider ∈ CARRIERS, estimatedDelivery au format YYYY-MM-DD
    - 409 si la commande n'est pas (ou plus) au statut completed
    """
    if not isinstance(provider, str) or provider not in CARRIERS:
        raise InvalidRequestError("Invalid or missing provider")
    tracking_code = (tracking_code or "").strip() or None
    estimated_delivery = (estimated_delivery or "").strip() or None
    if estimated_delivery and not _DATE_RE.match(estimated_delivery):
        raise InvalidRequestError("estimatedDelivery must be YYYY-MM-DD")

    order = _get_order(order_id)
    shipment = {
        "provider": provider,
        "trackingCode": tracking_code,
        "trackingUrl": tracking_url(provider, tracking_code, (order.get("shipping_address") or {}).get("postcode")),
        "estimatedDelivery": estimated_delivery,
        "shippedAt": _now_iso(),
    }
    updated = repository.update_by_id_if(
        order_id, {"shipment": shipment, "updated_at": shipment["shippedAt"]}, {"status": STATUS_COMPLETED}
    )
    if updated is None:
        raise ConflictError("Only completed orders can be shipped", status=order.get("status"))

    outcome = notifications.send_shipment_notice(updated, provider, tracking_code, estimated_delivery)
    logger.info("orders.shipment recorded order_id=%s provider=%s emailed=%s", order_id, provider, outcome.get("sent"))
    return {"order": serialize_order(updated), "notification": {"sent": outcome.get("sent"), "reason": outcome.get("reason")}}

def _apply_refund_total(order: Dict[str, Any], amount: int) -> Dict[str, Any]:
    """
    Ajoute amount à refunded_pence avec une garde optimiste (refunded_pence inchangé).
    - Si le webhook charge.refunded a déjà recopié le cumul Stripe, rien à faire.
    """
    current = order
    target = int(order.get("refunded_pence") or 0) + amount
    for _ in range(MAX_REFUND_WRITE_ATTEMPTS):
        seen = int(current.get("refunded_pence") or 0)
        if seen >= target:
            return current
        fields: Dict[str, Any] = {"refunded_pence": seen + amount, "updated_at": _now_iso()}
        if fields["refunded_pence"] >= int(current.get("total") or 0):
            fields["status"] = STATUS_REFUNDED
        updated = repository.update_by_id_if(current["id"], fields, {"refunded_pence": seen})
        if updated is not None:
            return updated
        current = repository.get_by_id(current["id"]) or current
    logger.warning("orders.refund total not updated after retries order_id=%s amount=%s", order.get("id"), amount)
    return current

def refund_order(order_id: str, amount: Any, reason: Optional[str] = None, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Remboursement partiel/total via Stripe.
    - amount en livres; 409 si > montant remboursable ou commande non complétée
    - Idempotency-Key: un rejeu renvoie le remboursement déjà enregistré (409 si la clé vise une autre commande)
    """
    amount_pence = to_pence(amount)
    if amount_pence is None or amount_pence <= 0:
        raise InvalidRequestError("Invalid refund amount")
    reason = (reason or "").strip()[:500] or None

    if idempotency_key:
        existing = repository.find_refund_by_key(idempotency_key)
        if existing:
            if existing.get("order_id") != order_id:
                raise ConflictError("Idempotency-Key already used for another order")
            return {"refund": existing, "order": serialize_order(_get_order(order_id)), "replayed": True}

    order = _get_order(order_id)
    if order.get("status") not in (STATUS_COMPLETED, STATUS_REFUNDED):
        raise ConflictError("Only completed orders can be refunded", status=order.get("status"))
    already = int(order.get("refunded_pence") or 0)
    refundable = max(0, int(order.get("total") or 0) - already)
    if amount_pence > refundable:
        raise ConflictError("Refund amount exceeds refundable amount", refundable=to_major(refundable))

    key = idempotency_key or f"refund-{order_id}-{already}-{amount_pence}"
    stripe_refund = stripe_client.create_refund(
        payment_intent_id=order["payment_intent_id"],
        amount=amount_pence,
        metadata={"orderId": order_id, "reason": reason or ""},
        idempotency_key=key,
    )
    row = {
        "order_id": order_id,
        "amount_pence": amount_pence,
        "currency": order.get("currency"),
        "reason": reason,
        "stripe_refund_id": stripe_refund.get("id"),
        "idempotency_key": key,
    }
    try:
        refund = repository.insert_refund(row)
    except Exception:
        # Requête concurrente avec la même clé: Stripe a renvoyé le même remboursement
        refund = repository.find_refund_by_key(key)
        if not refund:
            raise
        return {"refund": refund, "order": serialize_order(_get_order(order_id)), "replayed": True}

    updated = _apply_refund_total(order, amount_pence)
    notifications.send_refund_notice(updated, refund)
    logger.info("orders.refund order_id=%s amount=%s stripe_refund=%s", order_id, amount_pence, stripe_refund.get("id"))
    return {"refund": refund, "order": serialize_order(updated), "replayed": False}
