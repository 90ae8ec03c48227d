"""
Réconciliation: transforme un paiement Stripe réussi en commande durable, une seule fois.

Machine à états par payment_intent_id:
    (absente) -> pending (provisoire, staging) -> completed
                           +-> failed (tentative refusée, peut encore réussir)
La transition vers completed est une mise à jour conditionnelle unique
(status ∈ COMPLETABLE_STATUSES): seule la requête qui l'obtient déclenche les
effets de bord (stock, facture, emails). Aucun verrou applicatif.

Le stock est décrémenté après la transition; s'il manque, le paiement est
remboursé intégralement et la commande passe à refunded (needsAttention).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel

from roastery.catalog import repository as catalog_repo
from roastery.errors import ProcessorCallError, ProcessorConfigError, ReconciliationDataError
from roastery.invoices import service as invoices_service
from roastery.notifications import service as notifications
from roastery.payments import stripe_client
from roastery.payments.metadata import MetadataError, decode_payment_metadata
from . import repository
from .models import (
    COMPLETABLE_STATUSES,
    OPEN_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_REFUNDED,
    PaymentSuccess,
    provisional_row,
)

logger = logging.getLogger(__name__)

STOCK_REFUND_REASON = "insufficient stock"

class ReconcileResult(BaseModel):
    order: Optional[Dict[str, Any]] = None
    transitioned: bool = False

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _flag_needs_attention(payment_intent_id: str, detail: str) -> None:
    """Marque une commande encore ouverte comme à traiter manuellement (statut inchangé)."""
    try:
        repository.merge_metadata(
            payment_intent_id,
            {"needsAttention": True, "reconciliationError": detail[:500], "reconciliationFailedAt": _now_iso()},
            only_statuses=COMPLETABLE_STATUSES,
        )
    except Exception:
        logger.exception("orders.reconciler could not flag order intent=%s", payment_intent_id)

def _after_completion(order: Dict[str, Any]) -> None:
    """Effets de bord de la première complétion: facture Stripe puis emails (best-effort)."""
    try:
        invoices_service.create_invoice_from_order(order)
    except Exception:
        logger.exception("orders.reconciler invoice creation failed order_id=%s", order.get("id"))
    notifications.send_order_confirmation(order)
    notifications.send_admin_order_notice(order)

def _reserve_stock(order: Dict[str, Any]) -> bool:
    """
    Décrémente le stock des lignes payées (rpc tout-ou-rien, garde stock >= qty).
    - False: stock insuffisant, la commande doit être remboursée.
    - Erreur d'infrastructure: commande signalée, paiement conservé (True).
    """
    payment_intent_id = order.get("payment_intent_id") or ""
    try:
        return catalog_repo.decrement_stock(order.get("items") or [])
    except Exception as e:
        logger.exception("orders.reconciler stock update failed intent=%s", payment_intent_id)
        _merge_quietly(payment_intent_id, {"needsAttention": True, "stockError": str(e)[:500]})
        return True

def _refund_for_stock(order: Dict[str, Any]) -> Dict[str, Any]:
    """Rembourse intégralement une commande payée mais non servie (stock épuisé entre-temps)."""
    payment_intent_id = order.get("payment_intent_id") or ""
    total = int(order.get("total") or 0)
    logger.critical(
        "orders.reconciler insufficient stock after payment intent=%s order_id=%s",
        payment_intent_id, order.get("id"),
    )
    key = f"stock-refund-{payment_intent_id}"
    try:
        refund = stripe_client.create_refund(
            payment_intent_id=payment_intent_id,
            amount=total,
            metadata={"orderId": order.get("id"), "reason": STOCK_REFUND_REASON},
            idempotency_key=key,
        )
    except (ProcessorCallError, ProcessorConfigError) as e:
        logger.critical("orders.reconciler stock refund failed intent=%s detail=%s", payment_intent_id, e.detail)
        _merge_quietly(payment_intent_id, {
            "needsAttention": True,
            "stockIssue": True,
            "refundError": (e.detail or e.message)[:500],
        })
        return order

    now = _now_iso()
    refunded = repository.transition_status(
        payment_intent_id,
        [STATUS_COMPLETED],
        {"status": STATUS_REFUNDED, "refunded_pence": total, "updated_at": now},
    )
    order = refunded or order
    _merge_quietly(payment_intent_id, {
        "needsAttention": True,
        "stockIssue": True,
        "refundId": refund.get("id"),
        "refundReason": STOCK_REFUND_REASON,
        "refundedAt": now,
    })
    refund_row = {
        "order_id": order.get("id"),
        "amount_pence": total,
        "currency": order.get("currency"),
        "reason": STOCK_REFUND_REASON,
        "stripe_refund_id": refund.get("id"),
        "idempotency_key": key,
    }
    try:
        refund_row = repository.insert_refund(refund_row)
    except Exception:
        logger.exception("orders.reconciler stock refund not recorded intent=%s", payment_intent_id)
    notifications.send_refund_notice(order, refund_row)
    return order

def _merge_quietly(payment_intent_id: str, patch: Dict[str, Any]) -> None:
    try:
        repository.merge_metadata(payment_intent_id, patch)
    except Exception:
        logger.exception("orders.reconciler metadata not saved intent=%s keys=%s", payment_intent_id, list(patch))

# module roastery.orders.reconciler
def reconcile(signal: PaymentSuccess) -> ReconcileResult:
    """
    Applique un signal 'paiement réussi'.
    - Metadata invalide: alerte critique, commande laissée absente/ouverte, ReconciliationDataError.
    - Commande absente: créée puis complétée; provisoire: complétée en conservant les adresses.
    - Déjà complétée (événement rejoué): aucune écriture, aucun email.
    """
    payment_intent_id = (signal.payment_intent_id or "").strip()
    if not payment_intent_id:
        logger.critical("orders.reconciler payment success without payment intent id")
        raise ReconciliationDataError("", "payment intent id is missing")

    try:
        decoded = decode_payment_metadata(signal.metadata, amount=signal.amount)
    except MetadataError as e:
        logger.critical(
            "orders.reconciler payment received but order cannot be built intent=%s error=%s",
            payment_intent_id, e,
        )
        _flag_needs_attention(payment_intent_id, str(e))
        raise ReconciliationDataError(payment_intent_id, str(e)) from e

    repository.insert_if_absent(payment_intent_id, provisional_row(decoded.currency))

    now = _now_iso()
    order = repository.transition_status(
        payment_intent_id,
        COMPLETABLE_STATUSES,
        {
            "items": decoded.items,
            "subtotal": decoded.subtotal,
            "shipping_fee": decoded.shipping_fee,
            "total": decoded.total,
            "currency": decoded.currency,
            "status": STATUS_COMPLETED,
            "paid_at": now,
            "updated_at": now,
        },
    )
    if order is None:
        existing = repository.get_by_payment_intent(payment_intent_id)
        logger.info(
            "orders.reconciler duplicate success ignored intent=%s status=%s",
            payment_intent_id, (existing or {}).get("status"),
        )
        return ReconcileResult(order=existing, transitioned=False)

    provenance: Dict[str, Any] = {"pricesVerified": True, "reconciledAt": now, "needsAttention": False}
    if decoded.idempotency_key:
        provenance["idempotencyKey"] = decoded.idempotency_key
    _merge_quietly(payment_intent_id, provenance)

    if not _reserve_stock(order):
        return ReconcileResult(order=_refund_for_stock(order), transitioned=True)

    logger.info(
        "orders.reconciler completed intent=%s order_id=%s total=%s",
        payment_intent_id, order.get("id"), decoded.total,
    )
    _after_completion(order)
    return ReconcileResult(order=order, transitioned=True)

def mark_failed(payment_intent_id: str, reason: str) -> Optional[Dict[str, Any]]:
    """payment_intent.payment_failed: pending/processing -> failed (jamais depuis completed)."""
    if not payment_intent_id:
        return None
    order = repository.transition_status(
        payment_intent_id, OPEN_STATUSES, {"status": STATUS_FAILED, "updated_at": _now_iso()}
    )
    if order is not None:
        repository.merge_metadata(payment_intent_id, {"paymentError": (reason or "")[:500]})
        logger.info("orders.reconciler payment failed intent=%s", payment_intent_id)
    return order

def sync_refund(charge: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    charge.refunded: recopie le cumul remboursé par Stripe (valeur absolue, donc rejouable).
    - status refunded si le remboursement est total.
    """
    payment_intent_id = str(charge.get("payment_intent") or "")
    if not payment_intent_id:
        logger.warning("orders.reconciler charge.refunded without payment_intent charge=%s", charge.get("id"))
        return None
    refunded = int(charge.get("amount_refunded") or 0)
    amount = int(charge.get("amount") or 0)
    fields: Dict[str, Any] = {"refunded_pence": refunded, "updated_at": _now_iso()}
    if amount and refunded >= amount:
        fields["status"] = STATUS_REFUNDED
    order = repository.transition_status(payment_intent_id, [STATUS_COMPLETED, STATUS_REFUNDED], fields)
    if order is None:
        logger.warning("orders.reconciler charge.refunded for unknown or open order intent=%s", payment_intent_id)
    return order
