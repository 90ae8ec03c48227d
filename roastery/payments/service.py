"""
Cas d'usage 'payments': orchestre panier, totaux, metadata et Stripe.
"""
import logging
from typing import Any, Dict, Optional

from roastery.checkout import cart as cart_logic
from roastery.checkout import totals as totals_logic
from roastery.errors import InvalidRequestError
from roastery.orders import reconciler
from roastery.orders.models import PaymentSuccess
from roastery.store_settings import repository as settings_repo
from . import stripe_client
from . import metadata as meta

logger = logging.getLogger(__name__)

def create_checkout_intent(items: Any, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
    """
    Vérifie le panier côté serveur puis crée l'intent Stripe.
    - Les erreurs panier (CartValidationError) sont levées avant tout appel Stripe.
    - idempotency_key: transmis tel quel à Stripe (retries navigateur => même intent).
    Retour: {clientSecret, amount, paymentIntentId, subtotal, shipping, total, currency}
    """
    lines = cart_logic.verify_cart(items)
    settings = settings_repo.get_shipping_settings()
    totals = totals_logic.compute_totals(lines, settings)
    metadata = meta.build_intent_metadata(lines, totals, idempotency_key)

    intent = stripe_client.create_payment_intent(
        amount=totals.grand_total,
        currency=totals.currency,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )
    logger.info(
        "payments.intent created intent=%s amount=%s lines=%s",
        intent.get("id"), totals.grand_total, len(lines),
    )
    return {
        "clientSecret": intent.get("client_secret"),
        "amount": totals.grand_total,
        "paymentIntentId": intent.get("id"),
        **totals.to_major(),
    }

def signal_from_intent(intent: Dict[str, Any]) -> PaymentSuccess:
    """Construit le signal de réconciliation depuis un PaymentIntent (webhook ou retrieve)."""
    amount = intent.get("amount_received") or intent.get("amount")
    return PaymentSuccess(
        payment_intent_id=str(intent.get("id") or ""),
        metadata=intent.get("metadata") or {},
        amount=int(amount) if amount is not None else None,
        currency=intent.get("currency"),
    )

def confirm_payment(payment_intent_id: str) -> Dict[str, Any]:
    """
    Confirmation synchrone (sans attendre le webhook).
    - Récupère l'intent, exige status == succeeded puis réconcilie.
    - Sans effet de bord supplémentaire si le webhook est déjà passé.
    """
    if not payment_intent_id or not str(payment_intent_id).startswith("pi_"):
        raise InvalidRequestError("paymentIntentId is missing or invalid")
    intent = stripe_client.retrieve_intent(payment_intent_id)
    status = intent.get("status") or ""
    if status != "succeeded":
        raise InvalidRequestError(f"Payment not completed (status={status})")
    result = reconciler.reconcile(signal_from_intent(intent))
    order = result.order or {}
    return {
        "status": order.get("status"),
        "orderId": order.get("id"),
        "alreadyCompleted": not result.transitioned,
    }

def handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Aiguillage des événements Stripe.
    - payment_intent.succeeded: réconciliation (idempotente)
    - payment_intent.payment_failed: commande en attente -> failed
    - charge.refunded: synchronisation du montant remboursé
    Les autres types sont ignorés.
    """
    event_type = (event or {}).get("type") or ""
    data_obj = ((event or {}).get("data") or {}).get("object") or {}

    if event_type == "payment_intent.succeeded":
        result = reconciler.reconcile(signal_from_intent(data_obj))
        return {"handled": event_type, "transitioned": result.transitioned}
    if event_type == "payment_intent.payment_failed":
        error = (data_obj.get("last_payment_error") or {}).get("message") or "payment failed"
        reconciler.mark_failed(str(data_obj.get("id") or ""), error)
        return {"handled": event_type}
    if event_type == "charge.refunded":
        reconciler.sync_refund(data_obj)
        return {"handled": event_type}
    logger.info("payments.webhook ignored type=%s", event_type)
    return {"handled": None}
