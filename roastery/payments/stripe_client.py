"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.

Les objets Stripe sont convertis en dict simples avant de quitter ce module.
"""
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import Request

from roastery import config
from roastery.errors import ProcessorCallError, ProcessorConfigError

logger = logging.getLogger(__name__)

# module roastery.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY.
    - Lève ProcessorConfigError si la clé est absente (déploiement incomplet).
    """
    if not config.STRIPE_SECRET_KEY:
        logger.critical("STRIPE_SECRET_KEY is not configured")
        raise ProcessorConfigError("Payment processor is not configured")
    stripe.api_key = config.STRIPE_SECRET_KEY
    return stripe

def to_plain(obj: Any) -> Any:
    """Convertit récursivement un StripeObject (ou liste) en types Python natifs."""
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_plain(to_dict())
    return obj

def create_payment_intent(
    *,
    amount: int,
    currency: str,
    metadata: Dict[str, str],
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée un PaymentIntent Stripe.
    - amount: total en pence
    - idempotency_key: transmis au mécanisme natif de Stripe (même clé => même intent)
    Retour: dict intent ({"id": "pi_...", "client_secret": "...", "amount": ...})
    """
    require_stripe()
    kwargs: Dict[str, Any] = {
        "amount": amount,
        "currency": currency,
        "automatic_payment_methods": {"enabled": True},
        "metadata": metadata,
    }
    if idempotency_key:
        kwargs["idempotency_key"] = idempotency_key
    try:
        intent = stripe.PaymentIntent.create(**kwargs)
    except stripe.StripeError as e:
        logger.exception("stripe.PaymentIntent.create failed amount=%s idempotency_key=%s", amount, idempotency_key)
        raise ProcessorCallError(str(e)) from e
    return to_plain(intent)

def truncate_value(value: Any, limit: Optional[int] = None, marker: Optional[str] = None) -> str:
    """
    Tronque une valeur de metadata de façon déterministe: préfixe conservé + marqueur.
    """
    limit = limit or config.STRIPE_METADATA_VALUE_MAX
    marker = config.STRIPE_METADATA_TRUNCATION_MARKER if marker is None else marker
    text = "" if value is None else str(value)
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(marker))] + marker

def update_metadata(intent_id: str, patch: Dict[str, Any]) -> Dict[str, str]:
    """
    Fusionne des paires clé/valeur dans la metadata d'un intent.
    - Stripe fusionne clé par clé côté serveur: seules les clés du patch sont envoyées.
    - Valeurs tronquées à la limite Stripe plutôt que de faire échouer l'appel.
    - Échec => ProcessorCallError(soft=True), à enregistrer par l'appelant.
    """
    require_stripe()
    cleaned = {str(k): truncate_value(v) for k, v in (patch or {}).items()}
    if not cleaned:
        return cleaned
    try:
        stripe.PaymentIntent.modify(intent_id, metadata=cleaned)
    except stripe.StripeError as e:
        logger.warning("stripe.PaymentIntent.modify failed intent=%s error=%s", intent_id, e)
        raise ProcessorCallError(str(e), soft=True) from e
    return cleaned

def retrieve_intent(intent_id: str) -> Dict[str, Any]:
    require_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(intent_id)
    except stripe.StripeError as e:
        logger.exception("stripe.PaymentIntent.retrieve failed intent=%s", intent_id)
        raise ProcessorCallError(str(e)) from e
    return to_plain(intent)

def create_refund(
    *,
    payment_intent_id: str,
    amount: int,
    metadata: Dict[str, Any],
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Remboursement (partiel ou total) d'un intent; idempotency_key natif Stripe."""
    require_stripe()
    kwargs: Dict[str, Any] = {
        "payment_intent": payment_intent_id,
        "amount": amount,
        "reason": "requested_by_customer",
        "metadata": {str(k): truncate_value(v) for k, v in (metadata or {}).items()},
    }
    if idempotency_key:
        kwargs["idempotency_key"] = idempotency_key
    try:
        refund = stripe.Refund.create(**kwargs)
    except stripe.StripeError as e:
        logger.exception("stripe.Refund.create failed intent=%s amount=%s", payment_intent_id, amount)
        raise ProcessorCallError(str(e)) from e
    return to_plain(refund)

async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook).
    - Lit le body brut + en-tête Stripe-Signature
    - Valide la signature via Webhook.construct_event (STRIPE_WEBHOOK_SECRET)
    Retour: l’event converti en dict si la signature est valide.
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.critical("STRIPE_WEBHOOK_SECRET is not configured")
        raise ProcessorConfigError("Webhook secret is not configured")
    require_stripe()
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    event = stripe.Webhook.construct_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET)
    return to_plain(event)
