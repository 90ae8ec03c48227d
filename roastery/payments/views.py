import logging
from typing import Any, Dict

from fastapi import APIRouter, Request, Depends, HTTPException
from fastapi.responses import JSONResponse

from roastery.errors import CheckoutError, InvalidRequestError
from roastery.utils.rate_limit import optional_rate_limit
from roastery.payments import stripe_client
from roastery.payments import service as payments_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except Exception:
        raise InvalidRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON body")
    return body

# module roastery.payments.views
@router.post("/create-payment-intent", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
async def create_payment_intent(request: Request):
    """
    Crée un PaymentIntent Stripe pour un panier vérifié côté serveur.
    - Entrée JSON: { "items": [ { "id", "name", "price", "quantity" }, ... ] }
    - En-tête optionnel Idempotency-Key (retries navigateur => même intent)
    - Ouvert aux visiteurs anonymes + rate limit (20 req / 60s)
    - Réponses: {clientSecret, amount, paymentIntentId, ...}; 400 {error} panier invalide; 500 {error}
    """
    body = await _json_body(request)
    idempotency_key = (request.headers.get("idempotency-key") or "").strip() or None
    result = payments_service.create_checkout_intent(body.get("items"), idempotency_key=idempotency_key)
    return JSONResponse(result)

@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe: payment_intent.succeeded / payment_failed, charge.refunded.
    - Signature: valide via stripe_client.parse_event (Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - 400 si signature/payload invalide; 500 si la commande ne peut pas être reconstruite
      (Stripe relivre l'événement, l'opérateur est alerté via les logs)
    """
    try:
        event = await stripe_client.parse_event(request)
    except CheckoutError:
        raise
    except Exception:
        logger.exception("Erreur webhook_stripe: signature ou payload invalide")
        raise HTTPException(status_code=400, detail="Invalid Stripe webhook payload")

    outcome = payments_service.handle_event(event)
    logger.info("payments.webhook type=%s outcome=%s", event.get("type"), outcome)
    return JSONResponse({"received": True})

@router.post("/confirm")
async def confirm_payment(request: Request):
    """
    Alternative sans webhook: confirme l'intent côté Stripe puis réconcilie la commande.
    - Entrée JSON: {"paymentIntentId": "pi_..."} (ou query ?payment_intent=pi_...)
    - 400 si l'intent n'est pas 'succeeded'
    """
    payment_intent_id = request.query_params.get("payment_intent")
    if not payment_intent_id:
        body = await _json_body(request)
        payment_intent_id = body.get("paymentIntentId")
    result = payments_service.confirm_payment(str(payment_intent_id or ""))
    return JSONResponse(result)
