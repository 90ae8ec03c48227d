import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from roastery.errors import InvalidRequestError, OrderNotFoundError
from roastery.utils.rate_limit import optional_rate_limit
from roastery.utils.security import require_user
from . import repository as orders_repo
from . import service as orders_service
from . import staging
from .models import ALL_STATUSES, serialize_order

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/orders", tags=["Orders API"])

async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except Exception:
        raise InvalidRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON body")
    return body

# module roastery.orders.views
@router.post("/save-shipping", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
async def save_shipping(request: Request):
    """
    Enregistre livraison/facturation/contact pour un PaymentIntent (checkout anonyme).
    - Entrée JSON: {paymentIntentId, shippingAddress?, billingAddress?, client?}
    - Fusion non destructive; appelable plusieurs fois, avant ou après le webhook
    - Répond {success: true} même si la synchro metadata Stripe échoue (désynchro notée sur la commande)
    """
    body = await _json_body(request)
    payment_intent_id = str(body.get("paymentIntentId") or "").strip()
    if not payment_intent_id.startswith("pi_"):
        raise InvalidRequestError("paymentIntentId is missing or invalid")
    try:
        staging.stage(
            payment_intent_id,
            shipping_address=body.get("shippingAddress"),
            billing_address=body.get("billingAddress"),
            client=body.get("client"),
        )
    except Exception:
        logger.exception("Erreur save_shipping intent=%s", payment_intent_id)
        return JSONResponse(status_code=500, content={"error": "Could not save shipping details"})
    return JSONResponse({"success": True})

@router.get("")
def list_orders(status: Optional[str] = None, limit: int = 100, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """Liste admin des commandes (récentes d'abord), filtre optionnel ?status=."""
    if status and status not in ALL_STATUSES:
        raise InvalidRequestError(f"Unknown status '{status}'")
    rows = orders_repo.list_orders(status=status, limit=max(1, min(limit, 500)))
    return {"orders": [serialize_order(r) for r in rows]}

@router.get("/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    row = orders_repo.get_by_id(order_id)
    if not row:
        raise OrderNotFoundError()
    return serialize_order(row)

@router.post("/{order_id}/shipment")
async def record_shipment(order_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Déclare l'expédition: {provider, trackingCode?, estimatedDelivery? (YYYY-MM-DD)}.
    - Email d'expédition best-effort (échec noté sur la commande)
    """
    body = await _json_body(request)
    return orders_service.record_shipment(
        order_id,
        body.get("provider"),
        tracking_code=body.get("trackingCode"),
        estimated_delivery=body.get("estimatedDelivery"),
    )

@router.post("/{order_id}/refund")
async def refund_order(order_id: str, request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Rembourse tout ou partie d'une commande: {amount, reason?} + en-tête Idempotency-Key.
    - 404 commande inconnue, 409 montant > remboursable, 500 si Stripe refuse
    """
    body = await _json_body(request)
    idempotency_key = (request.headers.get("idempotency-key") or str(body.get("idempotencyKey") or "")).strip() or None
    result = orders_service.refund_order(order_id, body.get("amount"), reason=body.get("reason"), idempotency_key=idempotency_key)
    logger.info("orders.refund by=%s order_id=%s replayed=%s", user.get("id"), order_id, result.get("replayed"))
    return result
