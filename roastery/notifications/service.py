"""
Notifications transactionnelles (fire-and-forget).

Aucune fonction publique ne lève: chaque échec est journalisé avec l'id de
commande et le type d'email, puis noté sur la commande (metadata
<kind>EmailSent=false, <kind>EmailError) pour un renvoi manuel.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from roastery import config
from roastery.errors import NotificationError
from roastery.orders import repository as orders_repo
from roastery.orders.models import recipient_email, recipient_name
from . import brevo
from . import templates

logger = logging.getLogger(__name__)

KIND_CONFIRMATION = "confirmation"
KIND_ADMIN = "adminNotice"
KIND_SHIPMENT = "shipment"
KIND_REFUND = "refund"

NO_RECIPIENT = "no-recipient"

def _record(order: Dict[str, Any], kind: str, patch: Dict[str, Any]) -> None:
    payment_intent_id = order.get("payment_intent_id")
    if not payment_intent_id:
        return
    try:
        orders_repo.merge_metadata(payment_intent_id, patch)
    except Exception:
        logger.exception("notifications could not record outcome kind=%s order_id=%s", kind, order.get("id"))

def _dispatch(
    kind: str,
    order: Dict[str, Any],
    recipients: List[Dict[str, str]],
    render: Callable[[], Any],
) -> Dict[str, Any]:
    """Rend et envoie un email; convertit toute erreur en résultat {sent: False, ...}."""
    order_id = order.get("id")
    if not recipients:
        logger.warning("notifications.%s skipped, no recipient order_id=%s", kind, order_id)
        _record(order, kind, {f"{kind}EmailSent": False, f"{kind}EmailError": NO_RECIPIENT})
        return {"sent": False, "reason": NO_RECIPIENT}
    if not brevo.is_configured():
        logger.warning("notifications.%s skipped, email not configured order_id=%s", kind, order_id)
        _record(order, kind, {f"{kind}EmailSent": False, f"{kind}EmailError": "not-configured"})
        return {"sent": False, "reason": "not-configured"}
    try:
        subject, html, text = render()
        info = brevo.send_email(to=recipients, subject=subject, html=html, text=text, reply_to=config.SUPPORT_EMAIL or None)
    except NotificationError as e:
        logger.warning("notifications.%s failed order_id=%s error=%s", kind, order_id, e)
        return _failed(order, kind, e)
    except Exception as e:
        # Erreur de rendu ou inattendue: même traitement, avec la trace complète
        logger.exception("notifications.%s failed order_id=%s", kind, order_id)
        return _failed(order, kind, e)
    _record(order, kind, {f"{kind}EmailSent": True, f"{kind}EmailSentAt": datetime.now(timezone.utc).isoformat()})
    logger.info("notifications.%s sent order_id=%s", kind, order_id)
    return {"sent": True, "info": info}

def _failed(order: Dict[str, Any], kind: str, e: Exception) -> Dict[str, Any]:
    _record(order, kind, {
        f"{kind}EmailSent": False,
        f"{kind}EmailError": str(e)[:500],
        f"{kind}EmailAttemptedAt": datetime.now(timezone.utc).isoformat(),
    })
    return {"sent": False, "reason": "send-failed", "error": str(e)}

def _customer(order: Dict[str, Any]) -> List[Dict[str, str]]:
    email = recipient_email(order)
    return [{"email": email, "name": recipient_name(order)}] if email else []

# module roastery.notifications.service
def send_order_confirmation(order: Dict[str, Any]) -> Dict[str, Any]:
    return _dispatch(KIND_CONFIRMATION, order, _customer(order), lambda: templates.order_confirmation(order))

def send_admin_order_notice(order: Dict[str, Any]) -> Dict[str, Any]:
    recipients = [{"email": e} for e in config.ADMIN_NOTIFICATION_EMAILS]
    return _dispatch(KIND_ADMIN, order, recipients, lambda: templates.admin_order_notice(order))

def send_shipment_notice(
    order: Dict[str, Any],
    carrier: str,
    tracking_code: Optional[str] = None,
    estimated_delivery: Optional[str] = None,
) -> Dict[str, Any]:
    return _dispatch(
        KIND_SHIPMENT, order, _customer(order),
        lambda: templates.shipment_notice(order, carrier, tracking_code, estimated_delivery),
    )

def send_refund_notice(order: Dict[str, Any], refund: Dict[str, Any]) -> Dict[str, Any]:
    return _dispatch(KIND_REFUND, order, _customer(order), lambda: templates.refund_notice(order, refund))
