"""
Staging livraison/facturation: enregistre les coordonnées client avant que le
paiement soit confirmé, indexées par payment_intent_id.

- Crée une commande provisoire 'pending' sans articles si besoin.
- Fusion au niveau colonne: un champ omis ou vide ne remplace jamais une valeur existante.
- Ne change jamais le statut (transition réservée au reconciler).
- Le miroir vers la metadata Stripe est best-effort: un échec est noté sur la commande.
- Commande déjà payée sans destinataire: la confirmation part au premier email connu.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from roastery.errors import ProcessorCallError, ProcessorConfigError
from roastery.notifications import service as notifications
from roastery.notifications.service import NO_RECIPIENT
from roastery.payments import stripe_client
from . import repository
from .models import STATUS_COMPLETED, normalize_address, normalize_client, provisional_row, recipient_email

logger = logging.getLogger(__name__)

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _stripe_patch(shipping: Optional[Dict[str, str]], billing: Optional[Dict[str, str]], client: Optional[Dict[str, str]]) -> Dict[str, str]:
    patch: Dict[str, str] = {"shippingSaved": "true"}
    if shipping:
        patch["shippingAddress"] = json.dumps(shipping, separators=(",", ":"), ensure_ascii=False)
        if shipping.get("city"):
            patch["shippingCity"] = shipping["city"]
        if shipping.get("postcode"):
            patch["shippingPostcode"] = shipping["postcode"]
    if billing:
        patch["billingAddress"] = json.dumps(billing, separators=(",", ":"), ensure_ascii=False)
    if client:
        if client.get("email"):
            patch["customerEmail"] = client["email"]
        if client.get("name"):
            patch["customerName"] = client["name"]
    return patch

def _mirror_to_stripe(payment_intent_id: str, patch: Dict[str, str]) -> bool:
    """Copie un résumé dans la metadata de l'intent; l'échec est enregistré, jamais propagé."""
    try:
        stripe_client.update_metadata(payment_intent_id, patch)
    except (ProcessorCallError, ProcessorConfigError) as e:
        detail = getattr(e, "detail", "") or str(e)
        logger.warning("orders.staging stripe metadata sync failed intent=%s error=%s", payment_intent_id, detail)
        try:
            repository.merge_metadata(payment_intent_id, {
                "stripeMetadataSaved": False,
                "stripeMetadataError": detail[:500],
                "stripeMetadataAttemptedAt": _now_iso(),
            })
        except Exception:
            logger.exception("orders.staging could not record stripe desync intent=%s", payment_intent_id)
        return False
    return True

def _send_pending_confirmation(payment_intent_id: str, row: Optional[Dict[str, Any]]) -> None:
    """
    Paiement réconcilié avant le staging: la confirmation a été sautée faute de destinataire.
    - Envoyée une seule fois, dès qu'un email est connu.
    - Réservation par fusion conditionnelle (confirmationEmailError == no-recipient).
    """
    if not row or row.get("status") != STATUS_COMPLETED or not recipient_email(row):
        return
    if (row.get("metadata") or {}).get("confirmationEmailError") != NO_RECIPIENT:
        return
    try:
        claimed = repository.merge_metadata(
            payment_intent_id,
            {"confirmationEmailError": None, "confirmationEmailRetriedAt": _now_iso()},
            only_statuses=[STATUS_COMPLETED],
            only_if={"confirmationEmailError": NO_RECIPIENT},
        )
    except Exception:
        logger.exception("orders.staging could not claim pending confirmation intent=%s", payment_intent_id)
        return
    if claimed:
        logger.info("orders.staging sending confirmation skipped at reconciliation intent=%s", payment_intent_id)
        notifications.send_order_confirmation(row)

# module roastery.orders.staging
def stage(
    payment_intent_id: str,
    shipping_address: Any = None,
    billing_address: Any = None,
    client: Any = None,
) -> Dict[str, Any]:
    """
    Enregistre adresse(s) et contact pour un intent.
    - Appelable 0..n fois, avant ou après la réconciliation (opérations commutatives).
    - Les erreurs base de données sont propagées (rien n'est perdu silencieusement).
    Retour: {"stagedFields": [...], "stripeMetadataSaved": bool}
    """
    shipping = normalize_address(shipping_address)
    billing = normalize_address(billing_address)
    contact = normalize_client(client)

    repository.insert_if_absent(payment_intent_id, provisional_row())

    fields: Dict[str, Any] = {}
    if shipping:
        fields["shipping_address"] = shipping
    if billing:
        fields["billing_address"] = billing
    if contact:
        fields["client"] = contact
    staged: List[str] = sorted(fields)

    if fields:
        now = _now_iso()
        row = repository.update_fields(payment_intent_id, {**fields, "updated_at": now})
        repository.merge_metadata(payment_intent_id, {"shippingConfirmed": True, "shippingSavedAt": now})
        logger.info("orders.staging saved intent=%s fields=%s", payment_intent_id, staged)
        _send_pending_confirmation(payment_intent_id, row)

    synced = _mirror_to_stripe(payment_intent_id, _stripe_patch(shipping, billing, contact))
    return {"stagedFields": staged, "stripeMetadataSaved": synced}
