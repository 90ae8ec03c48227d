"""
Modèles 'orders': statuts, signal de paiement, normalisation des adresses,
et vue lecture des commandes pour l'admin / les factures.
"""
import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from roastery.config import STRIPE_CURRENCY
from roastery.utils.money import to_major

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"

# Statuts pouvant encore passer à failed
OPEN_STATUSES = [STATUS_PENDING, STATUS_PROCESSING]
# Un intent peut réussir après une tentative échouée (nouvelle carte sur le même intent)
COMPLETABLE_STATUSES = [STATUS_PENDING, STATUS_PROCESSING, STATUS_FAILED]
ALL_STATUSES = [STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED, STATUS_REFUNDED]

def provisional_row(currency: str = STRIPE_CURRENCY) -> Dict[str, Any]:
    """Commande provisoire: pending, sans articles ni totaux."""
    return {"status": STATUS_PENDING, "items": [], "currency": currency, "metadata": {}}

class PaymentSuccess(BaseModel):
    """Signal 'paiement réussi' (webhook ou confirmation synchrone)."""
    payment_intent_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    amount: Optional[int] = None
    currency: Optional[str] = None

_STREET_KEYS = ("line1", "address", "address1", "street", "street1", "street_address")
_ALIASES = {
    "firstName": ("firstName", "first_name", "firstname"),
    "lastName": ("lastName", "last_name", "lastname"),
    "email": ("email",),
    "phone": ("phone",),
    "unit": ("unit", "flat", "apartment"),
    "city": ("city",),
    "postcode": ("postcode", "postalCode", "postal_code"),
    "country": ("country",),
}

def _maybe_json(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return None
    return raw

# module roastery.orders.models
def normalize_address(raw: Any) -> Optional[Dict[str, str]]:
    """
    Normalise une adresse saisie côté client.
    - Accepte un dict ou une chaîne JSON, et les alias usuels (first_name, postal_code, street...)
    - Ignore les valeurs non textuelles ou vides
    - Retourne None si rien d'exploitable (ne doit jamais écraser une adresse existante)
    """
    raw = _maybe_json(raw)
    if not isinstance(raw, dict):
        return None
    out: Dict[str, str] = {}
    for key in _STREET_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            out["line1"] = value.strip()
            break
    for target, aliases in _ALIASES.items():
        for alias in aliases:
            value = raw.get(alias)
            if isinstance(value, str) and value.strip():
                out[target] = value.strip()
    return out or None

def normalize_client(raw: Any) -> Optional[Dict[str, str]]:
    raw = _maybe_json(raw)
    if not isinstance(raw, dict):
        return None
    out: Dict[str, str] = {}
    for key in ("name", "email", "phone"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            out[key] = value.strip()
    if "name" not in out:
        first = raw.get("firstName") or raw.get("first_name")
        last = raw.get("lastName") or raw.get("last_name")
        name = " ".join(p.strip() for p in (first, last) if isinstance(p, str) and p.strip())
        if name:
            out["name"] = name
    return out or None

def recipient_email(order: Dict[str, Any]) -> Optional[str]:
    """Email client: client.email, puis adresse de livraison, puis facturation."""
    for key in ("client", "shipping_address", "billing_address"):
        email = (order.get(key) or {}).get("email")
        if isinstance(email, str) and "@" in email:
            return email.strip()
    return None

def recipient_name(order: Dict[str, Any]) -> str:
    client = order.get("client") or {}
    if client.get("name"):
        return str(client["name"])
    shipping = order.get("shipping_address") or {}
    name = " ".join(p for p in (shipping.get("firstName"), shipping.get("lastName")) if p)
    return name or "customer"

def serialize_order(row: Dict[str, Any]) -> Dict[str, Any]:
    """Vue lecture (admin / factures) d'une ligne 'orders'."""
    subtotal = row.get("subtotal")
    shipping = row.get("shipping_fee")
    total = row.get("total")
    return {
        "id": row.get("id"),
        "paymentIntentId": row.get("payment_intent_id"),
        "items": row.get("items") or [],
        "totals": {
            "subtotal": to_major(subtotal) if subtotal is not None else None,
            "shipping": to_major(shipping) if shipping is not None else None,
            "total": to_major(total) if total is not None else None,
            "currency": row.get("currency"),
        },
        "status": row.get("status"),
        "shippingAddress": row.get("shipping_address"),
        "billingAddress": row.get("billing_address"),
        "client": row.get("client"),
        "shipment": row.get("shipment"),
        "refundedAmount": to_major(row.get("refunded_pence") or 0),
        "paidAt": row.get("paid_at"),
        "createdAt": row.get("created_at"),
        "metadata": row.get("metadata") or {},
    }
