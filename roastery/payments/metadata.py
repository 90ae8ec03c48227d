"""
Sérialisation/désérialisation des métadonnées Stripe (lignes vérifiées, totaux).

Stripe limite chaque valeur à 500 caractères et l'objet à 50 clés: la liste
d'articles est découpée en items_0..items_n quand elle ne tient pas dans "items".
"""
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from roastery import config
from roastery.checkout.models import CheckoutTotals, VerifiedLine
from roastery.errors import CartValidationError

ITEMS_KEY = "items"
ITEMS_CHUNKS_KEY = "items_chunks"
# Clés posées à la création hors items
INTENT_KEYS = ("subtotal", "shipping", "total", "currency", "pricesVerified", "idempotencyKey", ITEMS_CHUNKS_KEY)
# Clés recopiées ensuite par le staging livraison
STAGING_MIRROR_KEYS = (
    "shippingSaved", "shippingAddress", "shippingCity", "shippingPostcode",
    "billingAddress", "customerEmail", "customerName",
)
_RESERVED_KEYS = len(INTENT_KEYS) + len(STAGING_MIRROR_KEYS)

class DecodedPayment(BaseModel):
    """Contenu d'un intent réussi, prêt à être écrit sur la commande."""
    items: List[Dict[str, Any]]
    subtotal: int
    shipping_fee: int
    total: int
    currency: str
    idempotency_key: Optional[str] = None

class MetadataError(ValueError):
    pass

# module roastery.payments.metadata
def _split(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)] or [""]

def build_intent_metadata(
    lines: List[VerifiedLine],
    totals: CheckoutTotals,
    idempotency_key: Optional[str] = None,
) -> Dict[str, str]:
    """
    Construit la metadata reconstructible d'un intent.
    - items: JSON compact [{id, name, qty, unitPrice, lineTotal, source}] (pence)
    - subtotal/shipping/total en pence, pricesVerified="true"
    - Lève CartValidationError(CartTooLarge) si le panier dépasse la capacité Stripe.
    """
    limit = config.STRIPE_METADATA_VALUE_MAX
    items_json = json.dumps([line.to_metadata() for line in lines], separators=(",", ":"), ensure_ascii=False)
    metadata: Dict[str, str] = {
        "subtotal": str(totals.subtotal),
        "shipping": str(totals.shipping_fee),
        "total": str(totals.grand_total),
        "currency": totals.currency,
        "pricesVerified": "true",
    }
    if idempotency_key:
        metadata["idempotencyKey"] = idempotency_key[:limit]

    if len(items_json) <= limit:
        metadata[ITEMS_KEY] = items_json
        return metadata

    chunks = _split(items_json, limit)
    if len(chunks) > config.STRIPE_METADATA_MAX_KEYS - _RESERVED_KEYS:
        raise CartValidationError(CartValidationError.CART_TOO_LARGE, "Cart has too many items for a single payment")
    metadata[ITEMS_CHUNKS_KEY] = str(len(chunks))
    for idx, chunk in enumerate(chunks):
        metadata[f"items_{idx}"] = chunk
    return metadata

def _items_payload(meta: Dict[str, Any]) -> Any:
    if ITEMS_CHUNKS_KEY in meta:
        try:
            count = int(meta[ITEMS_CHUNKS_KEY])
        except (TypeError, ValueError):
            raise MetadataError("items_chunks is not an integer")
        parts = []
        for idx in range(count):
            part = meta.get(f"items_{idx}")
            if not isinstance(part, str):
                raise MetadataError(f"items_{idx} is missing")
            parts.append(part)
        raw = "".join(parts)
    else:
        raw = meta.get(ITEMS_KEY)
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise MetadataError("items metadata is missing")
    try:
        return json.loads(raw)
    except ValueError:
        raise MetadataError("items metadata is not valid JSON")

def _pence_field(meta: Dict[str, Any], key: str) -> int:
    raw = meta.get(key)
    if isinstance(raw, bool) or raw is None:
        raise MetadataError(f"{key} is missing")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        value = int(raw.strip())
    else:
        raise MetadataError(f"{key} is not an integer amount")
    if value < 0:
        raise MetadataError(f"{key} is negative")
    return value

def _decode_item(raw: Any, idx: int) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise MetadataError(f"item {idx} is not an object")
    item_id = raw.get("id")
    name = raw.get("name")
    if not isinstance(item_id, str) or not item_id:
        raise MetadataError(f"item {idx} has no id")
    if not isinstance(name, str):
        raise MetadataError(f"item {idx} has no name")
    qty = raw.get("qty")
    unit_price = raw.get("unitPrice")
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise MetadataError(f"item {idx} has an invalid qty")
    if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
        raise MetadataError(f"item {idx} has an invalid unitPrice")
    line_total = raw.get("lineTotal", unit_price * qty)
    if line_total != unit_price * qty:
        raise MetadataError(f"item {idx} lineTotal does not match unitPrice * qty")
    return {
        "id": item_id,
        "name": name,
        "qty": qty,
        "unitPrice": unit_price,
        "lineTotal": line_total,
        "source": raw.get("source"),
    }

def decode_payment_metadata(meta: Dict[str, Any], *, amount: Optional[int] = None) -> DecodedPayment:
    """
    Décode et valide la metadata d'un intent réussi.
    - Lève MetadataError sur toute donnée absente/malformée (jamais de commande à 0 article).
    - Contrôles: items non vide, somme des lignes == subtotal, subtotal + shipping == total,
      montant encaissé == total (si fourni).
    """
    if not isinstance(meta, dict):
        raise MetadataError("metadata is missing")
    if str(meta.get("pricesVerified", "")).lower() != "true":
        raise MetadataError("pricesVerified flag is missing")

    parsed = _items_payload(meta)
    if not isinstance(parsed, list):
        raise MetadataError("items metadata is not a list")
    if not parsed:
        raise MetadataError("items metadata is empty")
    items = [_decode_item(raw, idx) for idx, raw in enumerate(parsed)]

    subtotal = _pence_field(meta, "subtotal")
    shipping = _pence_field(meta, "shipping")
    total = _pence_field(meta, "total")
    if sum(item["lineTotal"] for item in items) != subtotal:
        raise MetadataError("items do not add up to subtotal")
    if subtotal + shipping != total:
        raise MetadataError("subtotal + shipping does not equal total")
    if amount is not None and int(amount) != total:
        raise MetadataError(f"charged amount {amount} does not equal total {total}")

    currency = str(meta.get("currency") or config.STRIPE_CURRENCY).lower()
    return DecodedPayment(
        items=items,
        subtotal=subtotal,
        shipping_fee=shipping,
        total=total,
        currency=currency,
        idempotency_key=meta.get("idempotencyKey") or None,
    )
