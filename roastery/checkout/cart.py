"""
Vérification du panier: re-price chaque ligne contre l'oracle de prix.

Tout ou rien: une seule ligne invalide rejette le panier entier.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from roastery.catalog import pricing
from roastery.config import PRICE_TOLERANCE_PENCE
from roastery.errors import CartValidationError
from roastery.utils.money import format_major, pence_to_decimal, to_decimal, to_pence
from .models import VerifiedLine

_TOLERANCE = Decimal(PRICE_TOLERANCE_PENCE) / 100

# module roastery.checkout.cart
def _line_id(line: Dict[str, Any]) -> str:
    raw = line.get("id")
    if raw is None:
        raw = line.get("itemId")
    return str(raw).strip() if raw is not None else ""

def _claimed_price(line: Dict[str, Any]) -> Any:
    if "price" in line:
        return line.get("price")
    return line.get("claimedUnitPrice")

def parse_quantity(raw: Any) -> Optional[int]:
    """
    Quantité entière strictement positive, sinon None.
    - bool refusé (True n'est pas 1 article)
    - float entier accepté (2.0 -> 2), "2" accepté
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        qty = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            return None
        qty = int(raw)
    elif isinstance(raw, str) and raw.strip().isdigit():
        qty = int(raw.strip())
    else:
        return None
    return qty if qty > 0 else None

def verify_cart(lines: Any) -> List[VerifiedLine]:
    """
    Valide un panier client [{id, name, price, quantity}, ...].
    - EmptyCart: liste absente/vide
    - InvalidQuantity: quantité non entière ou <= 0
    - ProductNotFound: id introuvable dans le catalogue
    - PriceMismatch: |prix client - prix catalogue| > tolérance (prix client non arrondi)
    - InsufficientStock: quantité cumulée par article > stock suivi (stock null = non suivi)
    Retour: lignes vérifiées au prix catalogue (jamais au prix client).
    """
    if not isinstance(lines, list) or not lines:
        raise CartValidationError(CartValidationError.EMPTY_CART, "Cart is empty")

    verified: List[VerifiedLine] = []
    requested: Dict[str, int] = {}
    for line in lines:
        if not isinstance(line, dict):
            raise CartValidationError(CartValidationError.PRODUCT_NOT_FOUND, "Invalid cart line")
        item_id = _line_id(line)

        quantity = parse_quantity(line.get("quantity"))
        if quantity is None:
            raise CartValidationError(
                CartValidationError.INVALID_QUANTITY,
                f"Invalid quantity for item '{item_id}': {line.get('quantity')!r}",
                item_id=item_id,
            )

        resolved = pricing.resolve_price(item_id) if item_id else None
        if resolved is None:
            raise CartValidationError(
                CartValidationError.PRODUCT_NOT_FOUND,
                f"Product not found: '{item_id}'",
                item_id=item_id,
            )

        raw_claimed = _claimed_price(line)
        claimed = to_decimal(raw_claimed)
        # Comparaison sur la valeur reçue, sans arrondi préalable au penny
        if claimed is None or abs(claimed - pence_to_decimal(resolved.unit_price)) > _TOLERANCE:
            claimed_pence = to_pence(raw_claimed)
            claimed_label = format_major(claimed_pence) if claimed_pence is not None else str(raw_claimed)
            catalog_label = format_major(resolved.unit_price)
            raise CartValidationError(
                CartValidationError.PRICE_MISMATCH,
                f"Price mismatch for item '{item_id}': claimed {claimed_label}, catalog price {catalog_label}",
                item_id=item_id,
                claimed=claimed_label,
                authoritative=catalog_label,
            )

        requested[item_id] = requested.get(item_id, 0) + quantity
        if resolved.stock is not None and requested[item_id] > resolved.stock:
            raise CartValidationError(
                CartValidationError.INSUFFICIENT_STOCK,
                f"Insufficient stock for item '{item_id}': {max(resolved.stock, 0)} available",
                item_id=item_id,
            )

        verified.append(
            VerifiedLine(
                item_id=item_id,
                name=resolved.name,
                quantity=quantity,
                unit_price=resolved.unit_price,
                line_total=resolved.unit_price * quantity,
                source=resolved.source,
            )
        )
    return verified
