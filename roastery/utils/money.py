"""
Conversions monétaires: pence (int) en interne, décimales majeures aux frontières API.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

_CENT = Decimal("0.01")

# module roastery.utils.money
def to_decimal(value: Any) -> Optional[Decimal]:
    """Montant majeur tel que reçu (sans arrondi), ou None si ce n'est pas un nombre fini (bool inclus)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None

def to_pence(value: Any) -> Optional[int]:
    """
    Convertit un montant en unités majeures (12.5, "12.50") en pence (1250).
    - Arrondi half-up à 2 décimales avant conversion.
    - Retourne None si la valeur n'est pas un nombre fini (bool inclus).
    """
    amount = to_decimal(value)
    if amount is None:
        return None
    return int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())

def pence_to_decimal(pence: int) -> Decimal:
    return (Decimal(int(pence)) / 100).quantize(_CENT, rounding=ROUND_HALF_UP)

def format_major(pence: int) -> str:
    """1299 -> "12.99" (messages d'erreur, emails)."""
    return f"{pence_to_decimal(pence):.2f}"

def to_major(pence: int) -> float:
    """1299 -> 12.99 (réponses JSON)."""
    return float(pence_to_decimal(pence))

def format_money(pence: int, currency: str = "gbp") -> str:
    symbol = {"gbp": "£", "eur": "€", "usd": "$"}.get((currency or "").lower())
    if symbol:
        return f"{symbol}{format_major(pence)}"
    return f"{format_major(pence)} {(currency or '').upper()}".strip()
