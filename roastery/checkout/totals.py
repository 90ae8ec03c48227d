"""
Calcul des totaux (fonction pure, sans I/O).
"""
from typing import Iterable, Optional

from roastery.config import STRIPE_CURRENCY
from .models import CheckoutTotals, ShippingSettings, VerifiedLine

# module roastery.checkout.totals
def shipping_fee_for(subtotal: int, settings: ShippingSettings) -> int:
    """Port offert si activé et sous-total strictement supérieur au seuil, sinon forfait."""
    if settings.free_shipping_enabled and subtotal > settings.free_shipping_threshold_pence:
        return 0
    return max(0, int(settings.delivery_fee_pence))

def compute_totals(
    lines: Iterable[VerifiedLine],
    settings: Optional[ShippingSettings] = None,
    currency: str = STRIPE_CURRENCY,
) -> CheckoutTotals:
    settings = settings or ShippingSettings()
    subtotal = sum(line.line_total for line in lines)
    fee = shipping_fee_for(subtotal, settings)
    return CheckoutTotals(subtotal=subtotal, shipping_fee=fee, grand_total=subtotal + fee, currency=currency)
