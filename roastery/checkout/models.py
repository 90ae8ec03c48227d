"""
Modèles du checkout (montants en pence).
"""
from typing import Any, Dict

from pydantic import BaseModel

from roastery.config import (
    STRIPE_CURRENCY,
    DEFAULT_DELIVERY_FEE_PENCE,
    DEFAULT_FREE_SHIPPING_THRESHOLD_PENCE,
    DEFAULT_FREE_SHIPPING_ENABLED,
)
from roastery.utils.money import to_major

class VerifiedLine(BaseModel):
    item_id: str
    name: str
    quantity: int
    unit_price: int
    line_total: int
    source: str

    def to_metadata(self) -> Dict[str, Any]:
        """Forme compacte stockée dans la metadata Stripe et dans orders.items."""
        return {
            "id": self.item_id,
            "name": self.name,
            "qty": self.quantity,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
            "source": self.source,
        }

class ShippingSettings(BaseModel):
    delivery_fee_pence: int = DEFAULT_DELIVERY_FEE_PENCE
    free_shipping_threshold_pence: int = DEFAULT_FREE_SHIPPING_THRESHOLD_PENCE
    free_shipping_enabled: bool = DEFAULT_FREE_SHIPPING_ENABLED

class CheckoutTotals(BaseModel):
    subtotal: int
    shipping_fee: int
    grand_total: int
    currency: str = STRIPE_CURRENCY

    def to_major(self) -> Dict[str, Any]:
        return {
            "subtotal": to_major(self.subtotal),
            "shipping": to_major(self.shipping_fee),
            "total": to_major(self.grand_total),
            "currency": self.currency,
        }
