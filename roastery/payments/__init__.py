"""
Module 'payments' (feature-first): point d'entrée public.
Réunit metadata Stripe, client Stripe et cas d'usage checkout.
"""

from .metadata import build_intent_metadata, decode_payment_metadata, DecodedPayment, MetadataError
from .stripe_client import (
    require_stripe,
    create_payment_intent,
    update_metadata,
    retrieve_intent,
    create_refund,
    parse_event,
    truncate_value,
)
from .service import create_checkout_intent, confirm_payment, handle_event

__all__ = [
    # metadata
    "build_intent_metadata",
    "decode_payment_metadata",
    "DecodedPayment",
    "MetadataError",
    # stripe
    "require_stripe",
    "create_payment_intent",
    "update_metadata",
    "retrieve_intent",
    "create_refund",
    "parse_event",
    "truncate_value",
    # services
    "create_checkout_intent",
    "confirm_payment",
    "handle_event",
]
