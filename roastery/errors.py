"""
Erreurs métier du checkout et de la réconciliation des commandes.

Chaque erreur porte un status_code HTTP et un message public; les handlers
enregistrés dans roastery.app_setup.exceptions les transforment en
JSONResponse {"error": message}.
"""
from typing import Any, Dict, Optional

GENERIC_SERVER_MESSAGE = "Payment service unavailable, please try again later"

class CheckoutError(Exception):
    status_code = 500
    public_message = GENERIC_SERVER_MESSAGE

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message}

class CartValidationError(CheckoutError):
    """
    Panier rejeté en bloc (jamais de vérification partielle).
    - reason: ProductNotFound | PriceMismatch | InvalidQuantity | EmptyCart | CartTooLarge | InsufficientStock
    - item_id / claimed / authoritative: contexte pour l'UI (cache panier obsolète)
    """
    status_code = 400

    PRODUCT_NOT_FOUND = "ProductNotFound"
    PRICE_MISMATCH = "PriceMismatch"
    INVALID_QUANTITY = "InvalidQuantity"
    EMPTY_CART = "EmptyCart"
    CART_TOO_LARGE = "CartTooLarge"
    INSUFFICIENT_STOCK = "InsufficientStock"

    def __init__(
        self,
        reason: str,
        message: str,
        *,
        item_id: Optional[str] = None,
        claimed: Optional[str] = None,
        authoritative: Optional[str] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.item_id = item_id
        self.claimed = claimed
        self.authoritative = authoritative

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "reason": self.reason}
        if self.item_id is not None:
            payload["itemId"] = self.item_id
        if self.claimed is not None:
            payload["claimedPrice"] = self.claimed
        if self.authoritative is not None:
            payload["catalogPrice"] = self.authoritative
        return payload

class ProcessorConfigError(CheckoutError):
    """Configuration Stripe absente (clé secrète, secret webhook): mauvais déploiement."""

    def __init__(self, detail: str = ""):
        super().__init__(GENERIC_SERVER_MESSAGE)
        self.detail = detail

class ProcessorCallError(CheckoutError):
    """
    Appel Stripe en échec (réseau, timeout, rejet).
    - soft=False: création d'intent, la requête échoue (500)
    - soft=True: mise à jour de metadata, l'appelant enregistre la désynchro et continue
    """

    def __init__(self, detail: str = "", *, soft: bool = False):
        super().__init__(GENERIC_SERVER_MESSAGE)
        self.detail = detail
        self.soft = soft

class ReconciliationDataError(CheckoutError):
    """Metadata d'un paiement réussi illisible: aucune commande inventée."""

    def __init__(self, payment_intent_id: str, detail: str):
        super().__init__("Order could not be reconciled")
        self.payment_intent_id = payment_intent_id
        self.detail = detail

class NotificationError(Exception):
    """Échec d'envoi d'email; ne sort jamais du package notifications."""

class InvalidRequestError(CheckoutError):
    status_code = 400

class OrderNotFoundError(CheckoutError):
    status_code = 404
    public_message = "Order not found"

class InvoiceNotFoundError(CheckoutError):
    status_code = 404
    public_message = "Invoice not found"

class ConflictError(CheckoutError):
    status_code = 409

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}
