"""
Gestionnaires d’exceptions utilisés par la factory.
- CheckoutError (et sous-classes): JSON {"error": ...} avec le status porté par l’erreur.
- HTTPException: JSON {"detail": ...} inchangé pour les clients programmatiques.
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from roastery.errors import CheckoutError, ProcessorCallError, ProcessorConfigError, ReconciliationDataError

logger = logging.getLogger(__name__)

def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre les handlers d’erreurs métier et HTTP.
    - Les erreurs 5xx sont journalisées avec leur détail interne; le client ne reçoit que le message public.
    """
    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        if isinstance(exc, ProcessorConfigError):
            logger.critical("Stripe configuration missing path=%s detail=%s", request.url.path, exc.detail)
        elif isinstance(exc, ProcessorCallError):
            logger.error("Stripe call failed path=%s detail=%s", request.url.path, exc.detail)
        elif isinstance(exc, ReconciliationDataError):
            logger.critical("Reconciliation failed intent=%s detail=%s", exc.payment_intent_id, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))
