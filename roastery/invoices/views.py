import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from roastery.errors import InvalidRequestError, InvoiceNotFoundError
from roastery.utils.security import require_user
from . import repository as invoices_repo
from .numbering import is_order_number
from . import service as invoices_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/invoices", tags=["Invoices API"])

# module roastery.invoices.views
@router.get("")
def list_invoices(limit: int = 100, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    rows = invoices_repo.list_invoices(limit=max(1, min(limit, 500)))
    return {"invoices": [invoices_service.serialize_invoice(r) for r in rows]}

@router.get("/{invoice_id}")
def get_invoice(invoice_id: str, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """Accepte l'id ou le numéro lisible (INV-...)."""
    if is_order_number(invoice_id):
        row = invoices_repo.get_invoice_by_number(invoice_id)
    else:
        row = invoices_repo.get_invoice(invoice_id)
    if not row:
        raise InvoiceNotFoundError()
    return invoices_service.serialize_invoice(row)

@router.post("", status_code=201)
async def create_invoice(request: Request, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """
    Crée une facture manuelle (source=manual, unpaid).
    - Entrée JSON: {items: [{name, qty, unitPrice}], shipping?, dueDate?, client: {name, email}, notes?}
    """
    try:
        body = await request.json()
    except Exception:
        raise InvalidRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON body")
    invoice = invoices_service.create_manual_invoice(body)
    logger.info("invoices.create by=%s number=%s", user.get("id"), invoice.get("order_number"))
    return invoices_service.serialize_invoice(invoice)

@router.post("/{invoice_id}/mark-paid")
def mark_invoice_paid(invoice_id: str, user: Dict[str, Any] = Depends(require_user)) -> Dict[str, Any]:
    """Marque payée une facture manuelle; 400 pour une facture Stripe."""
    invoice = invoices_service.mark_paid(invoice_id)
    logger.info("invoices.mark_paid by=%s id=%s", user.get("id"), invoice_id)
    return invoices_service.serialize_invoice(invoice)
