"""
Contenu des emails transactionnels (sujet, HTML sobre noir & blanc, texte brut).

Les corps sont rendus par Jinja2 depuis notifications/email_templates:
un couple <kind>.html / <kind>.txt par type d'email, le HTML étendant base.html.
L'autoescape n'est actif que pour les gabarits .html.
"""
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from jinja2 import Environment, PackageLoader, select_autoescape

from roastery import config
from roastery.utils.money import format_money
from roastery.orders.models import recipient_name

CARRIERS = {
    "royal-mail": "Royal Mail",
    "dpd": "DPD",
    "evri": "Evri",
    "ups": "UPS",
    "dhl": "DHL",
    "fedex": "FedEx",
    "parcelforce": "Parcelforce",
    "yodel": "Yodel",
}

Rendered = Tuple[str, str, str]

env = Environment(
    loader=PackageLoader("roastery", "notifications/email_templates"),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=True),
    trim_blocks=True,
    lstrip_blocks=True,
)

# module roastery.notifications.templates
def tracking_url(provider: str, code: Optional[str], postcode: Optional[str] = None) -> Optional[str]:
    """URL de suivi transporteur, ou None si code absent / transporteur inconnu."""
    clean = (code or "").replace(" ", "").strip()
    if not clean:
        return None
    c = quote(clean, safe="")
    if provider == "royal-mail":
        return f"https://www.royalmail.com/track-your-item#/tracking-results/{c}"
    if provider == "dpd":
        pc = quote((postcode or "").replace(" ", ""), safe="")
        return f"https://www.dpd.co.uk/apps/tracking/?parcel={c}&postcode={pc}"
    if provider == "evri":
        return f"https://www.evri.com/track-a-parcel?parcelCode={c}"
    if provider == "ups":
        return f"https://www.ups.com/track?loc=en_GB&tracknum={c}&requester=ST/trackdetails"
    if provider == "dhl":
        return f"https://www.dhl.com/gb-en/home/tracking/tracking-express.html?submit=1&tracking-id={c}"
    if provider == "fedex":
        return f"https://www.fedex.com/fedextrack/?trknbr={c}&cntry_code=gb"
    if provider == "parcelforce":
        return f"https://www.parcelforce.com/track-trace?trackNumber={c}"
    if provider == "yodel":
        return f"https://www.yodel.co.uk/tracking/{c}"
    return None

def render(name: str, **context: Any) -> Tuple[str, str]:
    """Rend <name>.html et <name>.txt avec le même contexte (pied de page société inclus)."""
    context.setdefault("company", config.COMPANY_NAME)
    context.setdefault("support_email", config.SUPPORT_EMAIL)
    html = env.get_template(f"{name}.html").render(**context)
    text = env.get_template(f"{name}.txt").render(**context)
    return html, text.strip()

def _reference(order: Dict[str, Any]) -> str:
    return str(order.get("id") or order.get("payment_intent_id") or "")[:8].upper()

def _item_rows(order: Dict[str, Any]) -> List[Dict[str, Any]]:
    currency = order.get("currency") or "gbp"
    return [
        {
            "name": str(item.get("name") or item.get("id") or "Item"),
            "qty": int(item.get("qty") or 0),
            "total": format_money(int(item.get("lineTotal") or 0), currency),
        }
        for item in order.get("items") or []
    ]

def order_confirmation(order: Dict[str, Any]) -> Rendered:
    currency = order.get("currency") or "gbp"
    ref = _reference(order)
    totals = [
        ("Subtotal", format_money(int(order.get("subtotal") or 0), currency)),
        ("Shipping", format_money(int(order.get("shipping_fee") or 0), currency)),
        ("Total", format_money(int(order.get("total") or 0), currency)),
    ]
    html, text = render(
        "order_confirmation",
        ref=ref,
        customer=recipient_name(order),
        items=_item_rows(order),
        totals=totals,
    )
    return f"{config.COMPANY_NAME}: order {ref} confirmed", html, text

def admin_order_notice(order: Dict[str, Any]) -> Rendered:
    ref = _reference(order)
    total = format_money(int(order.get("total") or 0), order.get("currency") or "gbp")
    html, text = render(
        "admin_order_notice",
        ref=ref,
        total=total,
        line_count=len(order.get("items") or []),
        customer=recipient_name(order),
    )
    return f"New order {ref} ({total})", html, text

def shipment_notice(
    order: Dict[str, Any],
    carrier: str,
    tracking_code: Optional[str] = None,
    estimated_delivery: Optional[str] = None,
) -> Rendered:
    ref = _reference(order)
    postcode = (order.get("shipping_address") or {}).get("postcode")
    html, text = render(
        "shipment_notice",
        ref=ref,
        customer=recipient_name(order),
        carrier=CARRIERS.get(carrier, carrier),
        tracking_code=tracking_code,
        url=tracking_url(carrier, tracking_code, postcode),
        estimated_delivery=estimated_delivery,
    )
    return f"{config.COMPANY_NAME}: order {ref} has shipped", html, text

def refund_notice(order: Dict[str, Any], refund: Dict[str, Any]) -> Rendered:
    currency = refund.get("currency") or order.get("currency") or "gbp"
    ref = _reference(order)
    html, text = render(
        "refund_notice",
        ref=ref,
        amount=format_money(int(refund.get("amount_pence") or 0), currency),
        reason=refund.get("reason"),
    )
    return f"{config.COMPANY_NAME}: refund for order {ref}", html, text
