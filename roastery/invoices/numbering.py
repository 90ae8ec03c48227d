"""
Numéros de facture lisibles: INV-<année>-<aaaammjj>-<4 chiffres>.
"""
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

ORDER_NUMBER_RE = re.compile(r"^INV-(\d{4})-(\d{8})-(\d{4})$")

# module roastery.invoices.numbering
def generate_order_number(now: Optional[datetime] = None) -> str:
    """
    Exemple: INV-2026-20261017-4821.
    - Suffixe aléatoire 1000..9999 (secrets), unicité garantie par l'index unique + retry à l'insertion.
    """
    now = now or datetime.now(timezone.utc)
    suffix = 1000 + secrets.randbelow(9000)
    return f"INV-{now:%Y}-{now:%Y%m%d}-{suffix}"

def is_order_number(value: str) -> bool:
    return bool(ORDER_NUMBER_RE.match(value or ""))
