"""
Oracle de prix: résout un identifiant d'article en prix catalogue faisant foi.

L'unité d'un prix est déterminée par le nom du champ, jamais par sa valeur:
- price_pence / min_price_pence: entiers en pence
- price / min_price: décimales en livres (enregistrements hérités)
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from roastery.utils.money import to_pence
from . import repository

SOURCE_VARIANT = "variant"
SOURCE_COFFEE = "coffee"
SOURCE_EQUIPMENT = "equipment"

_MINOR_FIELDS = ("price_pence", "min_price_pence")
_MAJOR_FIELDS = ("price", "min_price")

class ResolvedPrice(BaseModel):
    item_id: str
    unit_price: int
    name: str
    source: str
    stock: Optional[int] = None

# module roastery.catalog.pricing
def _whole_number(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None

def price_from_record(record: Dict[str, Any]) -> Optional[int]:
    """
    Prix unitaire en pence d'une ligne catalogue, ou None si aucun prix exploitable.
    - Les champs en pence sont prioritaires sur les champs en livres.
    - Un prix négatif est ignoré.
    """
    for field in _MINOR_FIELDS:
        pence = _whole_number(record.get(field))
        if pence is not None and pence >= 0:
            return pence
    for field in _MAJOR_FIELDS:
        pence = to_pence(record.get(field))
        if pence is not None and pence >= 0:
            return pence
    return None

def _display_name(record: Dict[str, Any], fallback: str) -> str:
    for key in ("name", "title", "label"):
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return fallback

def _stock(record: Dict[str, Any]) -> Optional[int]:
    raw = record.get("stock")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None

def _lookups() -> List[Tuple[str, Callable[[str], Optional[Dict[str, Any]]]]]:
    # Ordre significatif: la première correspondance gagne
    return [
        (SOURCE_VARIANT, repository.find_variant),
        (SOURCE_COFFEE, repository.find_coffee),
        (SOURCE_EQUIPMENT, repository.find_equipment),
        (SOURCE_EQUIPMENT, repository.find_equipment_by_slug),
    ]

def resolve_price(item_id: str) -> Optional[ResolvedPrice]:
    """
    Cherche item_id dans coffee_variants, coffees, equipment (id) puis equipment (slug).
    - Pas de fusion entre catalogues.
    - Retourne None si l'article est introuvable ou sans prix.
    """
    item_id = str(item_id or "").strip()
    if not item_id:
        return None
    for source, lookup in _lookups():
        record = lookup(item_id)
        if not record:
            continue
        unit_price = price_from_record(record)
        if unit_price is None:
            return None
        return ResolvedPrice(
            item_id=item_id,
            unit_price=unit_price,
            name=_display_name(record, item_id),
            source=source,
            stock=_stock(record),
        )
    return None
