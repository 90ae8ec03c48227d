import json

import pytest

from roastery.checkout.models import CheckoutTotals, VerifiedLine
from roastery.errors import CartValidationError
from roastery.payments.metadata import MetadataError, build_intent_metadata, decode_payment_metadata

def _lines(n: int = 1, name: str = "Ethiopia Yirgacheffe 250g"):
    return [
        VerifiedLine(item_id=f"item-{i}", name=name, quantity=2, unit_price=1250, line_total=2500, source="variant")
        for i in range(n)
    ]

def _totals(lines, shipping=499):
    subtotal = sum(l.line_total for l in lines)
    return CheckoutTotals(subtotal=subtotal, shipping_fee=shipping, grand_total=subtotal + shipping, currency="gbp")

def test_small_cart_fits_in_items_key():
    lines = _lines(1)
    meta = build_intent_metadata(lines, _totals(lines), "idem-1")
    assert meta["pricesVerified"] == "true"
    assert meta["subtotal"] == "2500" and meta["shipping"] == "499" and meta["total"] == "2999"
    assert meta["idempotencyKey"] == "idem-1"
    assert json.loads(meta["items"])[0] == {
        "id": "item-0", "name": "Ethiopia Yirgacheffe 250g", "qty": 2, "unitPrice": 1250, "lineTotal": 2500, "source": "variant",
    }
    assert all(isinstance(v, str) and len(v) <= 500 for v in meta.values())

def test_large_cart_is_chunked_and_reassembled():
    lines = _lines(12)
    totals = _totals(lines, shipping=0)
    meta = build_intent_metadata(lines, totals)
    assert "items" not in meta
    count = int(meta["items_chunks"])
    assert count > 1
    assert all(len(meta[f"items_{i}"]) <= 500 for i in range(count))

    decoded = decode_payment_metadata(meta, amount=totals.grand_total)
    assert len(decoded.items) == 12
    assert decoded.total == 30000

def test_cart_beyond_stripe_capacity_is_rejected():
    lines = _lines(400, name="x" * 60)
    with pytest.raises(CartValidationError) as exc:
        build_intent_metadata(lines, _totals(lines))
    assert exc.value.reason == CartValidationError.CART_TOO_LARGE

def test_decode_round_trip_values():
    lines = _lines(1)
    meta = build_intent_metadata(lines, _totals(lines), "idem-9")
    decoded = decode_payment_metadata(meta, amount=2999)
    assert decoded.subtotal == 2500
    assert decoded.shipping_fee == 499
    assert decoded.currency == "gbp"
    assert decoded.idempotency_key == "idem-9"

def _valid_meta():
    lines = _lines(1)
    return build_intent_metadata(lines, _totals(lines))

@pytest.mark.parametrize("mutate", [
    lambda m: m.pop("items"),
    lambda m: m.update(items="[]"),
    lambda m: m.update(items="{not json"),
    lambda m: m.update(items='{"id": "x"}'),
    lambda m: m.pop("pricesVerified"),
    lambda m: m.update(total="3000"),
    lambda m: m.update(subtotal="2400"),
    lambda m: m.update(shipping="abc"),
    lambda m: m.update(items='[{"id": "a", "name": "A", "qty": 0, "unitPrice": 100}]'),
    lambda m: m.update(items='[{"id": "a", "name": "A", "qty": 2, "unitPrice": 1250, "lineTotal": 9}]'),
    lambda m: m.update(items_chunks="2"),
])
def test_malformed_metadata_is_rejected(mutate):
    meta = _valid_meta()
    mutate(meta)
    with pytest.raises(MetadataError):
        decode_payment_metadata(meta)

def test_charged_amount_must_equal_total():
    with pytest.raises(MetadataError):
        decode_payment_metadata(_valid_meta(), amount=100)

def test_items_already_parsed_are_accepted():
    meta = _valid_meta()
    meta["items"] = json.loads(meta["items"])
    assert decode_payment_metadata(meta).items[0]["qty"] == 2

def test_chunked_cart_leaves_room_for_shipping_mirror_keys():
    from roastery import config
    from roastery.orders.staging import _stripe_patch
    from roastery.payments.metadata import STAGING_MIRROR_KEYS

    address = {"line1": "1 High Street", "city": "Leeds", "postcode": "LS1 1AA"}
    mirror = _stripe_patch(address, address, {"name": "Ada Lovelace", "email": "ada@example.com"})
    assert set(mirror) == set(STAGING_MIRROR_KEYS)

    size = 1
    while True:
        lines = _lines(size + 1, name="x" * 60)
        try:
            build_intent_metadata(lines, _totals(lines), "idem-1")
        except CartValidationError:
            break
        size += 1
    lines = _lines(size, name="x" * 60)
    largest = build_intent_metadata(lines, _totals(lines), "idem-1")
    assert len({**largest, **mirror}) <= config.STRIPE_METADATA_MAX_KEYS
