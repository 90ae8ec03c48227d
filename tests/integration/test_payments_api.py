import pytest
import stripe

from tests.catalog_data import VARIANT_ID

CART = {"items": [{"id": VARIANT_ID, "name": "Ethiopia", "price": 12.99, "quantity": 2}]}

def test_create_payment_intent(client, catalog, fake_stripe):
    res = client.post("/api/v1/payments/create-payment-intent", json=CART, headers={"Idempotency-Key": "cart-42"})
    assert res.status_code == 200
    data = res.json()
    assert data["paymentIntentId"] == "pi_test_1"
    assert data["clientSecret"] == "pi_test_1_secret_abc"
    assert data["amount"] == 3097
    assert data["subtotal"] == 25.98 and data["shipping"] == 4.99 and data["total"] == 30.97
    created = fake_stripe.created[0]
    assert created["amount"] == 3097
    assert created["idempotency_key"] == "cart-42"
    assert created["metadata"]["pricesVerified"] == "true"

def test_free_shipping_above_threshold(client, catalog, fake_stripe):
    cart = {"items": [{"id": VARIANT_ID, "price": 12.99, "quantity": 3}]}
    data = client.post("/api/v1/payments/create-payment-intent", json=cart).json()
    assert data["amount"] == 3897
    assert data["shipping"] == 0.0

def test_price_mismatch_is_400_and_no_intent(client, catalog, fake_stripe):
    cart = {"items": [{"id": VARIANT_ID, "price": 9.99, "quantity": 1}]}
    res = client.post("/api/v1/payments/create-payment-intent", json=cart)
    assert res.status_code == 400
    body = res.json()
    assert body["reason"] == "PriceMismatch"
    assert body["catalogPrice"] == "12.99"
    assert fake_stripe.created == []

@pytest.mark.parametrize("payload", [{"items": []}, {}, {"items": [{"id": "nope", "price": 1, "quantity": 1}]}])
def test_invalid_carts_are_400(client, catalog, fake_stripe, payload):
    assert client.post("/api/v1/payments/create-payment-intent", json=payload).status_code == 400

def test_invalid_json_is_400(client):
    res = client.post("/api/v1/payments/create-payment-intent", content=b"{oops", headers={"content-type": "application/json"})
    assert res.status_code == 400

def test_processor_failure_is_generic_500(client, catalog, fake_stripe):
    fake_stripe.fail_create = True
    res = client.post("/api/v1/payments/create-payment-intent", json=CART)
    assert res.status_code == 500
    assert "network" not in res.json()["error"]

def test_missing_stripe_key_is_500(client, catalog, monkeypatch):
    from roastery import config

    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    res = client.post("/api/v1/payments/create-payment-intent", json=CART)
    assert res.status_code == 500
    assert res.json() == {"error": "Payment service unavailable, please try again later"}

def _succeeded_event(client, catalog, fake_stripe):
    pi = client.post("/api/v1/payments/create-payment-intent", json=CART).json()["paymentIntentId"]
    intent = {**fake_stripe.intents[pi], "status": "succeeded", "amount_received": 3097}
    fake_stripe.intents[pi] = intent
    return pi, {"type": "payment_intent.succeeded", "data": {"object": intent}}

def _patch_parse_event(monkeypatch, event):
    async def _fake_parse_event(request):
        return event

    monkeypatch.setattr("roastery.payments.stripe_client.parse_event", _fake_parse_event)

def test_webhook_success_completes_order(client, catalog, fake_stripe, orders_repo, invoices_repo, monkeypatch):
    pi, event = _succeeded_event(client, catalog, fake_stripe)
    _patch_parse_event(monkeypatch, event)
    res = client.post("/api/v1/payments/webhook", content=b"{}")
    assert res.status_code == 200
    assert res.json() == {"received": True}
    order = orders_repo.orders[pi]
    assert order["status"] == "completed"
    assert order["total"] == 3097
    assert len(invoices_repo.invoices) == 1

    # Relivraison Stripe: toujours 200, rien ne change
    assert client.post("/api/v1/payments/webhook", content=b"{}").status_code == 200
    assert len(invoices_repo.invoices) == 1

def test_webhook_bad_signature_is_400(client):
    res = client.post("/api/v1/payments/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"})
    assert res.status_code == 400

def test_webhook_signature_error_from_stripe(client, monkeypatch):
    def _raise(*args, **kwargs):
        raise stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")

    monkeypatch.setattr(stripe.Webhook, "construct_event", _raise)
    assert client.post("/api/v1/payments/webhook", content=b"{}").status_code == 400

def test_webhook_unreadable_metadata_is_500(client, orders_repo, monkeypatch):
    event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x", "amount": 100, "metadata": {}}}}
    _patch_parse_event(monkeypatch, event)
    res = client.post("/api/v1/payments/webhook", content=b"{}")
    assert res.status_code == 500
    assert orders_repo.orders == {}

def test_webhook_payment_failed(client, orders_repo, fake_stripe, monkeypatch):
    client.post("/api/v1/orders/save-shipping", json={"paymentIntentId": "pi_9", "shippingAddress": {"city": "York"}})
    event = {"type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_9", "last_payment_error": {"message": "Card declined"}}}}
    _patch_parse_event(monkeypatch, event)
    assert client.post("/api/v1/payments/webhook", content=b"{}").status_code == 200
    assert orders_repo.orders["pi_9"]["status"] == "failed"
    assert orders_repo.orders["pi_9"]["metadata"]["paymentError"] == "Card declined"

def test_webhook_ignores_other_events(client, monkeypatch):
    _patch_parse_event(monkeypatch, {"type": "customer.created", "data": {"object": {}}})
    assert client.post("/api/v1/payments/webhook", content=b"{}").json() == {"received": True}

def test_confirm_payment(client, catalog, fake_stripe, orders_repo, invoices_repo):
    pi, _ = _succeeded_event(client, catalog, fake_stripe)
    res = client.post("/api/v1/payments/confirm", json={"paymentIntentId": pi})
    assert res.status_code == 200
    first = res.json()
    assert first["status"] == "completed"
    assert first["alreadyCompleted"] is False

    again = client.post(f"/api/v1/payments/confirm?payment_intent={pi}").json()
    assert again["alreadyCompleted"] is True
    assert again["orderId"] == first["orderId"]

def test_confirm_rejects_unpaid_intent(client, catalog, fake_stripe, orders_repo):
    pi = client.post("/api/v1/payments/create-payment-intent", json=CART).json()["paymentIntentId"]
    fake_stripe.intents[pi]["status"] = "requires_payment_method"
    assert client.post("/api/v1/payments/confirm", json={"paymentIntentId": pi}).status_code == 400
    assert client.post("/api/v1/payments/confirm", json={"paymentIntentId": "nope"}).status_code == 400
