from roastery.orders import staging

def test_stage_creates_provisional_order(orders_repo, fake_stripe):
    result = staging.stage("pi_1", shipping_address={"city": "London"})
    order = orders_repo.orders["pi_1"]
    assert order["status"] == "pending"
    assert order["items"] == []
    assert order["shipping_address"] == {"city": "London"}
    assert order["metadata"]["shippingConfirmed"] is True
    assert result == {"stagedFields": ["shipping_address"], "stripeMetadataSaved": True}
    assert fake_stripe.metadata_updates[0] == ("pi_1", {"shippingSaved": "true", "shippingAddress": '{"city":"London"}', "shippingCity": "London"})

def test_stage_twice_never_erases_fields(orders_repo, fake_stripe):
    staging.stage("pi_1", shipping_address={"city": "London"}, client={"email": "ada@example.com"})
    staging.stage("pi_1", billing_address={"city": "Leeds"}, client={})
    order = orders_repo.orders["pi_1"]
    assert order["shipping_address"] == {"city": "London"}
    assert order["billing_address"] == {"city": "Leeds"}
    assert order["client"] == {"email": "ada@example.com"}
    assert len(orders_repo.orders) == 1

def test_stage_is_idempotent(orders_repo, fake_stripe):
    payload = {"shipping_address": {"city": "London", "postcode": "E1 6AN"}}
    staging.stage("pi_1", **payload)
    first = dict(orders_repo.orders["pi_1"])
    staging.stage("pi_1", **payload)
    second = orders_repo.orders["pi_1"]
    assert second["shipping_address"] == first["shipping_address"]
    assert second["status"] == "pending"

def test_stage_never_changes_status(orders_repo, fake_stripe):
    orders_repo.insert_if_absent("pi_1", {"status": "completed", "items": [{"id": "A"}], "currency": "gbp", "metadata": {}})
    staging.stage("pi_1", shipping_address={"city": "London"})
    order = orders_repo.orders["pi_1"]
    assert order["status"] == "completed"
    assert order["items"] == [{"id": "A"}]
    assert order["shipping_address"] == {"city": "London"}

def test_stripe_sync_failure_is_recorded_not_raised(orders_repo, fake_stripe):
    fake_stripe.fail_metadata = True
    result = staging.stage("pi_1", shipping_address={"city": "London"})
    meta = orders_repo.orders["pi_1"]["metadata"]
    assert result["stripeMetadataSaved"] is False
    assert meta["stripeMetadataSaved"] is False
    assert "stripe timeout" in meta["stripeMetadataError"]
    assert orders_repo.orders["pi_1"]["shipping_address"] == {"city": "London"}
