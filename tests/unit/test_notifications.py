from unittest.mock import MagicMock

import httpx
import pytest

from roastery import config
from roastery.errors import NotificationError
from roastery.notifications import brevo, templates
from roastery.notifications import service as notifications

ORDER = {
    "id": "5f0c2d1e-order",
    "payment_intent_id": "pi_1",
    "status": "completed",
    "items": [{"id": "A", "name": "Ethiopia <Yirgacheffe>", "qty": 2, "unitPrice": 1250, "lineTotal": 2500}],
    "subtotal": 2500,
    "shipping_fee": 499,
    "total": 2999,
    "currency": "gbp",
    "client": {"name": "Ada", "email": "ada@example.com"},
    "shipping_address": {"city": "London", "postcode": "E1 6AN"},
}

def test_confirmation_sent_and_recorded(orders_repo, sent_emails):
    orders_repo.insert_if_absent("pi_1", {**ORDER, "metadata": {}})
    outcome = notifications.send_order_confirmation(ORDER)
    assert outcome["sent"] is True
    assert sent_emails[0]["subject"].endswith("order 5F0C2D1E confirmed")
    assert "&lt;Yirgacheffe&gt;" in sent_emails[0]["html"]
    assert "£29.99" in sent_emails[0]["text"]
    assert orders_repo.orders["pi_1"]["metadata"]["confirmationEmailSent"] is True

def test_admin_notice_goes_to_configured_addresses(orders_repo, sent_emails):
    notifications.send_admin_order_notice(ORDER)
    assert sent_emails[0]["to"] == [{"email": "owner@example.com"}]

def test_send_failure_is_swallowed_and_flagged(orders_repo, sent_emails, monkeypatch):
    orders_repo.insert_if_absent("pi_1", {**ORDER, "metadata": {}})

    def _fail(**kwargs):
        raise NotificationError("Brevo responded 401: unauthorized")

    monkeypatch.setattr(brevo, "send_email", _fail)
    outcome = notifications.send_order_confirmation(ORDER)
    meta = orders_repo.orders["pi_1"]["metadata"]
    assert outcome["sent"] is False
    assert meta["confirmationEmailSent"] is False
    assert "401" in meta["confirmationEmailError"]
    assert "confirmationEmailAttemptedAt" in meta

def test_unexpected_error_is_swallowed(orders_repo, sent_emails, monkeypatch):
    monkeypatch.setattr(templates, "order_confirmation", MagicMock(side_effect=KeyError("subtotal")))
    assert notifications.send_order_confirmation(ORDER)["sent"] is False

def test_no_recipient(orders_repo, sent_emails):
    outcome = notifications.send_order_confirmation({**ORDER, "client": None, "shipping_address": None})
    assert outcome == {"sent": False, "reason": "no-recipient"}
    assert sent_emails == []

def test_recording_failure_does_not_raise(sent_emails, monkeypatch):
    monkeypatch.setattr("roastery.orders.repository.merge_metadata", MagicMock(side_effect=RuntimeError("db down")))
    assert notifications.send_refund_notice(ORDER, {"amount_pence": 500, "currency": "gbp"})["sent"] is True

def test_brevo_client_posts_with_api_key(monkeypatch):
    monkeypatch.setattr(config, "BREVO_API_KEY", "xkeysib-test")
    monkeypatch.setattr(config, "BREVO_SENDER_EMAIL", "shop@example.com")
    post = MagicMock(return_value=httpx.Response(201, json={"messageId": "<1@brevo>"}))
    monkeypatch.setattr(httpx, "post", post)
    info = brevo.send_email(to=[{"email": "a@b.c"}], subject="s", html="<p>h</p>", text="h", reply_to="help@example.com")
    assert info == {"messageId": "<1@brevo>"}
    kwargs = post.call_args.kwargs
    assert kwargs["headers"]["api-key"] == "xkeysib-test"
    assert kwargs["json"]["replyTo"] == {"email": "help@example.com"}

def test_brevo_client_raises_on_error_status(monkeypatch):
    monkeypatch.setattr(config, "BREVO_API_KEY", "xkeysib-test")
    monkeypatch.setattr(config, "BREVO_SENDER_EMAIL", "shop@example.com")
    monkeypatch.setattr(httpx, "post", MagicMock(return_value=httpx.Response(400, text="bad sender")))
    with pytest.raises(NotificationError):
        brevo.send_email(to=[{"email": "a@b.c"}], subject="s", html="h", text="h")

def test_brevo_client_requires_configuration(monkeypatch):
    monkeypatch.setattr(config, "BREVO_API_KEY", "")
    with pytest.raises(NotificationError):
        brevo.send_email(to=[{"email": "a@b.c"}], subject="s", html="h", text="h")

@pytest.mark.parametrize("provider,fragment", [
    ("dpd", "parcel=X1&postcode=E16AN"),
    ("evri", "parcelCode=X1"),
    ("yodel", "/tracking/X1"),
])
def test_tracking_urls(provider, fragment):
    assert fragment in templates.tracking_url(provider, "X1", "E1 6AN")

def test_tracking_url_without_code():
    assert templates.tracking_url("dpd", "  ") is None

def test_confirmation_text_body_is_not_html_escaped():
    _, html, text = templates.order_confirmation(ORDER)
    assert "Ethiopia <Yirgacheffe> x2: £25.00" in text
    assert "<Yirgacheffe>" not in html
    assert config.COMPANY_NAME in html

def test_shipment_notice_renders_tracking_block():
    subject, html, text = templates.shipment_notice(ORDER, "dpd", "15501234", "2026-10-21")
    assert subject.endswith("has shipped")
    assert "Tracking number: <strong>15501234</strong>" in html
    assert "parcel=15501234&amp;postcode=E16AN" in html
    assert text.splitlines() == [
        "Your order 5F0C2D1E is on its way with DPD.",
        "Tracking number: 15501234",
        "Track here: https://www.dpd.co.uk/apps/tracking/?parcel=15501234&postcode=E16AN",
        "Estimated delivery: 2026-10-21",
    ]

def test_refund_notice_includes_reason_only_when_given():
    _, html, text = templates.refund_notice(ORDER, {"amount_pence": 500, "currency": "gbp", "reason": "late & cold"})
    assert text.endswith("Reason: late & cold")
    assert "late &amp; cold" in html
    _, _, text = templates.refund_notice(ORDER, {"amount_pence": 500})
    assert "Reason" not in text
