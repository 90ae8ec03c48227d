import copy
import os
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest

# Environnement de test avant tout import roastery (config lue à l'import)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy")

from fastapi.testclient import TestClient

from roastery.app_setup.factory import create_app
from roastery.checkout.models import ShippingSettings
from roastery.utils.security import require_user
from tests.catalog_data import COFFEE_ID, GRINDER_ID, VARIANT_ID

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    return create_app()

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

ADMIN_USER: Dict[str, Any] = {
    "id": "admin-user-id",
    "email": "owner@example.com",
    "metadata": {},
    "token": "fake-token",
}

# Utilisateur authentifié pour les endpoints admin
@pytest.fixture(autouse=True)
def _override_require_user(app):
    app.dependency_overrides[require_user] = lambda: ADMIN_USER
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)

@pytest.fixture(autouse=True)
def mock_db_dependency(monkeypatch):
    """Aucun test ne parle à un vrai Supabase."""
    monkeypatch.setattr("roastery.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("roastery.infra.supabase_client.get_service_supabase", lambda: MagicMock())
    monkeypatch.setattr(
        "roastery.store_settings.repository.get_shipping_settings",
        lambda: ShippingSettings(delivery_fee_pence=499, free_shipping_threshold_pence=3000, free_shipping_enabled=True),
    )

# --- Catalogue en mémoire ---

@pytest.fixture
def catalog(monkeypatch) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """
    Catalogue modifiable par test: {"variants": {...}, "coffees": {...}, "equipment": {...}}.
    - A: variante à 12.99, B: café à 4.00 (prix en livres), grinder: matériel à 25.00 (slug "hand-grinder")
    """
    data: Dict[str, Dict[str, Dict[str, Any]]] = {
        "variants": {VARIANT_ID: {"id": VARIANT_ID, "name": "Ethiopia Yirgacheffe 250g", "price_pence": 1299, "stock": 10}},
        "coffees": {COFFEE_ID: {"id": COFFEE_ID, "name": "House Blend Sample", "price": 4.0}},
        "equipment": {GRINDER_ID: {"id": GRINDER_ID, "slug": "hand-grinder", "name": "Hand Grinder", "price_pence": 2500}},
    }

    def _by_slug(slug):
        for row in data["equipment"].values():
            if row.get("slug") == slug:
                return row
        return None

    monkeypatch.setattr("roastery.catalog.repository.find_variant", lambda i: data["variants"].get(i))
    monkeypatch.setattr("roastery.catalog.repository.find_coffee", lambda i: data["coffees"].get(i))
    monkeypatch.setattr("roastery.catalog.repository.find_equipment", lambda i: data["equipment"].get(i))
    monkeypatch.setattr("roastery.catalog.repository.find_equipment_by_slug", _by_slug)
    return data

class FakeStock:
    """Réplique de la rpc decrement_stock: tout ou rien, article absent de levels = stock non suivi."""

    def __init__(self):
        self.levels: Dict[str, int] = {}
        self.calls: List[List[Dict[str, Any]]] = []

    def decrement_stock(self, items):
        self.calls.append(copy.deepcopy(items))
        for item in items:
            item_id = str(item.get("id"))
            if item_id in self.levels and self.levels[item_id] < int(item.get("qty") or 0):
                return False
        for item in items:
            item_id = str(item.get("id"))
            if item_id in self.levels:
                self.levels[item_id] -= int(item.get("qty") or 0)
        return True

@pytest.fixture(autouse=True)
def stock(monkeypatch) -> FakeStock:
    fake = FakeStock()
    monkeypatch.setattr("roastery.catalog.repository.decrement_stock", fake.decrement_stock)
    return fake

# --- Table orders en mémoire ---

class FakeOrdersRepo:
    """
    Réplique en mémoire des primitives atomiques de roastery.orders.repository
    (upsert ignore_duplicates, update gardé par statut, fusion de metadata).
    """

    def __init__(self):
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.refunds: List[Dict[str, Any]] = []
        self._seq = 0

    def _by_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        for row in self.orders.values():
            if row["id"] == order_id:
                return row
        return None

    def insert_if_absent(self, payment_intent_id, row):
        if payment_intent_id in self.orders:
            return
        self._seq += 1
        self.orders[payment_intent_id] = {
            "id": f"order-{self._seq}",
            "payment_intent_id": payment_intent_id,
            "shipping_address": None,
            "billing_address": None,
            "client": None,
            "shipment": None,
            "subtotal": None,
            "shipping_fee": None,
            "total": None,
            "refunded_pence": 0,
            "paid_at": None,
            "created_at": f"2026-10-17T10:00:{self._seq:02d}+00:00",
            **copy.deepcopy(row),
        }

    def update_fields(self, payment_intent_id, fields):
        row = self.orders.get(payment_intent_id)
        if row is None:
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    def transition_status(self, payment_intent_id, from_statuses, fields):
        row = self.orders.get(payment_intent_id)
        if row is None or row["status"] not in from_statuses:
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    def update_by_id_if(self, order_id, fields, expected):
        row = self._by_id(order_id)
        if row is None or any(row.get(k) != v for k, v in (expected or {}).items()):
            return None
        row.update(copy.deepcopy(fields))
        return copy.deepcopy(row)

    def merge_metadata(self, payment_intent_id, patch, only_statuses=None, only_if=None):
        row = self.orders.get(payment_intent_id)
        if row is None or (only_statuses and row["status"] not in only_statuses):
            return False
        current = row.get("metadata") or {}
        if only_if and any(current.get(k) != v for k, v in only_if.items()):
            return False
        row["metadata"] = {**current, **copy.deepcopy(patch)}
        return True

    def get_by_payment_intent(self, payment_intent_id):
        row = self.orders.get(payment_intent_id)
        return copy.deepcopy(row) if row else None

    def get_by_id(self, order_id):
        row = self._by_id(order_id)
        return copy.deepcopy(row) if row else None

    def list_orders(self, status=None, limit=100):
        rows = [r for r in self.orders.values() if not status or r["status"] == status]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return copy.deepcopy(rows[:limit])

    def find_refund_by_key(self, idempotency_key):
        for refund in self.refunds:
            if refund["idempotency_key"] == idempotency_key:
                return dict(refund)
        return None

    def insert_refund(self, row):
        if self.find_refund_by_key(row["idempotency_key"]):
            raise Exception('duplicate key value violates unique constraint "refunds_idempotency_key_key"')
        refund = {"id": f"refund-{len(self.refunds) + 1}", **row}
        self.refunds.append(refund)
        return dict(refund)

_ORDER_REPO_FUNCS = (
    "insert_if_absent",
    "update_fields",
    "transition_status",
    "update_by_id_if",
    "merge_metadata",
    "get_by_payment_intent",
    "get_by_id",
    "list_orders",
    "find_refund_by_key",
    "insert_refund",
)

@pytest.fixture
def orders_repo(monkeypatch) -> FakeOrdersRepo:
    import roastery.orders.repository as repository

    fake = FakeOrdersRepo()
    for name in _ORDER_REPO_FUNCS:
        monkeypatch.setattr(repository, name, getattr(fake, name))
    return fake

# --- Table invoices en mémoire ---

class FakeInvoicesRepo:
    def __init__(self):
        self.invoices: List[Dict[str, Any]] = []

    def insert_invoice(self, row):
        from roastery.invoices.numbering import generate_order_number

        invoice = {
            "id": f"invoice-{len(self.invoices) + 1}",
            "order_number": generate_order_number(),
            "created_at": "2026-10-17T10:00:00+00:00",
            **copy.deepcopy(row),
        }
        self.invoices.append(invoice)
        return copy.deepcopy(invoice)

    def get_invoice(self, invoice_id):
        for inv in self.invoices:
            if inv["id"] == invoice_id:
                return copy.deepcopy(inv)
        return None

    def get_invoice_by_number(self, order_number):
        for inv in self.invoices:
            if inv["order_number"] == order_number:
                return copy.deepcopy(inv)
        return None

    def get_invoice_for_order(self, order_id):
        for inv in self.invoices:
            if inv.get("order_id") == order_id:
                return copy.deepcopy(inv)
        return None

    def list_invoices(self, limit=100):
        return copy.deepcopy(list(reversed(self.invoices))[:limit])

    def mark_paid_if_unpaid(self, invoice_id, paid_at):
        for inv in self.invoices:
            if inv["id"] == invoice_id and inv["source"] == "manual" and inv["payment_status"] == "unpaid":
                inv.update({"payment_status": "paid", "paid_at": paid_at})
                return copy.deepcopy(inv)
        return None

@pytest.fixture
def invoices_repo(monkeypatch) -> FakeInvoicesRepo:
    import roastery.invoices.repository as repository

    fake = FakeInvoicesRepo()
    for name in ("insert_invoice", "get_invoice", "get_invoice_by_number", "get_invoice_for_order", "list_invoices", "mark_paid_if_unpaid"):
        monkeypatch.setattr(repository, name, getattr(fake, name))
    return fake

# --- Stripe simulé ---

class FakeStripe:
    """Enregistre les appels faits au client Stripe; fail_metadata simule une panne de modify."""

    def __init__(self):
        self.created: List[Dict[str, Any]] = []
        self.metadata_updates: List[Any] = []
        self.refunds: List[Dict[str, Any]] = []
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.fail_metadata = False
        self.fail_create = False
        self.fail_refund = False

    def create_payment_intent(self, *, amount, currency, metadata, idempotency_key=None):
        from roastery.errors import ProcessorCallError

        if self.fail_create:
            raise ProcessorCallError("card network down")
        self.created.append({"amount": amount, "currency": currency, "metadata": metadata, "idempotency_key": idempotency_key})
        pi = f"pi_test_{len(self.created)}"
        intent = {"id": pi, "client_secret": f"{pi}_secret_abc", "amount": amount, "currency": currency, "metadata": metadata}
        self.intents[pi] = intent
        return intent

    def update_metadata(self, intent_id, patch):
        from roastery.errors import ProcessorCallError

        if self.fail_metadata:
            raise ProcessorCallError("stripe timeout", soft=True)
        self.metadata_updates.append((intent_id, dict(patch)))
        return dict(patch)

    def retrieve_intent(self, intent_id):
        return self.intents[intent_id]

    def create_refund(self, *, payment_intent_id, amount, metadata, idempotency_key=None):
        from roastery.errors import ProcessorCallError

        if self.fail_refund:
            raise ProcessorCallError("refund declined")
        self.refunds.append({"payment_intent": payment_intent_id, "amount": amount, "idempotency_key": idempotency_key})
        return {"id": f"re_{len(self.refunds)}", "amount": amount, "status": "succeeded"}

@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    import roastery.payments.stripe_client as stripe_client

    fake = FakeStripe()
    for name in ("create_payment_intent", "update_metadata", "retrieve_intent", "create_refund"):
        monkeypatch.setattr(stripe_client, name, getattr(fake, name))
    return fake

# --- Emails ---

@pytest.fixture
def sent_emails(monkeypatch) -> List[Dict[str, Any]]:
    """Brevo configuré, envois capturés au lieu d'appels HTTP."""
    from roastery import config
    import roastery.notifications.brevo as brevo

    outbox: List[Dict[str, Any]] = []
    monkeypatch.setattr(config, "BREVO_API_KEY", "xkeysib-test")
    monkeypatch.setattr(config, "BREVO_SENDER_EMAIL", "shop@example.com")
    monkeypatch.setattr(config, "ADMIN_NOTIFICATION_EMAILS", ["owner@example.com"])

    def _send(**kwargs):
        outbox.append(kwargs)
        return {"messageId": f"<msg-{len(outbox)}@brevo>"}

    monkeypatch.setattr(brevo, "send_email", _send)
    return outbox
