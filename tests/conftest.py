import asyncio
import copy
import itertools
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from payout_ledger.core.config import Settings
from payout_ledger.core.errors import ProcessorError
from payout_ledger.models.order import Order
from payout_ledger.services.processor import Transfer, TransferReversal

_OPS = {
    "==": lambda actual, value: actual == value,
    "!=": lambda actual, value: actual != value,
    "in": lambda actual, value: actual in value,
    ">=": lambda actual, value: actual is not None and actual >= value,
    "<=": lambda actual, value: actual is not None and actual <= value,
    ">": lambda actual, value: actual is not None and actual > value,
    "<": lambda actual, value: actual is not None and actual < value,
}


class InMemoryStore:
    """DocumentStore fake with the same semantics as MongoDocumentStore."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._ids = itertools.count(1)

    def seed(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> str:
        self.collections[collection][doc_id] = copy.deepcopy({k: v for k, v in doc.items() if k != "id"})
        return doc_id

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return [{**copy.deepcopy(doc), "id": doc_id} for doc_id, doc in self.collections[collection].items()]

    async def get(self, collection, doc_id):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    async def query(self, collection, filters=(), order_by=None, limit=None):
        docs = []
        for doc in self.all(collection):
            if all(_OPS[op](doc.get(field), value) for field, op, value in filters):
                docs.append(doc)
        if order_by:
            field, direction = order_by
            docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=direction == "desc")
        if limit:
            docs = docs[:limit]
        return docs

    async def add(self, collection, doc):
        doc_id = f"{collection}_{next(self._ids)}"
        return self.seed(collection, doc_id, doc)

    async def update(self, collection, doc_id, fields):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(dict(fields)))
        return True

    async def update_if(self, collection, doc_id, expected, fields):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        if any(doc.get(key) != value for key, value in expected.items()):
            return False
        doc.update(copy.deepcopy(dict(fields)))
        return True

    async def increment(self, collection, doc_id, deltas):
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return False
        for key, delta in deltas.items():
            doc[key] = doc.get(key, 0) + delta
        return True


class FakeProcessor:
    """Records transfers and reversals; can be told to fail."""

    def __init__(self):
        self.transfers: Dict[str, Transfer] = {}
        self.groups: Dict[str, Optional[str]] = {}
        self.created: List[Dict[str, Any]] = []
        self.reversals: List[Dict[str, Any]] = []
        self.fail_transfers = False
        self.fail_reversals = set()
        self.delay = 0.0
        # Seconds to wait after the transfer is created, before answering
        self.reply_delay = 0.0
        self._ids = itertools.count(1)

    def add_transfer(self, group: str, amount_cents: int, destination: str = "acct_x", **metadata) -> str:
        transfer_id = f"tr_seed_{next(self._ids)}"
        self.transfers[transfer_id] = Transfer(
            id=transfer_id, amount_cents=amount_cents, destination=destination, metadata=metadata
        )
        self.groups[transfer_id] = group
        return transfer_id

    async def create_transfer(self, destination, amount_cents, currency, group=None, metadata=None, idempotency_key=None):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_transfers:
            raise ProcessorError("Your destination account needs to have at least one of the following capabilities enabled")
        transfer_id = f"tr_{next(self._ids)}"
        self.transfers[transfer_id] = Transfer(
            id=transfer_id,
            amount_cents=amount_cents,
            destination=destination,
            metadata=dict(metadata or {}),
        )
        self.groups[transfer_id] = group
        self.created.append({
            "id": transfer_id,
            "destination": destination,
            "amount_cents": amount_cents,
            "currency": currency,
            "group": group,
            "metadata": dict(metadata or {}),
            "idempotency_key": idempotency_key,
        })
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)
        return transfer_id

    async def reverse_transfer(self, transfer_id, amount_cents=None, metadata=None):
        if transfer_id in self.fail_reversals:
            raise ProcessorError(f"Reversal of {transfer_id} declined")
        transfer = self.transfers[transfer_id]
        amount = transfer.remaining_cents if amount_cents is None else amount_cents
        if amount > transfer.remaining_cents:
            raise ProcessorError("Reversal exceeds transfer balance")
        transfer.amount_reversed_cents += amount
        reversal = TransferReversal(id=f"trr_{next(self._ids)}", amount_cents=amount)
        self.reversals.append({"transfer_id": transfer_id, "amount_cents": amount, "metadata": metadata or {}})
        return reversal

    async def get_transfer(self, transfer_id):
        return copy.deepcopy(self.transfers[transfer_id])

    async def list_transfers(self, group):
        return [copy.deepcopy(t) for tid, t in self.transfers.items() if self.groups.get(tid) == group]


class RecordingNotifier:
    def __init__(self):
        self.notices = []

    async def notify(self, notice):
        self.notices.append(notice)

    def kinds(self):
        return [notice.kind for notice in self.notices]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        STRIPE_SECRET_KEY="sk_test_dummy",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        STRIPE_CONNECT_WEBHOOK_SECRET="whsec_connect_test",
        ADMIN_API_KEY="test-admin-key",
        TRANSFER_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def seed_seller(store):
    """Seed an artist/supplier/crate seller profile."""
    collections = {"artist": "artists", "supplier": "suppliers", "crate_seller": "users"}

    def _seed(kind, seller_id, active=True, account_id=None, pending=0, earnings=0, **extra):
        doc = {
            "name": extra.pop("name", seller_id.replace("_", " ").title()),
            "email": f"{seller_id}@example.com",
            "connect_account_id": account_id or f"acct_{seller_id}",
            "connect_status": "active" if active else "onboarding",
            "pending_balance_cents": pending,
            "total_earnings_cents": earnings,
        }
        doc.update(extra)
        return store.seed(collections[kind], seller_id, doc)

    return _seed


@pytest.fixture
def seed_order(store):
    def _seed(order_id="order_1", **fields):
        fields.setdefault("order_number", f"FW-{order_id}")
        fields.setdefault("customer_email", "customer@example.com")
        order = Order(**fields)
        store.seed("orders", order_id, order.to_document())
        order.id = order_id
        return order

    return _seed


@pytest.fixture
def scenario_order(store, seed_order, seed_seller):
    """Two items from artist A (10.00) and one merch item from supplier B (20.00)."""
    store.seed("releases", "rel_1", {"title": "Dub Plates", "submitter_id": "artist_a"})
    store.seed("merch_products", "merch_1", {"name": "Tote", "supplier_id": "supplier_b"})
    seed_seller("artist", "artist_a")
    seed_seller("supplier", "supplier_b")
    return seed_order(
        "order_1",
        payment_id="pi_scenario",
        items=[
            {"item_type": "vinyl", "product_id": "rel_1", "title": "Dub Plates", "unit_price_cents": 500, "quantity": 2},
            {"item_type": "merch", "product_id": "merch_1", "title": "Tote", "unit_price_cents": 2000},
        ],
        shipping_cents=500,
        artist_shipping={"artist_a": 500},
        total_cents=3500,
        processor_fee_cents=120,
    )


@pytest.fixture
def test_client(store, processor, notifier, config, monkeypatch):
    """TestClient wired to the in-memory store and fake processor."""
    from payout_ledger.api.v1.deps import get_notifier, get_processor
    from payout_ledger.core import config as config_module
    from payout_ledger.db.session import get_store
    from payout_ledger.main import app

    for name in ("STRIPE_WEBHOOK_SECRET", "STRIPE_CONNECT_WEBHOOK_SECRET", "ADMIN_API_KEY"):
        monkeypatch.setattr(config_module.settings, name, getattr(config, name))

    async def override_store():
        return store

    async def override_processor():
        return processor

    async def override_notifier():
        return notifier

    app.dependency_overrides[get_store] = override_store
    app.dependency_overrides[get_processor] = override_processor
    app.dependency_overrides[get_notifier] = override_notifier
    yield TestClient(app)
    app.dependency_overrides.clear()
