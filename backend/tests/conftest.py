"""
Pytest fixtures for replenishment backend tests.

Provides the app on an in-memory database, a per-test clean slate, seeded
products/counters and small helpers for placing and advancing requests.
"""

import pytest
from replenish import create_app
from replenish.config import TestingConfig
from replenish.extensions import db
from replenish.models import InventoryItem, ProductRequest
from replenish.services import inventory_service, ledger_service, order_service
from replenish.services.products_service import create_product


def _testing_config() -> dict:
    return {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(_testing_config())

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data for each test; schema is kept."""
    app.config.update(_testing_config())
    app.extensions.pop("ledger_client", None)

    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def product(db_session):
    """$5.00 product with an empty counter in warehouse 1 (min level 5)."""
    p = create_product(sku="BOLT-M8", name="M8 Bolt", unit_price_cents=500, category="Hardware")
    inventory_service.ensure_counter(p.id, minimum_level=5, maximum_level=100)
    db_session.commit()
    return p


@pytest.fixture(scope='function')
def cheap_product(db_session):
    """$3.00 product with no counter yet."""
    p = create_product(sku="TAPE-48", name="Packing Tape", unit_price_cents=300)
    db_session.commit()
    return p


def place(product_id: int, quantity: int, actor: str = "alice", notes: str | None = None) -> int:
    """Place an order and return the request id."""
    result = order_service.place_order(
        product_id=product_id,
        requested_quantity=quantity,
        requested_by=actor,
        notes=notes,
    )
    return result["request"]["id"]


def advance(request_id: int, *steps, actor: str = "bob", notes: str | None = None) -> dict:
    """Run transitions in order; returns the last result."""
    result = None
    for step in steps:
        result = order_service.execute_transition(request_id, step, actor=actor, notes=notes)
    return result


def budget_cents() -> int:
    return ledger_service.ensure_account().available_budget_cents


def spent_cents() -> int:
    return ledger_service.ensure_account().total_spent_cents


def on_hand(product_id: int) -> int:
    return inventory_service.get_quantity_on_hand(product_id)


def load_request(request_id: int) -> ProductRequest:
    db.session.expire_all()
    return db.session.get(ProductRequest, request_id)


def load_counter(product_id: int) -> InventoryItem | None:
    db.session.expire_all()
    return db.session.query(InventoryItem).filter_by(product_id=product_id).first()
