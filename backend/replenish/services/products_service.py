# Overview: Product price lookup used when a request is placed.

from __future__ import annotations

from ..errors import NotFound
from ..extensions import db
from ..models import Product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def get_unit_price_cents(product_id: int) -> int:
    """
    Current unit price in cents.

    Never fails for a product that exists; inactive products keep their
    price so counters that reference them can still be valued.
    """
    return int(get_product(product_id).unit_price_cents or 0)


def create_product(*, sku: str, name: str, unit_price_cents: int, category: str | None = None,
                   supplier: str | None = None) -> Product:
    """Insert a product row (no commit). Used by bootstrap and tests."""
    if unit_price_cents < 0:
        raise ValueError("unit_price_cents must be >= 0")
    product = Product(
        sku=sku.strip(),
        name=name.strip(),
        unit_price_cents=unit_price_cents,
        category=category,
        supplier=supplier,
    )
    db.session.add(product)
    db.session.flush()
    return product
