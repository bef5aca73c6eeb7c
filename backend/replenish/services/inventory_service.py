# Overview: Service-layer operations for inventory counters; signed, guarded stock movements.

from __future__ import annotations

import logging

from ..errors import InsufficientStock, NonPositiveAmount, NotFound
from ..extensions import db
from ..models import InventoryItem
from ..time_utils import utcnow
from .concurrency import flush_or_raise, lock_for_update
from .products_service import get_product

"""
Inventory Invariants (authoritative)

- One counter per (product_id, warehouse_id).
- Every quantity change is a signed delta applied by adjust_stock(); there
  is no "set quantity" path. update_levels() edits only the advisory
  min/max levels and the location.
- A delta that would make quantity_in_stock negative is rejected
  (InsufficientStock), never clamped.
- adjust_stock() never commits: it runs inside the caller's unit of work so
  the stock movement lands or rolls back together with the request status
  and ledger entry that caused it.
- Reads (get_counter, list_counters, list_low_stock) are plain snapshots.
"""

logger = logging.getLogger(__name__)

DEFAULT_WAREHOUSE_ID = 1


def _counter_query(product_id: int, warehouse_id: int):
    return db.session.query(InventoryItem).filter_by(
        product_id=product_id,
        warehouse_id=warehouse_id,
    )


def adjust_stock(
    product_id: int,
    delta: int,
    *,
    warehouse_id: int = DEFAULT_WAREHOUSE_ID,
) -> InventoryItem:
    """
    Apply a signed stock movement and return the updated counter.

    - Positive delta on a product without a counter creates the counter:
      goods that physically arrived are never dropped.
    - Negative delta without a counter, or beyond what is on hand, raises
      InsufficientStock and changes nothing.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValueError("delta must be an integer")
    if delta == 0:
        raise NonPositiveAmount("Inventory delta must be non-zero")

    item = lock_for_update(_counter_query(product_id, warehouse_id)).first()

    if item is None:
        if delta < 0:
            raise InsufficientStock(
                f"No stock recorded for product {product_id} in warehouse {warehouse_id}",
                on_hand=0,
                requested_delta=delta,
            )
        get_product(product_id)
        item = InventoryItem(
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity_in_stock=0,
            minimum_level=0,
            maximum_level=0,
        )
        db.session.add(item)
        logger.info("Created inventory counter for product %s warehouse %s", product_id, warehouse_id)

    on_hand = item.quantity_in_stock or 0
    if on_hand + delta < 0:
        logger.warning(
            "Rejected stock movement product=%s delta=%s on_hand=%s", product_id, delta, on_hand
        )
        raise InsufficientStock(
            f"Insufficient stock for product {product_id}. On-hand: {on_hand}, requested: {-delta}",
            on_hand=on_hand,
            requested_delta=delta,
        )

    item.quantity_in_stock = on_hand + delta
    item.last_stock_update = utcnow()
    flush_or_raise()

    logger.info(
        "Stock product=%s warehouse=%s %+d -> %d", product_id, warehouse_id, delta, item.quantity_in_stock
    )
    return item


def ensure_counter(
    product_id: int,
    *,
    warehouse_id: int = DEFAULT_WAREHOUSE_ID,
    minimum_level: int = 0,
    maximum_level: int = 0,
    location: str | None = None,
) -> InventoryItem:
    """
    Return the counter for (product, warehouse), creating an empty one if needed.

    Safe to call repeatedly (idempotent); existing quantities are untouched.
    """
    item = _counter_query(product_id, warehouse_id).first()
    if item is not None:
        return item

    get_product(product_id)
    item = InventoryItem(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity_in_stock=0,
        minimum_level=minimum_level,
        maximum_level=maximum_level,
        location=location,
    )
    db.session.add(item)
    flush_or_raise()
    return item


def find_counter(product_id: int, *, warehouse_id: int = DEFAULT_WAREHOUSE_ID) -> InventoryItem | None:
    return _counter_query(product_id, warehouse_id).first()


def get_counter(product_id: int, *, warehouse_id: int = DEFAULT_WAREHOUSE_ID) -> InventoryItem:
    item = find_counter(product_id, warehouse_id=warehouse_id)
    if item is None:
        raise NotFound(f"No inventory counter for product {product_id} in warehouse {warehouse_id}")
    return item


def get_counter_by_id(counter_id: int, *, for_update: bool = False) -> InventoryItem:
    q = db.session.query(InventoryItem).filter_by(id=counter_id)
    if for_update:
        q = lock_for_update(q)
    item = q.first()
    if item is None:
        raise NotFound(f"Inventory counter {counter_id} not found")
    return item


def update_levels(
    counter_id: int,
    *,
    minimum_level: int | None = None,
    maximum_level: int | None = None,
    location: str | None = None,
) -> InventoryItem:
    """
    Change a counter's reorder levels and shelf location.

    quantity_in_stock is not reachable from here; stock only moves through
    adjust_stock(). Arguments left as None keep their current value.
    """
    item = get_counter_by_id(counter_id, for_update=True)
    if minimum_level is not None:
        item.minimum_level = minimum_level
    if maximum_level is not None:
        item.maximum_level = maximum_level
    if location is not None:
        item.location = location or None
    flush_or_raise()

    logger.info(
        "Counter %s levels min=%s max=%s location=%s",
        counter_id, item.minimum_level, item.maximum_level, item.location,
    )
    return item


def get_quantity_on_hand(product_id: int, *, warehouse_id: int = DEFAULT_WAREHOUSE_ID) -> int:
    item = find_counter(product_id, warehouse_id=warehouse_id)
    return int(item.quantity_in_stock) if item else 0


def list_counters(*, warehouse_id: int | None = None, limit: int = 500) -> list[InventoryItem]:
    q = db.session.query(InventoryItem)
    if warehouse_id is not None:
        q = q.filter(InventoryItem.warehouse_id == warehouse_id)
    return (
        q.order_by(InventoryItem.product_id.asc(), InventoryItem.warehouse_id.asc())
        .limit(limit)
        .all()
    )


def list_counters_for_product(product_id: int) -> list[InventoryItem]:
    return (
        db.session.query(InventoryItem)
        .filter_by(product_id=product_id)
        .order_by(InventoryItem.warehouse_id.asc())
        .all()
    )


def list_low_stock(threshold: int | None = None, *, limit: int = 500) -> list[InventoryItem]:
    """
    Counters at or below `threshold`, or at or below their own minimum_level
    when no threshold is given. Lowest stock first.
    """
    q = db.session.query(InventoryItem)
    if threshold is not None:
        q = q.filter(InventoryItem.quantity_in_stock <= threshold)
    else:
        q = q.filter(InventoryItem.quantity_in_stock <= InventoryItem.minimum_level)

    return (
        q.order_by(InventoryItem.quantity_in_stock.asc(), InventoryItem.id.asc())
        .limit(limit)
        .all()
    )
