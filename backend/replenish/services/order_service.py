# Overview: Orchestrates order placement, transitions and deletion as single units of work.

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from ..errors import ConcurrentModification, InvalidTransition, MissingReason
from ..models import ProductRequest
from ..models.ledger import CREDIT_DELETED, CREDIT_DELIVERY_PROFIT
from ..money import format_cents
from . import inventory_service, ledger_service, request_service
from .concurrency import run_with_retry, unit_of_work
from .lifecycle_service import OrderStatus, Transition, TransitionPlan, plan_transition
from .products_service import get_product, get_unit_price_cents

"""
Orchestrator Invariants (authoritative)

- The only entry point that mutates requests. Each public call is one unit of
  work: request row, inventory counter and ledger account commit together or
  not at all.
- Effects are applied stock first, ledger second, request last. The request
  flush carries the version check, so a concurrent writer surfaces as
  ConcurrentModification after everything else has been staged and the whole
  unit is rolled back.
- A request with saga_id set has a remote ledger call in flight; every other
  operation on it is ConcurrentModification until the saga closes.
- LEDGER_MODE=remote routes through saga_service instead.
"""

logger = logging.getLogger(__name__)

LEDGER_MODE_LOCAL = "local"
LEDGER_MODE_REMOTE = "remote"


def ledger_mode() -> str:
    return str(current_app.config.get("LEDGER_MODE") or LEDGER_MODE_LOCAL).lower()


def delivery_markup() -> Decimal:
    return Decimal(str(current_app.config.get("DELIVERY_MARKUP", "1.5")))


def _require_actor(actor: str | None) -> str:
    actor = (actor or "").strip()
    if not actor:
        raise MissingReason("actor is required")
    return actor


def ensure_not_in_flight(req: ProductRequest) -> None:
    if req.saga_id is not None:
        raise ConcurrentModification(
            f"Request {req.id} has a ledger operation in progress; retry shortly"
        )


def check_expected_version(req: ProductRequest, expected_version: int | None) -> None:
    if expected_version is not None and req.version_id != int(expected_version):
        raise ConcurrentModification(
            f"Request {req.id} is at version {req.version_id}, expected {expected_version}"
        )


def ledger_description(req: ProductRequest, plan: TransitionPlan) -> str:
    if plan.ledger_type == CREDIT_DELIVERY_PROFIT:
        return f"Delivery profit for request #{req.id}"
    text = f"Request #{req.id} {plan.target.value.lower()}"
    if plan.reason:
        text += f": {plan.reason}"
    return text[:255]


def transition_result(req: ProductRequest, plan: TransitionPlan, *, inventory_quantity=None,
                      ledger_balance_after_cents=None) -> dict:
    return {
        "request_id": req.id,
        "transition": plan.transition.value,
        "old_status": plan.source.value,
        "new_status": plan.target.value,
        "noop": plan.noop,
        "inventory_quantity": inventory_quantity,
        "ledger_balance_after_cents": ledger_balance_after_cents,
        "ledger_balance_after": format_cents(ledger_balance_after_cents),
        "version_id": req.version_id,
        "request": req.to_dict(),
    }


# ---------------------------------------------------------------------------
# Place order
# ---------------------------------------------------------------------------

def place_order(
    *,
    product_id: int,
    requested_quantity: int,
    requested_by: str,
    notes: str | None = None,
    warehouse_id: int = 1,
) -> dict:
    """
    Create a Pending request and its DEBIT_ORDER entry together.

    The unit cost is snapshotted from the product's current price.
    """
    requested_by = _require_actor(requested_by)

    if ledger_mode() == LEDGER_MODE_REMOTE:
        from . import saga_service
        return saga_service.place_order(
            product_id=product_id,
            requested_quantity=requested_quantity,
            requested_by=requested_by,
            notes=notes,
            warehouse_id=warehouse_id,
        )

    with unit_of_work():
        product = get_product(product_id)
        req = request_service.create_request(
            product_id=product.id,
            requested_quantity=requested_quantity,
            unit_cost_cents=get_unit_price_cents(product.id),
            requested_by=requested_by,
            notes=notes,
            warehouse_id=warehouse_id,
        )
        tx = ledger_service.deduct(
            req.total_cost_cents,
            request_id=req.id,
            actor=requested_by,
            description=f"Order #{req.id}: {requested_quantity} x {product.name}"[:255],
        )
        balance_after = tx.balance_after_cents

    logger.info("Placed request %s product=%s qty=%s by %s", req.id, product_id, requested_quantity, requested_by)
    return {
        "request": req.to_dict(),
        "ledger_balance_after_cents": balance_after,
        "ledger_balance_after": format_cents(balance_after),
    }


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _record_ledger(req: ProductRequest, plan: TransitionPlan, actor: str):
    description = ledger_description(req, plan)
    if plan.ledger_type == CREDIT_DELIVERY_PROFIT:
        return ledger_service.add_profit(
            plan.ledger_amount_cents, request_id=req.id, actor=actor, description=description
        )
    return ledger_service.restore(
        plan.ledger_amount_cents,
        request_id=req.id,
        actor=actor,
        tx_type=plan.ledger_type,
        description=description,
    )


def execute_transition(
    request_id: int,
    transition: Transition | str,
    *,
    actor: str,
    notes: str | None = None,
    expected_version: int | None = None,
) -> dict:
    """
    Run one lifecycle transition atomically.

    Returns new status plus the touched inventory quantity and ledger
    balance. Re-running a transition that already happened is a no-op.
    """
    t = transition if isinstance(transition, Transition) else Transition.parse(transition)
    actor = _require_actor(actor)

    if ledger_mode() == LEDGER_MODE_REMOTE:
        from . import saga_service
        return saga_service.execute_transition(
            request_id, t, actor=actor, notes=notes, expected_version=expected_version
        )

    inventory_quantity = None
    balance_after = None

    with unit_of_work():
        req = request_service.get_request(request_id, for_update=True)
        check_expected_version(req, expected_version)
        ensure_not_in_flight(req)

        plan = plan_transition(req, t, actor=actor, notes=notes, markup=delivery_markup())

        if not plan.noop:
            if plan.inventory_delta:
                item = inventory_service.adjust_stock(
                    req.product_id, plan.inventory_delta, warehouse_id=req.warehouse_id
                )
                inventory_quantity = item.quantity_in_stock
            if plan.ledger_type:
                balance_after = _record_ledger(req, plan, actor).balance_after_cents
            request_service.apply_plan(req, plan, actor=actor)

    if plan.noop:
        logger.info("Request %s already %s; %s is a no-op", request_id, plan.target.value, t.value)
    return transition_result(
        req, plan, inventory_quantity=inventory_quantity, ledger_balance_after_cents=balance_after
    )


def execute_transition_with_retry(
    request_id: int,
    transition: Transition | str,
    *,
    actor: str,
    notes: str | None = None,
) -> dict:
    """execute_transition retried on transient failures; safe because repeats are no-ops."""
    return run_with_retry(
        lambda: execute_transition(request_id, transition, actor=actor, notes=notes),
        attempts=int(current_app.config.get("RETRY_ATTEMPTS", 3)),
        backoff_base=float(current_app.config.get("RETRY_BACKOFF_BASE", 0.1)),
    )


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

def ensure_deletable(req: ProductRequest) -> None:
    if req.status != OrderStatus.PENDING.value:
        raise InvalidTransition(
            f"Only pending requests can be deleted; request {req.id} is '{req.status}'",
            current=req.status,
            requested="Deleted",
        )


def delete_request(request_id: int, *, actor: str) -> dict:
    """Restore the request's budget (CREDIT_DELETED), then remove it."""
    actor = _require_actor(actor)

    if ledger_mode() == LEDGER_MODE_REMOTE:
        from . import saga_service
        return saga_service.delete_request(request_id, actor=actor)

    with unit_of_work():
        req = request_service.get_request(request_id, for_update=True)
        ensure_not_in_flight(req)
        ensure_deletable(req)

        tx = ledger_service.restore(
            req.total_cost_cents,
            request_id=req.id,
            actor=actor,
            tx_type=CREDIT_DELETED,
            description=f"Request #{req.id} deleted by {actor}",
        )
        balance_after = tx.balance_after_cents
        request_service.delete_request(req)

    return {
        "request_id": request_id,
        "deleted": True,
        "ledger_balance_after_cents": balance_after,
        "ledger_balance_after": format_cents(balance_after),
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_account() -> dict:
    if ledger_mode() == LEDGER_MODE_REMOTE:
        from .ledger_client import get_ledger_client
        return get_ledger_client().get_account()

    with unit_of_work():
        account = ledger_service.ensure_account().to_dict()
    return account
