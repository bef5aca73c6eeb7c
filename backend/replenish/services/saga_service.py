# Overview: Saga coordination when the ledger is a remote service; reserve, call, confirm or compensate.

from __future__ import annotations

import json
import logging
import uuid
from datetime import timedelta

from ..errors import OrderError, StorageFailure
from ..extensions import db
from ..models import ProductRequest, SagaLog
from ..models.sagas import SAGA_COMPENSATED, SAGA_COMPLETED, SAGA_STARTED
from ..models.ledger import CREDIT_DELETED, CREDIT_DELIVERY_PROFIT, DEBIT_ORDER, DIRECTION_CREDIT, DIRECTION_DEBIT
from ..money import format_cents
from ..time_utils import utcnow
from . import inventory_service, request_service
from .concurrency import flush_or_raise, unit_of_work
from .ledger_service import entry_key
from .ledger_client import get_ledger_client, is_definitive
from .lifecycle_service import Transition, plan_transition
from .order_service import (
    check_expected_version,
    delivery_markup,
    ensure_deletable,
    ensure_not_in_flight,
    ledger_description,
    transition_result,
)
from .products_service import get_product, get_unit_price_cents

"""
Saga Protocol (authoritative)

Used when LEDGER_MODE=remote, where the ledger cannot join the local DB
transaction. Every operation runs in three local steps:

1. RESERVE (one local transaction): validate, apply the local effects
   (inventory delta, request status/notes), write SagaLog STARTED with a
   snapshot of the request, and set request.saga_id. Other operations on the
   request now fail with ConcurrentModification.
2. CALL the remote ledger with a bounded timeout.
3. CONFIRM (COMPLETED, saga_id cleared) when the ledger applied the entry, or
   COMPENSATE (local effects reverted, COMPENSATED) when it definitely did not.

If the call times out the saga asks the ledger once whether the entry exists.
When even that fails the outcome is unknown: the reservation stays and
recover_incomplete_sagas() resolves it later. Each saga sends its own
idempotency key, which the ledger deduplicates on and which the lookup asks
for, so confirming late never double-books and a request id that another
instance also uses is never mistaken for this saga's entry.
"""

logger = logging.getLogger(__name__)

OP_PLACE_ORDER = "place_order"
OP_DELETE = "delete"


def _direction_for(ledger_type: str) -> str:
    return DIRECTION_DEBIT if ledger_type == DEBIT_ORDER else DIRECTION_CREDIT


def _new_idempotency_key() -> str:
    return f"saga-{uuid.uuid4().hex}"


def _ledger_key(saga: SagaLog) -> str:
    # Sagas written before keys existed were sent without one, so the ledger
    # filed them under its per-request default.
    return saga.idempotency_key or entry_key(saga.request_id, _direction_for(saga.ledger_type))


def _start_saga(req: ProductRequest, *, operation: str, ledger_type: str, amount_cents: int, actor: str,
                inventory_delta: int = 0, snapshot: dict | None = None) -> SagaLog:
    saga = SagaLog(
        request_id=req.id,
        operation=operation,
        ledger_type=ledger_type,
        amount_cents=amount_cents,
        actor=actor,
        idempotency_key=_new_idempotency_key(),
        product_id=req.product_id,
        warehouse_id=req.warehouse_id,
        inventory_delta=inventory_delta,
        snapshot=json.dumps(snapshot) if snapshot is not None else None,
        created_at=utcnow(),
    )
    db.session.add(saga)
    flush_or_raise()
    req.saga_id = saga.id
    logger.info("Saga %s started: %s request=%s %s %s key=%s", saga.id, operation, req.id, ledger_type,
                format_cents(amount_cents), saga.idempotency_key)
    return saga


def _call_ledger(saga: SagaLog, *, description: str | None = None) -> dict:
    client = get_ledger_client()
    entry = {
        "request_id": saga.request_id,
        "actor": saga.actor,
        "description": description,
        "idempotency_key": saga.idempotency_key,
    }
    if saga.ledger_type == DEBIT_ORDER:
        return client.deduct(saga.amount_cents, **entry)
    if saga.ledger_type == CREDIT_DELIVERY_PROFIT:
        return client.add_profit(saga.amount_cents, **entry)
    return client.restore(saga.amount_cents, tx_type=saga.ledger_type, **entry)


def _lookup_applied(saga: SagaLog) -> dict | None:
    """
    The ledger row this saga wrote, or None if the ledger never applied it.

    Raises StorageFailure when the ledger cannot be asked, or when the row
    under the saga's key does not match the saga's entry; either way the
    outcome stays unknown.
    """
    key = _ledger_key(saga)
    tx = get_ledger_client().find_transaction(key)
    if tx is None:
        return None
    if tx.get("type") != saga.ledger_type or tx.get("amount_cents") != saga.amount_cents:
        raise StorageFailure(
            f"Ledger entry {key} is {tx.get('type')} {tx.get('amount_cents')} cents, "
            f"expected {saga.ledger_type} {saga.amount_cents} cents"
        )
    return tx


def _run_remote(saga_id: int, *, description: str | None = None) -> dict:
    """
    Step 2 of the protocol. Returns the ledger row, or compensates and raises.
    """
    saga = db.session.get(SagaLog, saga_id)
    try:
        return _call_ledger(saga, description=description)
    except OrderError as exc:
        if is_definitive(exc):
            _compensate(saga_id, error=str(exc))
            raise

        try:
            tx = _lookup_applied(saga)
        except OrderError:
            logger.warning("Saga %s outcome unknown; left for recovery", saga_id)
            raise exc

        if tx is not None:
            logger.info("Saga %s: ledger had applied the entry despite %s", saga_id, exc.code)
            return tx
        _compensate(saga_id, error=str(exc))
        raise


def _finish(saga_id: int) -> None:
    with unit_of_work():
        saga = db.session.get(SagaLog, saga_id)
        req = db.session.get(ProductRequest, saga.request_id)
        if saga.operation == OP_DELETE:
            if req is not None:
                request_service.delete_request(req)
        elif req is not None:
            req.saga_id = None
        saga.status = SAGA_COMPLETED
        saga.updated_at = utcnow()
    logger.info("Saga %s completed", saga_id)


def _compensate(saga_id: int, *, error: str | None = None) -> None:
    with unit_of_work():
        saga = db.session.get(SagaLog, saga_id)
        req = db.session.get(ProductRequest, saga.request_id)

        if saga.operation == OP_PLACE_ORDER:
            if req is not None:
                request_service.delete_request(req)
        elif req is not None:
            if saga.snapshot:
                request_service.restore_snapshot(req, saga.load_snapshot())
            if saga.inventory_delta:
                inventory_service.adjust_stock(
                    saga.product_id, -saga.inventory_delta, warehouse_id=saga.warehouse_id
                )
            req.saga_id = None

        saga.status = SAGA_COMPENSATED
        saga.error = error
        saga.updated_at = utcnow()
    logger.info("Saga %s compensated: %s", saga_id, error)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def place_order(*, product_id: int, requested_quantity: int, requested_by: str, notes: str | None = None,
                warehouse_id: int = 1) -> dict:
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
        saga = _start_saga(req, operation=OP_PLACE_ORDER, ledger_type=DEBIT_ORDER,
                           amount_cents=req.total_cost_cents, actor=requested_by)
        saga_id, request_id = saga.id, req.id
        description = f"Order #{req.id}: {requested_quantity} x {product.name}"[:255]

    tx = _run_remote(saga_id, description=description)
    _finish(saga_id)

    req = db.session.get(ProductRequest, request_id)
    balance_after = tx.get("balance_after_cents")
    return {
        "request": req.to_dict(),
        "ledger_balance_after_cents": balance_after,
        "ledger_balance_after": format_cents(balance_after),
    }


def execute_transition(request_id: int, transition: Transition, *, actor: str, notes: str | None = None,
                       expected_version: int | None = None) -> dict:
    inventory_quantity = None

    with unit_of_work():
        req = request_service.get_request(request_id, for_update=True)
        check_expected_version(req, expected_version)
        ensure_not_in_flight(req)

        plan = plan_transition(req, transition, actor=actor, notes=notes, markup=delivery_markup())

        saga_id = None
        if not plan.noop:
            before = request_service.snapshot(req)
            if plan.inventory_delta:
                item = inventory_service.adjust_stock(
                    req.product_id, plan.inventory_delta, warehouse_id=req.warehouse_id
                )
                inventory_quantity = item.quantity_in_stock
            if plan.ledger_type:
                saga = _start_saga(req, operation=plan.transition.value, ledger_type=plan.ledger_type,
                                   amount_cents=plan.ledger_amount_cents, actor=actor,
                                   inventory_delta=plan.inventory_delta, snapshot=before)
                saga_id = saga.id
                description = ledger_description(req, plan)
            request_service.apply_plan(req, plan, actor=actor)

    balance_after = None
    if saga_id is not None:
        tx = _run_remote(saga_id, description=description)
        _finish(saga_id)
        balance_after = tx.get("balance_after_cents")
        req = db.session.get(ProductRequest, request_id)

    return transition_result(
        req, plan, inventory_quantity=inventory_quantity, ledger_balance_after_cents=balance_after
    )


def delete_request(request_id: int, *, actor: str) -> dict:
    with unit_of_work():
        req = request_service.get_request(request_id, for_update=True)
        ensure_not_in_flight(req)
        ensure_deletable(req)
        saga = _start_saga(req, operation=OP_DELETE, ledger_type=CREDIT_DELETED,
                           amount_cents=req.total_cost_cents, actor=actor)
        saga_id = saga.id

    tx = _run_remote(saga_id, description=f"Request #{request_id} deleted by {actor}")
    _finish(saga_id)

    balance_after = tx.get("balance_after_cents")
    return {
        "request_id": request_id,
        "deleted": True,
        "ledger_balance_after_cents": balance_after,
        "ledger_balance_after": format_cents(balance_after),
    }


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

def list_sagas(status: str | None = None, *, limit: int = 100) -> list[SagaLog]:
    q = db.session.query(SagaLog)
    if status:
        q = q.filter(SagaLog.status == status.upper())
    return q.order_by(SagaLog.created_at.desc(), SagaLog.id.desc()).limit(limit).all()


def recover_incomplete_sagas(older_than_seconds: int = 300) -> dict:
    """
    Resolve sagas still STARTED after `older_than_seconds` (e.g. the process died mid-call).

    Confirms the ones the ledger applied, compensates the ones it did not,
    and leaves the rest when the ledger cannot be reached.
    """
    cutoff = utcnow() - timedelta(seconds=older_than_seconds)
    stuck = (
        db.session.query(SagaLog)
        .filter(SagaLog.status == SAGA_STARTED, SagaLog.created_at <= cutoff)
        .order_by(SagaLog.id.asc())
        .all()
    )
    saga_ids = [s.id for s in stuck]

    summary = {"completed": [], "compensated": [], "unresolved": []}
    for saga_id in saga_ids:
        saga = db.session.get(SagaLog, saga_id)
        try:
            applied = _lookup_applied(saga)
        except OrderError as exc:
            logger.warning("Saga %s still unresolved: %s", saga_id, exc)
            summary["unresolved"].append(saga_id)
            continue

        if applied is not None:
            _finish(saga_id)
            summary["completed"].append(saga_id)
        else:
            _compensate(saga_id, error="Recovered: ledger entry was never applied")
            summary["compensated"].append(saga_id)

    return summary
