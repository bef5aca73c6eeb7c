# Overview: Persistence for replenishment requests; creation, audit fields, tagged notes, listing.

from __future__ import annotations

import logging
from datetime import datetime

from ..errors import NonPositiveAmount, NotFound
from ..extensions import db
from ..models import ProductRequest
from ..time_utils import utcnow
from .concurrency import flush_or_raise, lock_for_update
from .lifecycle_service import OrderStatus, TransitionPlan

"""
Request Store Invariants (authoritative)

- Requests are created Pending with a price snapshot; quantity and cost never change.
- Status changes only through apply_plan(), which is fed a plan validated by
  lifecycle_service.
- requested_at, decided_at and received_at are each written at most once.
- notes only ever grows: one "[TAG] actor: reason" line per transition.
- Nothing here commits.
"""

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500


def get_request(request_id: int, *, for_update: bool = False) -> ProductRequest:
    q = db.session.query(ProductRequest).filter_by(id=request_id)
    if for_update:
        q = lock_for_update(q)
    req = q.first()
    if req is None:
        raise NotFound(f"Request {request_id} not found")
    return req


def format_note(tag: str, actor: str, text: str | None = None) -> str:
    line = f"[{tag}] {actor}"
    if text:
        line += f": {text}"
    return line


def append_note(req: ProductRequest, line: str) -> None:
    req.notes = f"{req.notes}\n{line}" if req.notes else line


def create_request(
    *,
    product_id: int,
    requested_quantity: int,
    unit_cost_cents: int,
    requested_by: str,
    notes: str | None = None,
    warehouse_id: int = 1,
) -> ProductRequest:
    if isinstance(requested_quantity, bool) or not isinstance(requested_quantity, int):
        raise NonPositiveAmount("requested_quantity must be an integer")
    if requested_quantity <= 0:
        raise NonPositiveAmount("requested_quantity must be at least 1")

    req = ProductRequest(
        product_id=product_id,
        warehouse_id=warehouse_id,
        requested_quantity=requested_quantity,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=unit_cost_cents * requested_quantity,
        status=OrderStatus.PENDING.value,
        requested_by=requested_by,
        requested_at=utcnow(),
        notes=(notes or "").strip() or None,
    )
    db.session.add(req)
    flush_or_raise()
    return req


def apply_plan(req: ProductRequest, plan: TransitionPlan, *, actor: str) -> ProductRequest:
    """Write status, audit fields and the notes line for a non-noop plan."""
    now = utcnow()

    req.status = plan.target.value
    if plan.records_decision and req.decided_at is None:
        req.decided_at = now
        req.approved_by = actor
    if plan.records_receipt and req.received_at is None:
        req.received_at = now
        req.received_by = actor

    append_note(req, format_note(plan.tag, actor, plan.reason))
    flush_or_raise()

    logger.info(
        "Request %s %s -> %s by %s", req.id, plan.source.value, plan.target.value, actor
    )
    return req


def snapshot(req: ProductRequest) -> dict:
    """The mutable lifecycle fields of a request, for saga compensation."""
    return {
        "status": req.status,
        "approved_by": req.approved_by,
        "received_by": req.received_by,
        "decided_at": req.decided_at.isoformat() if req.decided_at else None,
        "received_at": req.received_at.isoformat() if req.received_at else None,
        "notes": req.notes,
    }


def restore_snapshot(req: ProductRequest, data: dict) -> ProductRequest:
    req.status = data["status"]
    req.approved_by = data.get("approved_by")
    req.received_by = data.get("received_by")
    req.decided_at = datetime.fromisoformat(data["decided_at"]) if data.get("decided_at") else None
    req.received_at = datetime.fromisoformat(data["received_at"]) if data.get("received_at") else None
    req.notes = data.get("notes")
    flush_or_raise()
    return req


def delete_request(req: ProductRequest) -> None:
    db.session.delete(req)
    flush_or_raise()
    logger.info("Request %s deleted", req.id)


def list_requests(
    *,
    status: str | None = None,
    requested_by: str | None = None,
    product_id: int | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[ProductRequest]:
    """Newest first. status and requested_by match case-insensitively."""
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    q = db.session.query(ProductRequest)
    if status:
        q = q.filter(db.func.lower(ProductRequest.status) == OrderStatus.parse(status).value.lower())
    if requested_by:
        q = q.filter(db.func.lower(ProductRequest.requested_by) == requested_by.strip().lower())
    if product_id is not None:
        q = q.filter(ProductRequest.product_id == product_id)
    return (
        q.order_by(ProductRequest.requested_at.desc(), ProductRequest.id.desc())
        .limit(limit)
        .all()
    )
