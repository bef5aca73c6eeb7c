# Overview: Order lifecycle rules; maps a requested transition to its status, stock and ledger effects.

"""
Replenishment Order Lifecycle

================================================================================
PURPOSE: Single transition table for ProductRequest.status
================================================================================

STATE MACHINE:
    Pending -> Approved -> ReadyForShipment -> SoldOut
    Pending -> Rejected
    Pending | Approved -> Cancelled
    ReadyForShipment -> Approved            (abort)

    Pending:          ordered, budget already debited
    Approved:         goods arrived in the warehouse (+quantity)
    ReadyForShipment: picked, waiting for delivery confirmation
    SoldOut:          delivered (-quantity, profit credited), terminal
    Rejected:         refused, budget restored, terminal
    Cancelled:        withdrawn, budget restored, terminal

EFFECTS:
    approve     +quantity                none
    reject      none                     CREDIT_REJECTED(total_cost)
    cancel      -quantity if Approved    CREDIT_CANCELLED(total_cost)
    mark_ready  none                     none
    abort       none                     none
    deliver     -quantity                CREDIT_DELIVERY_PROFIT(total_cost * markup)

RULES (NON-NEGOTIABLE):
1. Every transition needs an actor.
2. reject and abort need a reason; cancel needs one unless the actor is "system".
3. A request already in the target status is a successful no-op.
4. Any other source status is InvalidTransition naming both statuses.
5. Stock moves exactly once per physical movement: in at approve, out at
   deliver (or back out when an approved request is cancelled).

Everything here is pure: no DB access, no commits. order_service applies
the returned plan inside one unit of work.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ..errors import InvalidTransition, MissingReason
from ..models.ledger import CREDIT_CANCELLED, CREDIT_DELIVERY_PROFIT, CREDIT_REJECTED
from ..money import apply_markup

SYSTEM_ACTOR = "system"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    READY_FOR_SHIPMENT = "ReadyForShipment"
    SOLD_OUT = "SoldOut"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

    @classmethod
    def parse(cls, value: str) -> "OrderStatus":
        normalized = (value or "").replace(" ", "").replace("_", "").lower()
        for status in cls:
            if status.value.lower() == normalized:
                return status
        raise InvalidTransition(f"Unknown status '{value}'", current=value)


TERMINAL_STATUSES = frozenset({OrderStatus.SOLD_OUT, OrderStatus.REJECTED, OrderStatus.CANCELLED})


class Transition(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    MARK_READY = "mark_ready"
    ABORT = "abort"
    DELIVER = "deliver"

    @classmethod
    def parse(cls, name: str) -> "Transition":
        """Accepts 'Approve', 'mark-ready', 'Mark Ready', 'markready' and the like."""
        key = (name or "").strip().lower().replace("-", "_").replace(" ", "_")
        key = _TRANSITION_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise InvalidTransition(f"Unknown transition '{name}'", requested=name)


_TRANSITION_ALIASES = {
    "markready": "mark_ready",
    "ready": "mark_ready",
    "ready_for_shipment": "mark_ready",
    "readyforshipment": "mark_ready",
    "deliver_confirm": "deliver",
    "confirm_delivery": "deliver",
    "sold_out": "deliver",
    "soldout": "deliver",
}


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset
    target: OrderStatus
    reason_required: bool
    tag: str


TRANSITIONS: dict[Transition, TransitionRule] = {
    Transition.APPROVE: TransitionRule(
        frozenset({OrderStatus.PENDING}), OrderStatus.APPROVED, False, "APPROVED"
    ),
    Transition.REJECT: TransitionRule(
        frozenset({OrderStatus.PENDING}), OrderStatus.REJECTED, True, "REJECTED"
    ),
    Transition.CANCEL: TransitionRule(
        frozenset({OrderStatus.PENDING, OrderStatus.APPROVED}), OrderStatus.CANCELLED, True, "CANCELLED"
    ),
    Transition.MARK_READY: TransitionRule(
        frozenset({OrderStatus.APPROVED}), OrderStatus.READY_FOR_SHIPMENT, False, "READY"
    ),
    Transition.ABORT: TransitionRule(
        frozenset({OrderStatus.READY_FOR_SHIPMENT}), OrderStatus.APPROVED, True, "ABORTED"
    ),
    Transition.DELIVER: TransitionRule(
        frozenset({OrderStatus.READY_FOR_SHIPMENT}), OrderStatus.SOLD_OUT, False, "RECEIVED"
    ),
}

if set(TRANSITIONS) != set(Transition):
    raise RuntimeError("Every Transition needs exactly one TransitionRule")


@dataclass(frozen=True)
class TransitionPlan:
    """What executing one transition must do. inventory_delta is signed."""

    transition: Transition
    source: OrderStatus
    target: OrderStatus
    noop: bool = False
    inventory_delta: int = 0
    ledger_type: str | None = None
    ledger_amount_cents: int = 0
    tag: str = ""
    reason: str | None = None
    records_decision: bool = False
    records_receipt: bool = False


def can_transition(status: OrderStatus | str, transition: Transition | str) -> bool:
    current = status if isinstance(status, OrderStatus) else OrderStatus.parse(status)
    t = transition if isinstance(transition, Transition) else Transition.parse(transition)
    return current in TRANSITIONS[t].sources


def allowed_transitions(status: OrderStatus | str) -> list[str]:
    current = status if isinstance(status, OrderStatus) else OrderStatus.parse(status)
    return [t.value for t, rule in TRANSITIONS.items() if current in rule.sources]


def plan_transition(
    request,
    transition: Transition | str,
    *,
    actor: str,
    notes: str | None = None,
    markup: Decimal | str = "1.5",
) -> TransitionPlan:
    """
    Validate `transition` against the request's current status and compute its effects.

    `request` needs status, requested_quantity and total_cost_cents.
    Raises MissingReason or InvalidTransition; returns a noop plan when the
    request already sits in the target status.
    """
    t = transition if isinstance(transition, Transition) else Transition.parse(transition)
    rule = TRANSITIONS[t]
    current = OrderStatus.parse(request.status)

    if not (actor or "").strip():
        raise MissingReason("actor is required")

    if current == rule.target:
        return TransitionPlan(transition=t, source=current, target=current, noop=True, tag=rule.tag)

    if current not in rule.sources:
        allowed = ", ".join(sorted(s.value for s in rule.sources))
        raise InvalidTransition(
            f"Cannot {t.value} request {request.id}: current status is '{current.value}', "
            f"must be one of: {allowed}",
            current=current.value,
            requested=rule.target.value,
        )

    reason = (notes or "").strip() or None
    if rule.reason_required and reason is None:
        if not (t == Transition.CANCEL and actor.strip() == SYSTEM_ACTOR):
            raise MissingReason(f"A reason is required to {t.value} a request")

    quantity = int(request.requested_quantity)
    total = int(request.total_cost_cents)

    inventory_delta = 0
    ledger_type = None
    ledger_amount = 0

    if t == Transition.APPROVE:
        inventory_delta = quantity
    elif t == Transition.REJECT:
        ledger_type, ledger_amount = CREDIT_REJECTED, total
    elif t == Transition.CANCEL:
        ledger_type, ledger_amount = CREDIT_CANCELLED, total
        if current == OrderStatus.APPROVED:
            inventory_delta = -quantity
    elif t == Transition.DELIVER:
        inventory_delta = -quantity
        ledger_type, ledger_amount = CREDIT_DELIVERY_PROFIT, apply_markup(total, markup)

    return TransitionPlan(
        transition=t,
        source=current,
        target=rule.target,
        inventory_delta=inventory_delta,
        ledger_type=ledger_type,
        ledger_amount_cents=ledger_amount,
        tag=rule.tag,
        reason=reason,
        records_decision=current == OrderStatus.PENDING,
        records_receipt=t == Transition.DELIVER,
    )
