# Overview: Service-layer operations for the budget ledger; account snapshot plus append-only transactions.

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..errors import InsufficientBudget, InvalidTransition, MissingReason, NonPositiveAmount
from ..extensions import db
from ..models import CompanyAccount, LedgerTransaction
from ..models.ledger import (
    ADJUSTMENT,
    CREDIT_CANCELLED,
    CREDIT_DELETED,
    CREDIT_DELIVERY_PROFIT,
    CREDIT_REJECTED,
    DEBIT_ORDER,
    DIRECTION_CREDIT,
    DIRECTION_DEBIT,
)
from ..money import format_cents, to_cents
from ..time_utils import month_bounds, previous_month_bounds, to_utc_z, utcnow
from .concurrency import flush_or_raise, lock_for_update

"""
Budget Ledger Invariants (authoritative)

- Exactly one CompanyAccount row (id=1). It is seeded lazily from config and
  the opening budget is itself written as an ADJUSTMENT row, so replaying all
  transactions from zero reproduces available_budget_cents.
- available_budget_cents changes only together with an appended
  LedgerTransaction; the row's balance_after_cents is the budget right after it.
- total_spent_cents grows by every debit and shrinks by every credit, floored at 0.
- amount_cents is always > 0 (NonPositiveAmount otherwise).
- Every request-linked entry carries a unique idempotency_key. Local entries
  default to one debit and one credit per request; remote callers send their
  own key. Replaying a key with the same type and amount returns the existing
  row; any other replay is InvalidTransition.
- Nothing here commits. Callers own the unit of work.
"""

logger = logging.getLogger(__name__)

ACCOUNT_ID = 1

RESTORE_TYPES = {CREDIT_REJECTED, CREDIT_CANCELLED, CREDIT_DELETED}

DEFAULT_TRANSACTION_LIMIT = 50
MAX_TRANSACTION_LIMIT = 500

BUDGET_BANDS = (
    (Decimal("50"), "Healthy"),
    (Decimal("75"), "Moderate"),
    (Decimal("90"), "High"),
)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

def _seed_account() -> CompanyAccount:
    revenue_cents = to_cents(current_app.config["INITIAL_REVENUE"])
    budget_cents = to_cents(current_app.config["INITIAL_BUDGET"])
    if revenue_cents < 0 or budget_cents < 0:
        raise ValueError("INITIAL_REVENUE and INITIAL_BUDGET must be >= 0")

    now = utcnow()
    account = CompanyAccount(
        id=ACCOUNT_ID,
        current_revenue_cents=revenue_cents,
        available_budget_cents=0,
        total_spent_cents=0,
        updated_by="system",
        update_reason="Opening balance",
        last_updated=now,
    )
    db.session.add(account)

    if budget_cents > 0:
        account.available_budget_cents = budget_cents
        db.session.add(
            LedgerTransaction(
                type=ADJUSTMENT,
                direction=DIRECTION_CREDIT,
                amount_cents=budget_cents,
                request_id=None,
                actor="system",
                created_at=now,
                description="Opening balance",
                balance_after_cents=budget_cents,
            )
        )

    flush_or_raise()
    logger.info("Seeded ledger account revenue=%s budget=%s", format_cents(revenue_cents), format_cents(budget_cents))
    return account


def ensure_account() -> CompanyAccount:
    """Return the singleton account, seeding it on first use (flush, no commit)."""
    account = db.session.get(CompanyAccount, ACCOUNT_ID)
    if account is None:
        account = _seed_account()
    return account


def _locked_account() -> CompanyAccount:
    account = lock_for_update(db.session.query(CompanyAccount).filter_by(id=ACCOUNT_ID)).first()
    if account is None:
        account = _seed_account()
    return account


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def _require_positive(amount_cents) -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise NonPositiveAmount("Amount must be a whole number of cents")
    if amount_cents <= 0:
        raise NonPositiveAmount("Amount must be greater than zero")
    return amount_cents


def _require_actor(actor: str | None) -> str:
    actor = (actor or "").strip()
    if not actor:
        raise MissingReason("actor is required")
    return actor


def entry_key(request_id: int | None, direction: str) -> str | None:
    """Default idempotency key for an entry written by the instance that owns the request."""
    if request_id is None:
        return None
    return f"request:{request_id}:{direction}"


def _existing_entry(idempotency_key: str | None) -> LedgerTransaction | None:
    if idempotency_key is None:
        return None
    return (
        db.session.query(LedgerTransaction)
        .filter_by(idempotency_key=idempotency_key)
        .first()
    )


def _replayed(existing: LedgerTransaction, *, tx_type: str, amount_cents: int) -> LedgerTransaction:
    """A repeated call must describe the same entry; anything else is a key collision."""
    if existing.type == tx_type and existing.amount_cents == amount_cents:
        return existing
    raise InvalidTransition(
        f"Ledger entry {existing.idempotency_key} already recorded as "
        f"{existing.type} {format_cents(existing.amount_cents)}",
        current=existing.type,
        requested=tx_type,
    )


def _append(
    account: CompanyAccount,
    *,
    tx_type: str,
    direction: str,
    amount_cents: int,
    request_id: int | None,
    actor: str,
    description: str | None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    now = utcnow()
    account.last_updated = now
    account.updated_by = actor

    tx = LedgerTransaction(
        type=tx_type,
        direction=direction,
        amount_cents=amount_cents,
        request_id=request_id,
        actor=actor,
        created_at=now,
        description=(description or None),
        balance_after_cents=account.available_budget_cents,
        idempotency_key=idempotency_key,
    )
    db.session.add(tx)
    flush_or_raise()

    logger.info(
        "Ledger %s %s %s request=%s key=%s actor=%s balance_after=%s",
        tx_type,
        direction,
        format_cents(amount_cents),
        request_id,
        idempotency_key,
        actor,
        format_cents(tx.balance_after_cents),
    )
    return tx


def deduct(
    amount_cents: int,
    *,
    request_id: int | None,
    actor: str,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    """
    Spend budget for a request (DEBIT_ORDER).

    Calling again with the same key and amount returns the original row. A
    different amount under the same key is InvalidTransition. Remote callers
    pass their own key; local calls key on the request id.
    """
    amount_cents = _require_positive(amount_cents)
    actor = _require_actor(actor)
    idempotency_key = idempotency_key or entry_key(request_id, DIRECTION_DEBIT)

    existing = _existing_entry(idempotency_key)
    if existing is not None:
        return _replayed(existing, tx_type=DEBIT_ORDER, amount_cents=amount_cents)

    account = _locked_account()
    available = account.available_budget_cents
    if amount_cents > available:
        logger.warning(
            "Insufficient budget request=%s available=%s required=%s",
            request_id,
            format_cents(available),
            format_cents(amount_cents),
        )
        raise InsufficientBudget(
            f"Insufficient budget. Available: {format_cents(available)}, "
            f"Required: {format_cents(amount_cents)}",
            available_cents=available,
            requested_cents=amount_cents,
        )

    account.available_budget_cents = available - amount_cents
    account.total_spent_cents = (account.total_spent_cents or 0) + amount_cents
    account.update_reason = description or "Order placed"

    return _append(
        account,
        tx_type=DEBIT_ORDER,
        direction=DIRECTION_DEBIT,
        amount_cents=amount_cents,
        request_id=request_id,
        actor=actor,
        description=description,
        idempotency_key=idempotency_key,
    )


def _credit(
    amount_cents: int,
    *,
    tx_type: str,
    request_id: int | None,
    actor: str,
    description: str | None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    amount_cents = _require_positive(amount_cents)
    actor = _require_actor(actor)
    idempotency_key = idempotency_key or entry_key(request_id, DIRECTION_CREDIT)

    existing = _existing_entry(idempotency_key)
    if existing is not None:
        return _replayed(existing, tx_type=tx_type, amount_cents=amount_cents)

    account = _locked_account()
    account.available_budget_cents = account.available_budget_cents + amount_cents
    account.total_spent_cents = max(0, (account.total_spent_cents or 0) - amount_cents)
    account.update_reason = description or tx_type

    return _append(
        account,
        tx_type=tx_type,
        direction=DIRECTION_CREDIT,
        amount_cents=amount_cents,
        request_id=request_id,
        actor=actor,
        description=description,
        idempotency_key=idempotency_key,
    )


def restore(
    amount_cents: int,
    *,
    request_id: int | None,
    actor: str,
    tx_type: str,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    """Give budget back for a request that will not be fulfilled."""
    if tx_type not in RESTORE_TYPES:
        raise ValueError(f"Invalid restore type: {tx_type}")
    return _credit(
        amount_cents,
        tx_type=tx_type,
        request_id=request_id,
        actor=actor,
        description=description,
        idempotency_key=idempotency_key,
    )


def add_profit(
    amount_cents: int,
    *,
    request_id: int | None,
    actor: str,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    """Delivery profit: mechanically a restore, recorded as CREDIT_DELIVERY_PROFIT."""
    return _credit(
        amount_cents,
        tx_type=CREDIT_DELIVERY_PROFIT,
        request_id=request_id,
        actor=actor,
        description=description,
        idempotency_key=idempotency_key,
    )


def adjust(
    *,
    actor: str,
    reason: str,
    delta_cents: int | None = None,
    new_current_revenue_cents: int | None = None,
) -> LedgerTransaction:
    """
    Manual correction recorded as one ADJUSTMENT row.

    Setting new_current_revenue_cents shifts available budget by the revenue
    difference; delta_cents is added on top. The combined change must be
    non-zero and may not take the budget below zero.
    """
    actor = _require_actor(actor)
    reason = (reason or "").strip()
    if not reason:
        raise MissingReason("An adjustment reason is required")
    if delta_cents is None and new_current_revenue_cents is None:
        raise NonPositiveAmount("Provide a budget delta or a new current revenue")

    account = _locked_account()

    change = 0
    if new_current_revenue_cents is not None:
        if isinstance(new_current_revenue_cents, bool) or not isinstance(new_current_revenue_cents, int):
            raise NonPositiveAmount("new current revenue must be a whole number of cents")
        if new_current_revenue_cents < 0:
            raise NonPositiveAmount("Current revenue cannot be negative")
        change += new_current_revenue_cents - account.current_revenue_cents
    if delta_cents is not None:
        if isinstance(delta_cents, bool) or not isinstance(delta_cents, int):
            raise NonPositiveAmount("Adjustment must be a whole number of cents")
        change += delta_cents

    if change == 0:
        raise NonPositiveAmount("Adjustment must change the available budget")

    available = account.available_budget_cents
    if available + change < 0:
        raise InsufficientBudget(
            f"Adjustment would make the budget negative. Available: {format_cents(available)}, "
            f"Adjustment: {format_cents(change)}",
            available_cents=available,
            requested_cents=-change,
        )

    if new_current_revenue_cents is not None:
        account.current_revenue_cents = new_current_revenue_cents
    account.available_budget_cents = available + change
    account.update_reason = reason

    return _append(
        account,
        tx_type=ADJUSTMENT,
        direction=DIRECTION_CREDIT if change > 0 else DIRECTION_DEBIT,
        amount_cents=abs(change),
        request_id=None,
        actor=actor,
        description=reason,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_transactions(
    limit: int = DEFAULT_TRANSACTION_LIMIT,
    *,
    request_id: int | None = None,
    tx_type: str | None = None,
    idempotency_key: str | None = None,
) -> list[LedgerTransaction]:
    """Newest first."""
    limit = max(1, min(int(limit), MAX_TRANSACTION_LIMIT))
    q = db.session.query(LedgerTransaction)
    if request_id is not None:
        q = q.filter(LedgerTransaction.request_id == request_id)
    if tx_type:
        q = q.filter(LedgerTransaction.type == tx_type)
    if idempotency_key:
        q = q.filter(LedgerTransaction.idempotency_key == idempotency_key)
    return (
        q.order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
        .limit(limit)
        .all()
    )


def request_net_effect(request_id: int) -> int:
    """Signed sum (cents) of every ledger row attributed to a request."""
    rows = db.session.query(LedgerTransaction).filter_by(request_id=request_id).all()
    return sum(row.signed_amount_cents for row in rows)


def _sum_amount(*criteria) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(LedgerTransaction.amount_cents), 0))
        .filter(*criteria)
        .scalar()
    )
    return int(total or 0)


def budget_status(utilization_percent: Decimal) -> str:
    for ceiling, label in BUDGET_BANDS:
        if utilization_percent < ceiling:
            return label
    return "Critical"


def get_statistics(now: datetime | None = None) -> dict:
    now = now or utcnow()
    account = ensure_account()

    if account.current_revenue_cents > 0:
        utilization = (
            Decimal(account.total_spent_cents) / Decimal(account.current_revenue_cents) * 100
        ).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    else:
        utilization = Decimal("0.00")

    last_30_days = _sum_amount(
        LedgerTransaction.type == DEBIT_ORDER,
        LedgerTransaction.created_at >= now - timedelta(days=30),
    )
    profit_total = _sum_amount(LedgerTransaction.type == CREDIT_DELIVERY_PROFIT)
    tx_count = db.session.query(db.func.count(LedgerTransaction.id)).scalar() or 0

    return {
        "account": account.to_dict(),
        "utilization_percent": str(utilization),
        "budget_status": budget_status(utilization),
        "transaction_count": int(tx_count),
        "last_30_days_spending_cents": last_30_days,
        "last_30_days_spending": format_cents(last_30_days),
        "delivery_profit_total_cents": profit_total,
        "delivery_profit_total": format_cents(profit_total),
        "as_of": to_utc_z(now),
    }


def get_monthly_spending(now: datetime | None = None) -> dict:
    now = now or utcnow()
    cur_start, cur_end = month_bounds(now)
    prev_start, prev_end = previous_month_bounds(now)

    current = _sum_amount(
        LedgerTransaction.type == DEBIT_ORDER,
        LedgerTransaction.created_at >= cur_start,
        LedgerTransaction.created_at < cur_end,
    )
    previous = _sum_amount(
        LedgerTransaction.type == DEBIT_ORDER,
        LedgerTransaction.created_at >= prev_start,
        LedgerTransaction.created_at < prev_end,
    )

    return {
        "current_month": cur_start.strftime("%Y-%m"),
        "previous_month": prev_start.strftime("%Y-%m"),
        "current_month_spending_cents": current,
        "previous_month_spending_cents": previous,
        "current_month_spending": format_cents(current),
        "previous_month_spending": format_cents(previous),
        "change_cents": current - previous,
    }


def replay_ledger() -> dict:
    """
    Recompute available budget from zero over every row in (created_at, id) order.

    Reports the first row whose stored balance_after_cents disagrees with the
    running total, and whether the final total matches the account snapshot.
    """
    rows = (
        db.session.query(LedgerTransaction)
        .order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.id.asc())
        .all()
    )

    balance = 0
    first_mismatch = None
    for row in rows:
        balance += row.signed_amount_cents
        if first_mismatch is None and row.balance_after_cents != balance:
            first_mismatch = {
                "transaction_id": row.id,
                "expected_balance_after_cents": balance,
                "recorded_balance_after_cents": row.balance_after_cents,
            }

    account = db.session.get(CompanyAccount, ACCOUNT_ID)
    account_balance = account.available_budget_cents if account else 0
    matches = balance == account_balance

    if first_mismatch is not None or not matches:
        logger.warning("Ledger replay mismatch first=%s computed=%s account=%s", first_mismatch, balance, account_balance)

    return {
        "ok": first_mismatch is None and matches,
        "transaction_count": len(rows),
        "computed_balance_cents": balance,
        "account_balance_cents": account_balance,
        "balance_matches_account": matches,
        "first_mismatch": first_mismatch,
    }
