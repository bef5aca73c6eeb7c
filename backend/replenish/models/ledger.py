from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


# Transaction types
DEBIT_ORDER = "DEBIT_ORDER"
CREDIT_REJECTED = "CREDIT_REJECTED"
CREDIT_CANCELLED = "CREDIT_CANCELLED"
CREDIT_DELETED = "CREDIT_DELETED"
CREDIT_DELIVERY_PROFIT = "CREDIT_DELIVERY_PROFIT"
ADJUSTMENT = "ADJUSTMENT"

CREDIT_TYPES = {CREDIT_REJECTED, CREDIT_CANCELLED, CREDIT_DELETED, CREDIT_DELIVERY_PROFIT}
TRANSACTION_TYPES = CREDIT_TYPES | {DEBIT_ORDER, ADJUSTMENT}

# Effect on available budget
DIRECTION_DEBIT = "DEBIT"
DIRECTION_CREDIT = "CREDIT"


class CompanyAccount(db.Model):
    """
    The single ledger account of the deployment (one row, id=1).

    Updated in place, but only together with an appended LedgerTransaction
    in the same DB transaction (see services/ledger_service.py). version_id
    serializes concurrent ledger writers.
    """
    __tablename__ = "company_accounts"
    __table_args__ = (
        db.CheckConstraint("available_budget_cents >= 0", name="ck_account_budget_non_negative"),
        db.CheckConstraint("total_spent_cents >= 0", name="ck_account_spent_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)

    current_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    available_budget_cents = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_by = db.Column(db.String(50), nullable=True)
    update_reason = db.Column(db.String(255), nullable=True)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CompanyAccount budget_cents={self.available_budget_cents} spent_cents={self.total_spent_cents}>"

    def to_dict(self) -> dict:
        return {
            "current_revenue_cents": self.current_revenue_cents,
            "available_budget_cents": self.available_budget_cents,
            "total_spent_cents": self.total_spent_cents,
            "current_revenue": format_cents(self.current_revenue_cents),
            "available_budget": format_cents(self.available_budget_cents),
            "total_spent": format_cents(self.total_spent_cents),
            "updated_by": self.updated_by,
            "update_reason": self.update_reason,
            "last_updated": to_utc_z(self.last_updated),
        }


class LedgerTransaction(db.Model):
    """
    Append-only ledger row, one per account mutation.

    - amount_cents is always positive; direction says which way it moved
      available budget (DEBIT decreases, CREDIT increases).
    - balance_after_cents snapshots available budget right after this row, so
      replaying rows in (created_at, id) order from zero must reproduce every
      snapshot.
    - request_id is a plain reference (no FK): the request may be deleted
      while its debit/credit pair stays for audit. It is only unique within
      the instance that owns the request, so it is never used for dedup.
    - idempotency_key is unique. Local entries use "request:<id>:<direction>"
      (one debit and one credit per request); remote callers send their own
      saga key so request ids from different instances cannot collide.
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
        db.CheckConstraint("amount_cents > 0", name="ck_ledger_amount_positive"),
        db.Index("ix_ledger_created", "created_at", "id"),
        db.Index("ix_ledger_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False)
    direction = db.Column(db.String(8), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    request_id = db.Column(db.Integer, nullable=True, index=True)
    actor = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    balance_after_cents = db.Column(db.Integer, nullable=False)
    idempotency_key = db.Column(db.String(64), nullable=True)

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == DIRECTION_CREDIT else -self.amount_cents

    def __repr__(self) -> str:
        return f"<LedgerTransaction id={self.id} type={self.type} amount_cents={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "request_id": self.request_id,
            "actor": self.actor,
            "created_at": to_utc_z(self.created_at),
            "description": self.description,
            "balance_after_cents": self.balance_after_cents,
            "balance_after": format_cents(self.balance_after_cents),
            "idempotency_key": self.idempotency_key,
        }
