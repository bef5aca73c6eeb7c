from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


SAGA_STARTED = "STARTED"
SAGA_COMPLETED = "COMPLETED"
SAGA_COMPENSATED = "COMPENSATED"


class SagaLog(db.Model):
    """
    Compensating-action log for transitions whose ledger effect is remote.

    A row is written (STARTED) in the same local transaction that reserves
    the request, and closed as COMPLETED once the remote ledger confirms, or
    COMPENSATED once the local effects have been reverted. `snapshot` holds
    the request fields needed to revert; `inventory_delta` is the stock
    movement that was applied locally and must be undone on compensation.
    `idempotency_key` is sent with the ledger call and is how a retry or a
    lookup finds the entry this saga wrote.
    """
    __tablename__ = "saga_logs"
    __table_args__ = (
        db.Index("ix_saga_status_created", "status", "created_at"),
        db.UniqueConstraint("idempotency_key", name="uq_saga_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, nullable=False, index=True)
    operation = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SAGA_STARTED)

    ledger_type = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    actor = db.Column(db.String(50), nullable=False)
    idempotency_key = db.Column(db.String(64), nullable=True)

    product_id = db.Column(db.Integer, nullable=True)
    warehouse_id = db.Column(db.Integer, nullable=True)
    inventory_delta = db.Column(db.Integer, nullable=False, default=0)

    snapshot = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def load_snapshot(self) -> dict:
        return json.loads(self.snapshot) if self.snapshot else {}

    def __repr__(self) -> str:
        return f"<SagaLog id={self.id} request_id={self.request_id} op={self.operation} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "operation": self.operation,
            "status": self.status,
            "ledger_type": self.ledger_type,
            "amount_cents": self.amount_cents,
            "actor": self.actor,
            "idempotency_key": self.idempotency_key,
            "inventory_delta": self.inventory_delta,
            "error": self.error,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
