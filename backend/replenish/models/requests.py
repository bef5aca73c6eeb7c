from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


class ProductRequest(db.Model):
    """
    One replenishment order.

    LIFECYCLE (see services/lifecycle_service.py for the transition table):
        Pending -> Approved -> ReadyForShipment -> SoldOut
        Pending -> Rejected | Cancelled
        Approved -> Cancelled
        ReadyForShipment -> Approved (abort)

    INVARIANTS:
    - product_id, requested_quantity, unit_cost_cents and total_cost_cents are
      fixed at creation (re-pricing is never applied).
    - requested_at <= decided_at <= received_at when present; each is set once.
    - notes is append-only: every transition adds one tagged line.
    - saga_id is set only while a remote ledger call for this request is in
      flight; no other transition may start until it is cleared.
    """
    __tablename__ = "product_requests"
    __table_args__ = (
        db.CheckConstraint("requested_quantity > 0", name="ck_requests_quantity_positive"),
        db.CheckConstraint("total_cost_cents >= 0", name="ck_requests_total_cost_non_negative"),
        db.Index("ix_requests_status_requested_at", "status", "requested_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, nullable=False, default=1)
    requested_quantity = db.Column(db.Integer, nullable=False)

    # Price snapshot (cents)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(32), nullable=False, default="Pending", index=True)

    requested_by = db.Column(db.String(50), nullable=False, index=True)
    approved_by = db.Column(db.String(50), nullable=True)
    received_by = db.Column(db.String(50), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    saga_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    __mapper_args__ = {"version_id_col": version_id}

    @validates("product_id", "requested_quantity", "unit_cost_cents", "total_cost_cents")
    def _validate_immutable(self, key, value):
        current = getattr(self, key)
        if current is not None and current != value:
            raise ValueError(f"{key} is immutable once the request exists")
        return value

    def __repr__(self) -> str:
        return f"<ProductRequest id={self.id} product_id={self.product_id} status={self.status!r}>"

    def to_dict(self, *, include_product: bool = False) -> dict:
        data = {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "requested_quantity": self.requested_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "total_cost": format_cents(self.total_cost_cents),
            "status": self.status,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "received_by": self.received_by,
            "requested_at": to_utc_z(self.requested_at),
            "decided_at": to_utc_z(self.decided_at),
            "received_at": to_utc_z(self.received_at),
            "notes": self.notes,
            "in_flight": self.saga_id is not None,
            "version_id": self.version_id,
        }
        if include_product and self.product is not None:
            data["product"] = self.product.to_dict()
        return data
