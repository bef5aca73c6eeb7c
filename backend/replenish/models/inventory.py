from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    Stock counter for one product in one warehouse.

    INVARIANTS:
    - quantity_in_stock >= 0 at every committed snapshot (CHECK constraint backs
      up the service-level guard).
    - Mutated only through inventory_service.adjust_stock (signed delta).
    - minimum_level / maximum_level are advisory (low-stock reporting only).

    version_id gives optimistic concurrency: two writers that read the same
    version cannot both commit.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", name="uq_inventory_product_warehouse"),
        db.CheckConstraint("quantity_in_stock >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_low_stock", "quantity_in_stock", "minimum_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, nullable=False, default=1, index=True)
    location = db.Column(db.String(64), nullable=True)

    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    minimum_level = db.Column(db.Integer, nullable=False, default=0)
    maximum_level = db.Column(db.Integer, nullable=False, default=0)

    last_stock_update = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("inventory_items", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryItem product_id={self.product_id} warehouse_id={self.warehouse_id} "
            f"qty={self.quantity_in_stock}>"
        )

    @property
    def is_low(self) -> bool:
        return self.quantity_in_stock <= self.minimum_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "location": self.location,
            "quantity_in_stock": self.quantity_in_stock,
            "minimum_level": self.minimum_level,
            "maximum_level": self.maximum_level,
            "is_low": self.is_low,
            "last_stock_update": to_utc_z(self.last_stock_update),
            "version_id": self.version_id,
        }
