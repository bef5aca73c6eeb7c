from __future__ import annotations

from ..extensions import db
from ..money import format_cents
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data (price source for new requests).

    Catalog maintenance lives elsewhere; this table only has to answer
    "what does one unit cost right now". Requests snapshot that price at
    creation and never look at it again.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_products_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    supplier = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "supplier": self.supplier,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
