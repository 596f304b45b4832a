from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class InventoryMovement(db.Model):
    """
    Kardex row: one signed stock movement for a product.

    Append-only. quantity carries the sign derived from the movement type;
    total_cost is |quantity| * unit_cost.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        db.Index("ix_inventory_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    unit_cost = db.Column(db.Numeric(14, 4), nullable=False)
    total_cost = db.Column(db.Numeric(14, 4), nullable=False)

    # Stock right after this movement was applied
    stock_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    # Originating document (SALE, PURCHASE, SALE_RETURN, ADJUSTMENT)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "unit_cost": money_str(self.unit_cost),
            "total_cost": money_str(self.total_cost),
            "stock_after": self.stock_after,
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
