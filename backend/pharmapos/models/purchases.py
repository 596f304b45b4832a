from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Purchase(db.Model):
    """
    Purchase order from a supplier.

    status (PENDING, PARTIAL, PAID, CANCELLED) tracks payment and
    delivery_status (PENDING, RECEIVED, CANCELLED) tracks physical receipt.
    Receiving is one-way and freezes the items.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.Index("ix_purchases_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False, unique=True)
    # Supplier's own invoice number, when they sent one
    invoice_number = db.Column(db.String(64), nullable=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    delivery_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "invoice_number": self.invoice_number,
            "supplier_id": self.supplier_id,
            "user_id": self.user_id,
            "status": self.status,
            "delivery_status": self.delivery_status,
            "subtotal": money_str(self.subtotal),
            "total": money_str(self.total),
            "paid_amount": money_str(self.paid_amount),
            "balance": money_str(self.balance),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    cost = db.Column(db.Numeric(14, 4), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    purchase = db.relationship(
        "Purchase",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="PurchaseItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "cost": money_str(self.cost),
            "subtotal": money_str(self.subtotal),
        }


class PurchasePayment(db.Model):
    __tablename__ = "purchase_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    method = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    cash_shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase = db.relationship(
        "Purchase",
        backref=db.backref("payments", lazy=True, cascade="all, delete-orphan", order_by="PurchasePayment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "method": self.method,
            "amount": money_str(self.amount),
            "reference": self.reference,
            "cash_shift_id": self.cash_shift_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
