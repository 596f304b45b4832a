from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Sale document.

    flow_status (DRAFT, COMPLETED, CANCELLED) governs editability;
    status (PENDING, PARTIAL, COMPLETED, CANCELLED) tracks payment progress.
    Items are editable only while DRAFT. invoice_number, total_cost and
    profit are frozen when the sale is completed.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_client_open", "client_id", "flow_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=True, unique=True)

    flow_status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    profit = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    client = db.relationship("Client", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "flow_status": self.flow_status,
            "status": self.status,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "subtotal": money_str(self.subtotal),
            "total": money_str(self.total),
            "total_cost": money_str(self.total_cost),
            "profit": money_str(self.profit),
            "paid_amount": money_str(self.paid_amount),
            "balance": money_str(self.balance),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """Line on a sale; price is the unit price at the time of sale."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "product_id", name="uq_sale_items_sale_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    # Weighted-average cost snapshot taken on completion
    cost_at_sale = db.Column(db.Numeric(14, 4), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, cascade="all, delete-orphan", order_by="SaleItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": money_str(self.price),
            "subtotal": money_str(self.subtotal),
            "cost_at_sale": money_str(self.cost_at_sale),
        }


class SalePayment(db.Model):
    """
    Money applied to a sale.

    amount is what was applied to the balance; change_amount is the cash
    handed back on over-tender. Cash payments link to the shift that took them.
    """
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.Index("ix_sale_payments_shift_method", "cash_shift_id", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    method = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    change_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    reference = db.Column(db.String(128), nullable=True)

    cash_shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("payments", lazy=True, order_by="SalePayment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount": money_str(self.amount),
            "change_amount": money_str(self.change_amount),
            "reference": self.reference,
            "cash_shift_id": self.cash_shift_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class SaleReturn(db.Model):
    """Post-completion reversal (partial, total, or a cancellation record)."""
    __tablename__ = "sale_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    processed_by_user_id = db.Column(db.Integer, nullable=True)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True, order_by="SaleReturn.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "processed_by_user_id": self.processed_by_user_id,
            "total": money_str(self.total),
            "note": self.note,
            "items": [item.to_dict() for item in self.items],
            "refunds": [refund.to_dict() for refund in self.refunds],
            "created_at": to_utc_z(self.created_at),
        }


class SaleReturnItem(db.Model):
    __tablename__ = "sale_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    restock = db.Column(db.Boolean, nullable=False, default=True)
    reason = db.Column(db.String(255), nullable=True)

    sale_return = db.relationship("SaleReturn", backref=db.backref("items", lazy=True, order_by="SaleReturnItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "subtotal": money_str(self.subtotal),
            "restock": self.restock,
            "reason": self.reason,
        }


class SaleRefund(db.Model):
    """Money handed back to the customer for a return or cancellation."""
    __tablename__ = "sale_refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False, default="CASH")
    # Null when no shift was open to take the cash out of
    cash_shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale_return = db.relationship("SaleReturn", backref=db.backref("refunds", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_return_id": self.sale_return_id,
            "sale_id": self.sale_id,
            "amount": money_str(self.amount),
            "method": self.method,
            "cash_shift_id": self.cash_shift_id,
            "created_at": to_utc_z(self.created_at),
        }
