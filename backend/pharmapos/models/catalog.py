from __future__ import annotations

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    The catalog owns the row's lifecycle; the core only writes ``stock``
    (through the inventory ledger) and ``cost`` (weighted average on receipt).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # Weighted-average unit cost
    cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price": money_str(self.price),
            "cost": money_str(self.cost),
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Client(db.Model):
    """
    Customer account.

    current_debt moves only through sale completion (credit sales), payment
    allocation and cancellation/return reversal. It never goes negative.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.CheckConstraint("current_debt >= 0", name="ck_clients_debt_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    has_credit = db.Column(db.Boolean, nullable=False, default=False)
    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_debt = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Client id={self.id} name={self.name!r} debt={self.current_debt}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "has_credit": self.has_credit,
            "credit_limit": money_str(self.credit_limit),
            "current_debt": money_str(self.current_debt),
            "is_active": self.is_active,
        }


class Supplier(db.Model):
    """
    Supplier account.

    balance is what the business owes the supplier. A negative balance is a
    credit note: the supplier owes the business.
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "balance": money_str(self.balance),
            "is_active": self.is_active,
        }


class ClientProductPrice(db.Model):
    """Active special price a client pays for a product."""
    __tablename__ = "client_product_prices"
    __table_args__ = (
        db.UniqueConstraint("client_id", "product_id", name="uq_client_product_prices_client_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "product_id": self.product_id,
            "price": money_str(self.price),
            "is_active": self.is_active,
        }


class ClientProductPriceHistory(db.Model):
    """Closed and open intervals of a client's special price for a product."""
    __tablename__ = "client_product_price_history"
    __table_args__ = (
        db.Index("ix_client_price_history_open", "client_id", "product_id", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    changed_by_user_id = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "product_id": self.product_id,
            "price": money_str(self.price),
            "sale_id": self.sale_id,
            "changed_by_user_id": self.changed_by_user_id,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
        }


class ProductCostHistory(db.Model):
    """Weighted-average cost changes caused by purchase receipts."""
    __tablename__ = "product_cost_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    previous_cost = db.Column(db.Numeric(14, 4), nullable=False)
    cost = db.Column(db.Numeric(14, 4), nullable=False)
    changed_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "purchase_id": self.purchase_id,
            "previous_cost": money_str(self.previous_cost),
            "cost": money_str(self.cost),
            "changed_by_user_id": self.changed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
