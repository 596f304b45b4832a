# Overview: Inventory ledger (Kardex); the single choke point for stock changes.

"""
Inventory invariants (authoritative)

- Product.stock never goes negative. Every change goes through
  register_movement(), which applies it with one conditional UPDATE
  (stock + delta >= 0 in the same statement), so two concurrent sales
  cannot both pass a stale stock check.
- Movement sign comes from the movement type (MOVEMENT_SIGNS), never from
  the caller. Callers always send a positive quantity.
- Every stock change writes an immutable InventoryMovement row in the same
  transaction. Movements are never updated or deleted.
- Weighted-average cost is recomputed on receipt only, from current stock
  and cost, never retroactively.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import update

from ..constants import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_LOSS,
    MOVEMENT_SIGNS,
)
from ..errors import InsufficientResourceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryMovement, Product
from ..money import ZERO, round_cost, round_money
from .concurrency import lock_for_update, unit_of_work


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def weighted_average_cost(
    current_stock: int,
    current_cost: Decimal,
    incoming_quantity: int,
    incoming_cost: Decimal,
) -> Decimal:
    """
    (stock * cost + qty * incoming_cost) / (stock + qty)

    Falls back to incoming_cost when the combined quantity is zero.
    """
    total_units = current_stock + incoming_quantity
    if total_units == 0:
        return round_cost(Decimal(incoming_cost))

    current_value = Decimal(current_stock) * Decimal(current_cost)
    incoming_value = Decimal(incoming_quantity) * Decimal(incoming_cost)
    return round_cost((current_value + incoming_value) / Decimal(total_units))


def _apply_stock_delta(product: Product, delta: int) -> int:
    """
    Compare-and-update the stock of one product.

    Returns the new stock or raises InsufficientResourceError when the
    change would drive it below zero at the moment of the write.
    """
    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.stock + delta >= 0)
        .values(stock=Product.stock + delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    # Pull the committed value back into the identity map
    db.session.refresh(product, attribute_names=["stock"])

    if result.rowcount == 0:
        raise InsufficientResourceError(
            f"Insufficient stock. Product {product.name}, on hand {product.stock}, requested {abs(delta)}",
            details={
                "product_id": product.id,
                "on_hand": product.stock,
                "requested": abs(delta),
            },
        )
    return product.stock


@unit_of_work
def register_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    user_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    unit_cost: Decimal | None = None,
) -> InventoryMovement:
    """
    Record one stock movement and apply it to the product.

    Joins the caller's transaction (sale completion, purchase receipt,
    adjustment); commits only when called on its own.
    """
    if movement_type not in MOVEMENT_SIGNS:
        raise ValidationError(f"Invalid movement type: {movement_type}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Movement quantity must be a positive integer")

    product = get_product(product_id)

    delta = MOVEMENT_SIGNS[movement_type] * quantity
    cost = round_cost(Decimal(product.cost if unit_cost is None else unit_cost))
    total_cost = round_cost(cost * abs(delta))

    stock_after = _apply_stock_delta(product, delta)

    movement = InventoryMovement(
        product_id=product.id,
        type=movement_type,
        quantity=delta,
        unit_cost=cost,
        total_cost=total_cost,
        stock_after=stock_after,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


@unit_of_work
def register_adjustment(
    *,
    product_id: int,
    real_quantity: int,
    reason: str,
    user_id: int | None = None,
) -> InventoryMovement:
    """
    Physical count: bring stock to real_quantity.

    A surplus becomes an ADJUSTMENT, a shortfall a LOSS of |difference|.
    """
    if isinstance(real_quantity, bool) or not isinstance(real_quantity, int) or real_quantity < 0:
        raise ValidationError("Counted quantity must be a non-negative integer")
    if not reason:
        raise ValidationError("reason required")

    product = get_product(product_id, lock=True)
    difference = real_quantity - product.stock
    if difference == 0:
        raise ValidationError(
            f"Counted quantity equals current stock ({product.stock}); nothing to adjust"
        )

    movement_type = MOVEMENT_ADJUSTMENT if difference > 0 else MOVEMENT_LOSS
    movement = register_movement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=abs(difference),
        reason=f"Manual adjustment: {reason}",
        user_id=user_id,
        reference_type="ADJUSTMENT",
    )
    current_app.logger.info(
        "Stock adjusted for product %s: %s -> %s (%s)",
        product.id, product.stock - movement.quantity, product.stock, movement_type,
    )
    return movement


# =============================================================================
# READ MODELS
# =============================================================================

def get_stock(product_id: int) -> dict:
    product = get_product(product_id)
    return {
        "id": product.id,
        "name": product.name,
        "stock": product.stock,
        "min_stock": product.min_stock,
    }


def get_kardex(product_id: int, limit: int | None = None) -> list[InventoryMovement]:
    """Most recent movements first."""
    get_product(product_id)
    if limit is None:
        limit = current_app.config.get("KARDEX_DEFAULT_LIMIT", 50)
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_inventory_valuation() -> dict:
    """Sum of stock * cost over active products that have stock."""
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock > 0)
        .all()
    )
    total = ZERO
    for product in products:
        total += Decimal(product.cost) * product.stock
    return {
        "total_value": round_money(total),
        "product_count": len(products),
    }


def get_low_stock_alerts() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock <= Product.min_stock)
        .order_by(Product.name)
        .all()
    )
