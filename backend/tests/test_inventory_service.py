"""
Inventory ledger tests: movement signs, the non-negative stock guard,
adjustments, weighted-average cost and the read models.
"""

from decimal import Decimal

import pytest

from pharmapos.constants import MOVEMENT_SIGNS, MOVEMENT_TYPES
from pharmapos.errors import InsufficientResourceError, NotFoundError, ValidationError
from pharmapos.extensions import db
from pharmapos.models import InventoryMovement, Product
from pharmapos.services import inventory_service
from pharmapos.services.inventory_service import weighted_average_cost


def _movements(product_id):
    return db.session.query(InventoryMovement).filter_by(product_id=product_id).order_by(InventoryMovement.id).all()


def test_every_movement_type_has_a_sign():
    assert set(MOVEMENT_SIGNS) == set(MOVEMENT_TYPES)
    assert all(sign in (1, -1) for sign in MOVEMENT_SIGNS.values())


def test_purchase_movement_adds_stock_and_records_cost(make_product):
    product = make_product(stock=5, cost="2.50")

    movement = inventory_service.register_movement(
        product_id=product.id, movement_type="PURCHASE", quantity=4, reason="Initial order"
    )

    assert movement.quantity == 4
    assert movement.stock_after == 9
    assert movement.unit_cost == Decimal("2.5000")
    assert movement.total_cost == Decimal("10.0000")
    assert db.session.get(Product, product.id).stock == 9


def test_sale_movement_is_negative_even_with_positive_quantity(make_product):
    product = make_product(stock=5)

    movement = inventory_service.register_movement(
        product_id=product.id, movement_type="SALE", quantity=2
    )

    assert movement.quantity == -2
    assert db.session.get(Product, product.id).stock == 3


@pytest.mark.parametrize("movement_type,expected", [
    ("ADJUSTMENT", 11),
    ("TRANSFER", 9),
    ("INITIAL", 11),
    ("RETURN_IN", 11),
    ("RETURN_OUT", 9),
    ("LOSS", 9),
])
def test_sign_comes_from_type(make_product, movement_type, expected):
    product = make_product(stock=10)
    inventory_service.register_movement(product_id=product.id, movement_type=movement_type, quantity=1)
    assert db.session.get(Product, product.id).stock == expected


def test_movement_that_would_go_negative_is_rejected(make_product):
    product = make_product(stock=2, name="Aspirin")

    with pytest.raises(InsufficientResourceError) as exc:
        inventory_service.register_movement(product_id=product.id, movement_type="SALE", quantity=3)

    assert "Aspirin" in exc.value.message
    assert exc.value.details == {"product_id": product.id, "on_hand": 2, "requested": 3}
    assert db.session.get(Product, product.id).stock == 2
    assert _movements(product.id) == []


def test_stock_can_reach_exactly_zero(make_product):
    product = make_product(stock=3)
    inventory_service.register_movement(product_id=product.id, movement_type="LOSS", quantity=3)
    assert db.session.get(Product, product.id).stock == 0


@pytest.mark.parametrize("quantity", [0, -1, True, "2", 1.5])
def test_quantity_must_be_positive_integer(make_product, quantity):
    product = make_product()
    with pytest.raises(ValidationError):
        inventory_service.register_movement(product_id=product.id, movement_type="PURCHASE", quantity=quantity)


def test_unknown_type_and_product(make_product):
    product = make_product()
    with pytest.raises(ValidationError):
        inventory_service.register_movement(product_id=product.id, movement_type="GIFT", quantity=1)
    with pytest.raises(NotFoundError):
        inventory_service.register_movement(product_id=999999, movement_type="PURCHASE", quantity=1)


def test_conditional_decrement_only_one_of_two_succeeds(make_product):
    """Two decrements for the last unit: the second sees the committed stock."""
    product = make_product(stock=1)

    inventory_service.register_movement(product_id=product.id, movement_type="SALE", quantity=1)
    with pytest.raises(InsufficientResourceError):
        inventory_service.register_movement(product_id=product.id, movement_type="SALE", quantity=1)

    assert db.session.get(Product, product.id).stock == 0
    assert len(_movements(product.id)) == 1


# ===== Adjustments =====

def test_adjustment_surplus_becomes_adjustment(make_product):
    product = make_product(stock=10)

    movement = inventory_service.register_adjustment(
        product_id=product.id, real_quantity=13, reason="Physical count"
    )

    assert movement.type == "ADJUSTMENT"
    assert movement.quantity == 3
    assert db.session.get(Product, product.id).stock == 13


def test_adjustment_shortfall_becomes_loss(make_product):
    product = make_product(stock=10)

    movement = inventory_service.register_adjustment(
        product_id=product.id, real_quantity=7, reason="Broken bottles"
    )

    assert movement.type == "LOSS"
    assert movement.quantity == -3
    assert movement.reference_type == "ADJUSTMENT"
    assert db.session.get(Product, product.id).stock == 7


def test_adjustment_without_difference_is_rejected(make_product):
    product = make_product(stock=10)
    with pytest.raises(ValidationError):
        inventory_service.register_adjustment(product_id=product.id, real_quantity=10, reason="Count")
    assert _movements(product.id) == []


def test_adjustment_requires_reason(make_product):
    product = make_product(stock=10)
    with pytest.raises(ValidationError):
        inventory_service.register_adjustment(product_id=product.id, real_quantity=8, reason="")


# ===== Weighted-average cost =====

def test_weighted_average_cost():
    assert weighted_average_cost(10, Decimal("5.00"), 10, Decimal("7.00")) == Decimal("6.0000")
    assert weighted_average_cost(3, Decimal("1.00"), 0, Decimal("9.00")) == Decimal("1.0000")
    assert weighted_average_cost(2, Decimal("10.00"), 1, Decimal("1.00")) == Decimal("7.0000")


def test_weighted_average_cost_with_no_units_uses_incoming_cost():
    assert weighted_average_cost(0, Decimal("5.00"), 0, Decimal("8.25")) == Decimal("8.2500")


# ===== Read models =====

def test_kardex_is_newest_first_and_limited(make_product):
    product = make_product(stock=0)
    for qty in (5, 3, 1):
        inventory_service.register_movement(product_id=product.id, movement_type="PURCHASE", quantity=qty)

    kardex = inventory_service.get_kardex(product.id, limit=2)

    assert [m.quantity for m in kardex] == [1, 3]


def test_stock_valuation_and_low_stock(make_product):
    make_product(stock=10, cost="2.50")
    make_product(stock=4, cost="1.25")
    low = make_product(stock=2, min_stock=5, name="Ibuprofen")
    make_product(stock=100, cost="9.00", is_active=False)

    valuation = inventory_service.get_inventory_valuation()
    alerts = inventory_service.get_low_stock_alerts()

    # 10 * 2.50 + 4 * 1.25 + 2 * 5.00
    assert valuation["total_value"] == Decimal("40.00")
    assert valuation["product_count"] == 3
    assert [p.id for p in alerts] == [low.id]
    assert inventory_service.get_stock(low.id)["stock"] == 2
