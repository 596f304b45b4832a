from decimal import Decimal

import pytest

from conftest import CASHIER_ID
from pharmapos.errors import (
    ConflictError,
    InsufficientResourceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pharmapos.extensions import db
from pharmapos.inputs import PaymentInput, PurchaseLineInput
from pharmapos.models import CashTransaction, InventoryMovement, Product, ProductCostHistory, Supplier
from pharmapos.services import purchase_service


def _product(product):
    return db.session.get(Product, product.id)


def _supplier_balance(supplier):
    return db.session.get(Supplier, supplier.id).balance


def _order(supplier, *lines, payments=None):
    return purchase_service.create_purchase(
        supplier.id,
        [PurchaseLineInput(p.id, qty, Decimal(cost)) for p, qty, cost in lines],
        payments=payments,
        user_id=CASHIER_ID,
    )


# ===== Order =====

def test_create_purchase_does_not_touch_stock_or_debt(make_product, supplier):
    product = make_product(stock=10)

    purchase = _order(supplier, (product, 10, "7.00"))

    assert purchase.document_number == "C-000001"
    assert purchase.status == "PENDING"
    assert purchase.delivery_status == "PENDING"
    assert purchase.total == Decimal("70.00")
    assert purchase.balance == Decimal("70.00")
    assert _product(product).stock == 10
    assert _supplier_balance(supplier) == Decimal("0.00")


def test_create_purchase_validates_references(make_product, supplier):
    product = make_product()

    with pytest.raises(NotFoundError):
        purchase_service.create_purchase(999999, [PurchaseLineInput(product.id, 1, Decimal("1"))])
    with pytest.raises(NotFoundError):
        purchase_service.create_purchase(supplier.id, [PurchaseLineInput(999999, 1, Decimal("1"))])
    with pytest.raises(ValidationError):
        purchase_service.create_purchase(supplier.id, [])


def test_up_front_cash_payment_needs_shift(make_product, supplier):
    product = make_product()

    with pytest.raises(ConflictError):
        _order(supplier, (product, 10, "5.00"), payments=[PaymentInput("CASH", "20.00")])


def test_up_front_payments(make_product, supplier, open_shift):
    product = make_product()

    purchase = _order(
        supplier, (product, 10, "5.00"),
        payments=[PaymentInput("CASH", "20.00"), PaymentInput("TRANSFER", "10.00")],
    )

    assert purchase.status == "PARTIAL"
    assert purchase.paid_amount == Decimal("30.00")
    assert purchase.balance == Decimal("20.00")
    outflow = db.session.query(CashTransaction).filter_by(type="PURCHASE_PAYMENT").one()
    assert outflow.amount == Decimal("20.00")
    assert outflow.shift_id == open_shift.id


def test_payment_cannot_exceed_balance(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 1, "5.00"))

    with pytest.raises(InsufficientResourceError):
        purchase_service.add_payment(purchase.id, PaymentInput("CARD", "5.01"))


def test_item_editing_reaggregates(make_product, supplier):
    a = make_product()
    b = make_product()
    purchase = _order(supplier, (a, 2, "3.00"))

    item = purchase_service.add_item(purchase.id, PurchaseLineInput(b.id, 4, Decimal("1.50")))
    purchase_service.update_item(purchase.id, item.id, quantity=5, cost="2.00")
    purchase = purchase_service.get_purchase(purchase.id)
    assert purchase.total == Decimal("16.00")

    purchase = purchase_service.remove_item(purchase.id, purchase.items[0].id)
    assert purchase.total == Decimal("10.00")
    assert purchase.balance == Decimal("10.00")


def test_item_edit_cannot_drop_total_below_paid(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 10, "1.00"), payments=[PaymentInput("CARD", "8.00")])

    with pytest.raises(InvalidStateError):
        purchase_service.update_item(purchase.id, purchase.items[0].id, quantity=5)


def test_update_header(make_product, supplier, db_session):
    product = make_product()
    other = Supplier(name="Other", balance=Decimal("0"))
    db_session.add(other)
    db_session.commit()
    purchase = _order(supplier, (product, 1, "1.00"))

    purchase = purchase_service.update_purchase(purchase.id, supplier_id=other.id, invoice_number="INV-77")

    assert purchase.supplier_id == other.id
    assert purchase.invoice_number == "INV-77"


# ===== Receipt =====

def test_receive_moves_stock_cost_and_debt(make_product, supplier):
    product = make_product(stock=10, cost="5.00")
    purchase = _order(supplier, (product, 10, "7.00"))

    purchase = purchase_service.receive(purchase.id, user_id=CASHIER_ID)

    assert purchase.delivery_status == "RECEIVED"
    assert purchase.received_at is not None
    p = _product(product)
    assert p.stock == 20
    assert p.cost == Decimal("6.0000")
    assert _supplier_balance(supplier) == Decimal("70.00")

    movement = db.session.query(InventoryMovement).filter_by(reference_type="PURCHASE").one()
    assert movement.quantity == 10
    assert movement.unit_cost == Decimal("7.0000")

    history = db.session.query(ProductCostHistory).filter_by(product_id=product.id).one()
    assert (history.previous_cost, history.cost) == (Decimal("5.0000"), Decimal("6.0000"))


def test_receive_into_empty_stock_takes_incoming_cost(make_product, supplier):
    product = make_product(stock=0, cost="5.00")
    purchase = _order(supplier, (product, 4, "3.25"))

    purchase_service.receive(purchase.id)

    assert _product(product).cost == Decimal("3.2500")


def test_receive_same_cost_writes_no_history(make_product, supplier):
    product = make_product(stock=3, cost="5.00")
    purchase = _order(supplier, (product, 3, "5.00"))

    purchase_service.receive(purchase.id)

    assert db.session.query(ProductCostHistory).count() == 0


def test_receive_twice_fails_without_second_stock_change(make_product, supplier):
    product = make_product(stock=0)
    purchase = _order(supplier, (product, 5, "1.00"))
    purchase_service.receive(purchase.id)

    with pytest.raises(InvalidStateError):
        purchase_service.receive(purchase.id)

    assert _product(product).stock == 5
    assert db.session.query(InventoryMovement).count() == 1
    assert _supplier_balance(supplier) == Decimal("5.00")


def test_receive_only_assumes_outstanding_balance(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 10, "5.00"), payments=[PaymentInput("CARD", "30.00")])

    purchase_service.receive(purchase.id)

    assert _supplier_balance(supplier) == Decimal("20.00")


def test_items_frozen_after_receipt(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 1, "1.00"))
    purchase_service.receive(purchase.id)

    with pytest.raises(InvalidStateError):
        purchase_service.add_item(purchase.id, PurchaseLineInput(product.id, 1, Decimal("1")))
    with pytest.raises(InvalidStateError):
        purchase_service.update_item(purchase.id, purchase.items[0].id, quantity=3)
    with pytest.raises(InvalidStateError):
        purchase_service.remove_item(purchase.id, purchase.items[0].id)
    with pytest.raises(InvalidStateError):
        purchase_service.update_purchase(purchase.id, supplier_id=999)


# ===== Payments after receipt =====

def test_payment_after_receipt_reduces_supplier_balance(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 10, "5.00"))
    purchase_service.receive(purchase.id)

    payment = purchase_service.add_payment(purchase.id, PaymentInput("TRANSFER", "50.00"))

    assert _supplier_balance(supplier) == Decimal("0.00")
    assert purchase_service.get_purchase(purchase.id).status == "PAID"

    purchase = purchase_service.remove_payment(purchase.id, payment.id)
    assert purchase.status == "PENDING"
    assert purchase.balance == Decimal("50.00")
    assert _supplier_balance(supplier) == Decimal("50.00")


def test_removing_cash_payment_returns_cash_to_shift(make_product, supplier, open_shift):
    product = make_product()
    purchase = _order(supplier, (product, 10, "5.00"), payments=[PaymentInput("CASH", "15.00")])

    purchase_service.remove_payment(purchase.id, purchase.payments[0].id, user_id=CASHIER_ID)

    refund = db.session.query(CashTransaction).filter_by(type="REFUND_IN").one()
    assert refund.amount == Decimal("15.00")
    with pytest.raises(NotFoundError):
        purchase_service.remove_payment(purchase.id, 999999, user_id=CASHIER_ID)


# ===== Cancellation =====

def test_cancel_received_purchase_with_credit_note(make_product, supplier):
    product = make_product(stock=0)
    purchase = _order(supplier, (product, 10, "5.00"), payments=[PaymentInput("CARD", "20.00")])
    purchase_service.receive(purchase.id)
    assert _supplier_balance(supplier) == Decimal("30.00")

    purchase = purchase_service.cancel(purchase.id, return_to_cash=False, user_id=CASHIER_ID)

    assert purchase.status == "CANCELLED"
    assert purchase.delivery_status == "CANCELLED"
    assert purchase.balance == Decimal("0.00")
    assert _product(product).stock == 0
    # The 20.00 already paid stays with the supplier as a credit note
    assert _supplier_balance(supplier) == Decimal("-20.00")
    out = db.session.query(InventoryMovement).filter_by(type="RETURN_OUT").one()
    assert out.quantity == -10


def test_cancel_with_cash_back(make_product, supplier, open_shift):
    product = make_product()
    purchase = _order(supplier, (product, 10, "5.00"), payments=[PaymentInput("CARD", "20.00")])

    purchase_service.cancel(purchase.id, return_to_cash=True, user_id=CASHIER_ID)

    assert _supplier_balance(supplier) == Decimal("0.00")
    refund = db.session.query(CashTransaction).filter_by(type="REFUND_IN").one()
    assert refund.amount == Decimal("20.00")


def test_cancel_received_goods_already_sold_fails(make_product, supplier):
    from pharmapos.services import inventory_service

    product = make_product(stock=0)
    purchase = _order(supplier, (product, 5, "1.00"))
    purchase_service.receive(purchase.id)
    inventory_service.register_movement(product_id=product.id, movement_type="SALE", quantity=3)

    with pytest.raises(InsufficientResourceError):
        purchase_service.cancel(purchase.id)

    assert purchase_service.get_purchase(purchase.id).delivery_status == "RECEIVED"
    assert _supplier_balance(supplier) == Decimal("5.00")


def test_cancel_twice_and_mutations_after_cancel(make_product, supplier):
    product = make_product()
    purchase = _order(supplier, (product, 1, "1.00"))
    purchase_service.cancel(purchase.id)

    with pytest.raises(InvalidStateError):
        purchase_service.cancel(purchase.id)
    with pytest.raises(InvalidStateError):
        purchase_service.receive(purchase.id)
    with pytest.raises(InvalidStateError):
        purchase_service.add_payment(purchase.id, PaymentInput("CARD", "1.00"))
