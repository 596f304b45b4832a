"""
Purchase Service - supplier orders, receipt and supplier debt

WHY: An order is only a promise until the goods arrive. Stock, product cost
and what we owe the supplier all change on receipt, not on creation.

STATE:
- status (PENDING, PARTIAL, PAID, CANCELLED) follows the money
- delivery_status (PENDING, RECEIVED, CANCELLED) follows the goods
The two are independent except that RECEIVED is one-way and freezes items.

SUPPLIER BALANCE:
- + outstanding balance on receipt
- - each payment made after receipt (re-added if the payment is removed)
- on cancel, money already paid either comes back as cash or stays with the
  supplier as a credit note (negative balance)
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..constants import (
    CASH_PURCHASE_PAYMENT,
    CASH_REFUND_IN,
    DELIVERY_CANCELLED,
    DELIVERY_PENDING,
    DELIVERY_RECEIVED,
    METHOD_CASH,
    MOVEMENT_PURCHASE,
    MOVEMENT_RETURN_OUT,
    PURCHASE_CANCELLED,
    PURCHASE_PAID,
    PURCHASE_PARTIAL,
    PURCHASE_PENDING,
)
from ..errors import (
    InsufficientResourceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..inputs import PaymentInput, PurchaseLineInput
from ..models import Product, ProductCostHistory, Purchase, PurchaseItem, PurchasePayment, Supplier
from ..money import ZERO, positive_quantity, round_cost, round_money, to_decimal
from ..time_utils import utcnow
from .cash_shift_service import CashShiftProvider, default_shift_provider
from .concurrency import lock_for_update, unit_of_work
from .document_service import DOC_PURCHASE, next_document_number
from .inventory_service import get_product, register_movement, weighted_average_cost
from .payment_allocation_service import validate_method


def _get_purchase(purchase_id: int, *, lock: bool = True) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def _get_supplier(supplier_id: int, *, lock: bool = False) -> Supplier:
    query = db.session.query(Supplier).filter_by(id=supplier_id)
    if lock:
        query = lock_for_update(query)
    supplier = query.first()
    if supplier is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")
    return supplier


def _ensure_not_cancelled(purchase: Purchase) -> None:
    if purchase.status == PURCHASE_CANCELLED:
        raise InvalidStateError(f"Purchase {purchase.document_number} is cancelled")


def _ensure_items_editable(purchase: Purchase) -> None:
    _ensure_not_cancelled(purchase)
    if purchase.delivery_status != DELIVERY_PENDING:
        raise InvalidStateError(
            f"Purchase {purchase.document_number} is {purchase.delivery_status}; items can no longer change",
            details={"delivery_status": purchase.delivery_status},
        )


def _require_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _recalculate_totals(purchase: Purchase) -> None:
    subtotal = sum((Decimal(item.subtotal) for item in purchase.items), ZERO)
    purchase.subtotal = round_money(subtotal)
    purchase.total = purchase.subtotal
    _recalculate_payment_state(purchase)


def _recalculate_payment_state(purchase: Purchase) -> None:
    paid = round_money(sum((Decimal(p.amount) for p in purchase.payments), ZERO))
    purchase.paid_amount = paid
    purchase.balance = round_money(Decimal(purchase.total) - paid)

    if purchase.status == PURCHASE_CANCELLED:
        return
    if paid > 0 and paid >= Decimal(purchase.total):
        purchase.status = PURCHASE_PAID
    elif paid > 0:
        purchase.status = PURCHASE_PARTIAL
    else:
        purchase.status = PURCHASE_PENDING


def _guard_total_not_below_paid(purchase: Purchase, new_total: Decimal) -> None:
    if new_total < Decimal(purchase.paid_amount):
        raise InvalidStateError(
            f"This change would drop the total to {new_total}, below the {purchase.paid_amount} already paid",
            details={"new_total": str(new_total), "paid_amount": str(purchase.paid_amount)},
        )


def _record_payment(
    purchase: Purchase,
    payment: PaymentInput,
    user_id: int | None,
    shifts: CashShiftProvider,
) -> PurchasePayment:
    validate_method(payment.method)
    balance = Decimal(purchase.balance)
    if payment.amount > balance:
        raise InsufficientResourceError(
            f"Payment of {payment.amount} exceeds the purchase balance of {balance}",
            details={"amount": str(payment.amount), "balance": str(balance)},
        )

    shift = None
    if payment.method == METHOD_CASH:
        shift = shifts.require_open_shift(user_id, "cash payments to suppliers")
        shifts.record(
            shift,
            transaction_type=CASH_PURCHASE_PAYMENT,
            amount=payment.amount,
            reason=f"Payment for purchase {purchase.document_number}",
            user_id=user_id,
            reference_type="PURCHASE",
            reference_id=purchase.id,
        )

    record = PurchasePayment(
        method=payment.method,
        amount=payment.amount,
        reference=payment.reference,
        cash_shift_id=shift.id if shift else None,
        user_id=user_id,
    )
    purchase.payments.append(record)
    _recalculate_payment_state(purchase)
    return record


# =============================================================================
# ORDER
# =============================================================================

@unit_of_work
def create_purchase(
    supplier_id: int,
    items: list[PurchaseLineInput],
    payments: list[PaymentInput] | None = None,
    invoice_number: str | None = None,
    note: str | None = None,
    user_id: int | None = None,
    shifts: CashShiftProvider | None = None,
) -> Purchase:
    """
    Create a purchase order, optionally paying part of it up front.

    Supplier debt is not touched here; it is assumed on receipt.
    """
    if not items:
        raise ValidationError("A purchase needs at least one item")

    supplier = _get_supplier(supplier_id)
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier.name} is inactive")
    for line in items:
        _require_product(line.product_id)

    purchase = Purchase(
        document_number=next_document_number(
            document_type=DOC_PURCHASE,
            prefix=current_app.config.get("PURCHASE_PREFIX", "C"),
        ),
        invoice_number=invoice_number,
        supplier_id=supplier.id,
        user_id=user_id,
        status=PURCHASE_PENDING,
        delivery_status=DELIVERY_PENDING,
        paid_amount=ZERO,
        note=note,
    )
    db.session.add(purchase)

    for line in items:
        purchase.items.append(PurchaseItem(
            product_id=line.product_id,
            quantity=line.quantity,
            cost=line.cost,
            subtotal=round_money(line.cost * line.quantity),
        ))
    _recalculate_totals(purchase)
    db.session.flush()

    shifts = shifts or default_shift_provider
    for payment in payments or []:
        _record_payment(purchase, payment, user_id, shifts)

    db.session.flush()
    current_app.logger.info(
        "Purchase %s created for supplier %s, total %s, paid up front %s",
        purchase.document_number, supplier.id, purchase.total, purchase.paid_amount,
    )
    return purchase


@unit_of_work
def update_purchase(
    purchase_id: int,
    supplier_id: int | None = None,
    invoice_number: str | None = None,
) -> Purchase:
    """Edit header fields. The supplier is fixed once goods are received."""
    purchase = _get_purchase(purchase_id)
    _ensure_not_cancelled(purchase)

    if supplier_id is not None and supplier_id != purchase.supplier_id:
        if purchase.delivery_status == DELIVERY_RECEIVED:
            raise InvalidStateError("Cannot change the supplier of a received purchase")
        purchase.supplier_id = _get_supplier(supplier_id).id
    if invoice_number is not None:
        purchase.invoice_number = invoice_number

    db.session.flush()
    return purchase


@unit_of_work
def add_item(purchase_id: int, line: PurchaseLineInput) -> PurchaseItem:
    purchase = _get_purchase(purchase_id)
    _ensure_items_editable(purchase)
    _require_product(line.product_id)

    item = PurchaseItem(
        product_id=line.product_id,
        quantity=line.quantity,
        cost=line.cost,
        subtotal=round_money(line.cost * line.quantity),
    )
    purchase.items.append(item)
    _recalculate_totals(purchase)
    db.session.flush()
    return item


@unit_of_work
def update_item(purchase_id: int, item_id: int, quantity: int | None = None, cost=None) -> PurchaseItem:
    """Replace the quantity and/or unit cost of a line."""
    purchase = _get_purchase(purchase_id)
    _ensure_items_editable(purchase)

    item = next((i for i in purchase.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found on purchase {purchase.document_number}")
    if quantity is None and cost is None:
        raise ValidationError("Nothing to update; send quantity and/or cost")

    new_quantity = positive_quantity(quantity) if quantity is not None else item.quantity
    if cost is not None:
        new_cost = round_cost(to_decimal(cost, "cost"))
        if new_cost < 0:
            raise ValidationError("cost cannot be negative")
    else:
        new_cost = Decimal(item.cost)
    new_subtotal = round_money(new_cost * new_quantity)

    _guard_total_not_below_paid(
        purchase, Decimal(purchase.total) - Decimal(item.subtotal) + new_subtotal
    )

    item.quantity = new_quantity
    item.cost = new_cost
    item.subtotal = new_subtotal
    _recalculate_totals(purchase)
    db.session.flush()
    return item


@unit_of_work
def remove_item(purchase_id: int, item_id: int) -> Purchase:
    purchase = _get_purchase(purchase_id)
    _ensure_items_editable(purchase)

    item = next((i for i in purchase.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found on purchase {purchase.document_number}")
    _guard_total_not_below_paid(purchase, Decimal(purchase.total) - Decimal(item.subtotal))

    purchase.items.remove(item)
    _recalculate_totals(purchase)
    db.session.flush()
    return purchase


# =============================================================================
# RECEIPT
# =============================================================================

@unit_of_work
def receive(purchase_id: int, user_id: int | None = None) -> Purchase:
    """
    Receive the goods: stock up, re-average cost, assume supplier debt.

    Can only happen once. A second call fails before touching stock.
    """
    purchase = _get_purchase(purchase_id)
    _ensure_not_cancelled(purchase)
    if purchase.delivery_status == DELIVERY_RECEIVED:
        raise InvalidStateError(f"Purchase {purchase.document_number} was already received")
    if purchase.delivery_status != DELIVERY_PENDING:
        raise InvalidStateError(f"Purchase {purchase.document_number} is {purchase.delivery_status}")
    if not purchase.items:
        raise InvalidStateError("Cannot receive a purchase with no items")

    for item in purchase.items:
        product = get_product(item.product_id, lock=True)
        previous_cost = round_cost(Decimal(product.cost))
        new_cost = weighted_average_cost(product.stock, previous_cost, item.quantity, Decimal(item.cost))
        product.cost = new_cost

        register_movement(
            product_id=product.id,
            movement_type=MOVEMENT_PURCHASE,
            quantity=item.quantity,
            reason=f"Receipt of purchase {purchase.document_number}",
            user_id=user_id,
            reference_type="PURCHASE",
            reference_id=purchase.id,
            unit_cost=item.cost,
        )

        if new_cost != previous_cost:
            db.session.add(ProductCostHistory(
                product_id=product.id,
                purchase_id=purchase.id,
                previous_cost=previous_cost,
                cost=new_cost,
                changed_by_user_id=user_id,
            ))

    supplier = _get_supplier(purchase.supplier_id, lock=True)
    supplier.balance = round_money(Decimal(supplier.balance) + Decimal(purchase.balance))

    purchase.delivery_status = DELIVERY_RECEIVED
    purchase.received_at = utcnow()
    purchase.received_by_user_id = user_id
    db.session.flush()

    current_app.logger.info(
        "Purchase %s received: %s line(s), supplier %s balance now %s",
        purchase.document_number, len(purchase.items), supplier.id, supplier.balance,
    )
    return purchase


# =============================================================================
# PAYMENTS
# =============================================================================

@unit_of_work
def add_payment(
    purchase_id: int,
    payment: PaymentInput,
    user_id: int | None = None,
    shifts: CashShiftProvider | None = None,
) -> PurchasePayment:
    purchase = _get_purchase(purchase_id)
    _ensure_not_cancelled(purchase)
    if Decimal(purchase.balance) <= 0:
        raise InvalidStateError(f"Purchase {purchase.document_number} is already fully paid")

    record = _record_payment(purchase, payment, user_id, shifts or default_shift_provider)

    if purchase.delivery_status == DELIVERY_RECEIVED:
        supplier = _get_supplier(purchase.supplier_id, lock=True)
        supplier.balance = round_money(Decimal(supplier.balance) - record.amount)

    db.session.flush()
    current_app.logger.info(
        "Payment %s of %s applied to purchase %s (balance %s)",
        record.method, record.amount, purchase.document_number, purchase.balance,
    )
    return record


@unit_of_work
def remove_payment(
    purchase_id: int,
    payment_id: int,
    user_id: int | None = None,
    shifts: CashShiftProvider | None = None,
) -> Purchase:
    """
    Undo a payment. Cash comes back into the remover's open shift.
    """
    purchase = _get_purchase(purchase_id)
    _ensure_not_cancelled(purchase)

    record = next((p for p in purchase.payments if p.id == payment_id), None)
    if record is None:
        raise NotFoundError(f"Payment {payment_id} not found on purchase {purchase.document_number}")
    amount = Decimal(record.amount)

    if record.method == METHOD_CASH:
        shifts = shifts or default_shift_provider
        shift = shifts.require_open_shift(user_id, "returning a cash payment")
        shifts.record(
            shift,
            transaction_type=CASH_REFUND_IN,
            amount=amount,
            reason=f"Removed payment {record.id} on purchase {purchase.document_number}",
            user_id=user_id,
            reference_type="PURCHASE",
            reference_id=purchase.id,
        )

    purchase.payments.remove(record)
    _recalculate_payment_state(purchase)

    if purchase.delivery_status == DELIVERY_RECEIVED:
        supplier = _get_supplier(purchase.supplier_id, lock=True)
        supplier.balance = round_money(Decimal(supplier.balance) + amount)

    db.session.flush()
    return purchase


# =============================================================================
# CANCELLATION
# =============================================================================

@unit_of_work
def cancel(
    purchase_id: int,
    return_to_cash: bool = False,
    user_id: int | None = None,
    reason: str | None = None,
    shifts: CashShiftProvider | None = None,
) -> Purchase:
    """
    Cancel a purchase.

    Received goods go back out (RETURN_OUT) and the outstanding debt is
    released. Money already paid either returns to the canceller's drawer
    (return_to_cash) or stays with the supplier as a credit note.
    Product cost is not re-averaged backwards.
    """
    purchase = _get_purchase(purchase_id)
    if purchase.status == PURCHASE_CANCELLED:
        raise InvalidStateError(f"Purchase {purchase.document_number} is already cancelled")

    supplier = _get_supplier(purchase.supplier_id, lock=True)
    paid = Decimal(purchase.paid_amount)

    if purchase.delivery_status == DELIVERY_RECEIVED:
        for item in purchase.items:
            register_movement(
                product_id=item.product_id,
                movement_type=MOVEMENT_RETURN_OUT,
                quantity=item.quantity,
                reason=f"Cancellation of purchase {purchase.document_number}",
                user_id=user_id,
                reference_type="PURCHASE_CANCEL",
                reference_id=purchase.id,
                unit_cost=item.cost,
            )
        supplier.balance = round_money(Decimal(supplier.balance) - Decimal(purchase.balance))

    if paid > 0:
        if return_to_cash:
            shifts = shifts or default_shift_provider
            shift = shifts.require_open_shift(user_id, "cash returned by a supplier")
            shifts.record(
                shift,
                transaction_type=CASH_REFUND_IN,
                amount=paid,
                reason=f"Supplier refund for cancelled purchase {purchase.document_number}",
                user_id=user_id,
                reference_type="PURCHASE",
                reference_id=purchase.id,
            )
        else:
            # Credit note: may take the supplier balance negative
            supplier.balance = round_money(Decimal(supplier.balance) - paid)

    purchase.status = PURCHASE_CANCELLED
    purchase.delivery_status = DELIVERY_CANCELLED
    purchase.balance = ZERO
    purchase.cancelled_at = utcnow()
    purchase.cancelled_by_user_id = user_id
    if reason:
        purchase.note = f"{purchase.note} | Cancelled: {reason}" if purchase.note else f"Cancelled: {reason}"
    db.session.flush()

    current_app.logger.info(
        "Purchase %s cancelled by user %s; supplier %s balance now %s",
        purchase.document_number, user_id, supplier.id, supplier.balance,
    )
    return purchase


def get_purchase(purchase_id: int) -> Purchase:
    return _get_purchase(purchase_id, lock=False)
