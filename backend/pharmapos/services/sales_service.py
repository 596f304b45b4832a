"""
Sales Service - Document-first sale processing

WHY: Separates sale intent from inventory posting. A DRAFT sale is a cart:
items can be added and removed freely and stock is untouched. Completing the
sale is the single point where stock leaves the shelf, cost and profit are
frozen and the invoice number is assigned.

LIFECYCLE (flow_status):
- DRAFT -> COMPLETED (complete_sale, exactly once)
- DRAFT -> CANCELLED
- COMPLETED -> CANCELLED (stock and debt reversed)
- COMPLETED -> returns (create_return, repeatable, lines never mutated)
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..constants import (
    CASH_REFUND_OUT,
    FLOW_CANCELLED,
    FLOW_COMPLETED,
    FLOW_DRAFT,
    METHOD_CASH,
    METHOD_RETURN_CREDIT,
    MOVEMENT_LOSS,
    MOVEMENT_RETURN_IN,
    MOVEMENT_SALE,
    SALE_CANCELLED,
    SALE_PENDING,
)
from ..errors import (
    InsufficientResourceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..inputs import PaymentInput, ReturnLineInput, SaleLineInput
from ..models import (
    Client,
    ClientProductPrice,
    ClientProductPriceHistory,
    Product,
    Sale,
    SaleItem,
    SalePayment,
    SaleRefund,
    SaleReturn,
    SaleReturnItem,
)
from ..money import ZERO, round_cost, round_money
from ..time_utils import utcnow
from .cash_shift_service import CashShiftProvider, default_shift_provider
from .concurrency import lock_for_update, unit_of_work
from .document_service import DOC_INVOICE, next_document_number
from .inventory_service import register_movement
from .payment_allocation_service import (
    apply_payment_to_sale,
    recalculate_sale_payments,
    reduce_client_debt,
)


# =============================================================================
# HELPERS
# =============================================================================

def _get_sale(sale_id: int, *, lock: bool = True) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _ensure_draft(sale: Sale) -> None:
    if sale.flow_status != FLOW_DRAFT:
        raise InvalidStateError(
            f"Sale {sale.id} is {sale.flow_status} and can no longer be edited",
            details={"sale_id": sale.id, "flow_status": sale.flow_status},
        )


def _sellable_product(product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive and cannot be sold")
    return product


def _get_client(client_id: int, *, lock: bool = False) -> Client:
    query = db.session.query(Client).filter_by(id=client_id)
    if lock:
        query = lock_for_update(query)
    client = query.first()
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def _resolve_price(product: Product, client_id: int | None, explicit: Decimal | None) -> Decimal:
    """Negotiated price, then the client's active special price, then catalog."""
    if explicit is not None:
        return round_money(explicit)
    if client_id:
        special = db.session.query(ClientProductPrice).filter_by(
            client_id=client_id, product_id=product.id, is_active=True
        ).first()
        if special:
            return round_money(Decimal(special.price))
    return round_money(Decimal(product.price))


def _recalculate_totals(sale: Sale) -> None:
    """Re-aggregate from the lines; never adjust incrementally."""
    subtotal = sum((Decimal(item.subtotal) for item in sale.items), ZERO)
    sale.subtotal = round_money(subtotal)
    sale.total = sale.subtotal
    sale.balance = round_money(Decimal(sale.total) - Decimal(sale.paid_amount or 0))


def _returned_quantities(sale: Sale) -> dict[int, int]:
    """sale_item_id -> units already returned."""
    rows = (
        db.session.query(SaleReturnItem.sale_item_id, func.sum(SaleReturnItem.quantity))
        .join(SaleReturn, SaleReturn.id == SaleReturnItem.sale_return_id)
        .filter(SaleReturn.sale_id == sale.id)
        .group_by(SaleReturnItem.sale_item_id)
        .all()
    )
    return {item_id: int(qty or 0) for item_id, qty in rows}


def _update_client_prices(sale: Sale, user_id: int | None) -> None:
    """
    Remember the price each line was sold at as the client's special price.

    Unchanged prices are skipped; a changed price closes the open history
    interval and starts a new one.
    """
    if not sale.client_id:
        return

    now = utcnow()
    for item in sale.items:
        new_price = Decimal(item.price)
        existing = db.session.query(ClientProductPrice).filter_by(
            client_id=sale.client_id, product_id=item.product_id
        ).first()
        if existing and Decimal(existing.price) == new_price and existing.is_active:
            continue

        db.session.query(ClientProductPriceHistory).filter_by(
            client_id=sale.client_id, product_id=item.product_id, end_date=None
        ).update({"end_date": now}, synchronize_session=False)

        if existing:
            existing.price = new_price
            existing.is_active = True
        else:
            db.session.add(ClientProductPrice(
                client_id=sale.client_id,
                product_id=item.product_id,
                price=new_price,
                is_active=True,
            ))

        db.session.add(ClientProductPriceHistory(
            client_id=sale.client_id,
            product_id=item.product_id,
            price=new_price,
            sale_id=sale.id,
            changed_by_user_id=user_id,
            start_date=now,
        ))


# =============================================================================
# DRAFT
# =============================================================================

@unit_of_work
def create_sale(
    items: list[SaleLineInput],
    client_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> Sale:
    """Create a DRAFT sale. Stock is not touched until completion."""
    if client_id is not None:
        client = _get_client(client_id)
        if not client.is_active:
            raise ValidationError(f"Client {client.name} is inactive")

    seen: set[int] = set()
    for line in items:
        if line.product_id in seen:
            raise ValidationError(
                f"Product {line.product_id} appears more than once; send one line per product"
            )
        seen.add(line.product_id)

    sale = Sale(
        flow_status=FLOW_DRAFT,
        status=SALE_PENDING,
        client_id=client_id,
        user_id=user_id,
        note=note,
        paid_amount=ZERO,
    )
    db.session.add(sale)

    for line in items:
        product = _sellable_product(line.product_id)
        price = _resolve_price(product, client_id, line.price)
        sale.items.append(SaleItem(
            product_id=product.id,
            quantity=line.quantity,
            price=price,
            subtotal=round_money(price * line.quantity),
        ))

    _recalculate_totals(sale)
    db.session.flush()

    current_app.logger.info("Sale %s created as DRAFT with %s line(s), total %s", sale.id, len(items), sale.total)
    return sale


@unit_of_work
def add_item(sale_id: int, line: SaleLineInput) -> SaleItem:
    """Add a line to a DRAFT sale, merging into an existing line for the same product."""
    sale = _get_sale(sale_id)
    _ensure_draft(sale)

    product = _sellable_product(line.product_id)

    item = next((i for i in sale.items if i.product_id == product.id), None)
    if item is not None:
        price = round_money(line.price) if line.price is not None else Decimal(item.price)
        quantity = item.quantity + line.quantity
        subtotal = round_money(price * quantity)

        new_total = Decimal(sale.total) - Decimal(item.subtotal) + subtotal
        if new_total < Decimal(sale.paid_amount):
            raise InvalidStateError(
                f"Repricing this item would drop the total to {new_total}, below the {sale.paid_amount} already paid",
                details={"new_total": str(new_total), "paid_amount": str(sale.paid_amount)},
            )

        item.price = price
        item.quantity = quantity
        item.subtotal = subtotal
    else:
        price = _resolve_price(product, sale.client_id, line.price)
        item = SaleItem(
            product_id=product.id,
            quantity=line.quantity,
            price=price,
            subtotal=round_money(price * line.quantity),
        )
        sale.items.append(item)

    _recalculate_totals(sale)
    recalculate_sale_payments(sale)
    db.session.flush()
    return item


@unit_of_work
def delete_item(sale_id: int, item_id: int) -> Sale:
    sale = _get_sale(sale_id)
    _ensure_draft(sale)

    item = next((i for i in sale.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found on sale {sale.id}")

    new_total = Decimal(sale.total) - Decimal(item.subtotal)
    if new_total < Decimal(sale.paid_amount):
        raise InvalidStateError(
            f"Removing this item would drop the total to {new_total}, below the {sale.paid_amount} already paid",
            details={"new_total": str(new_total), "paid_amount": str(sale.paid_amount)},
        )

    sale.items.remove(item)
    _recalculate_totals(sale)
    recalculate_sale_payments(sale)
    db.session.flush()
    return sale


# =============================================================================
# COMPLETION
# =============================================================================

@unit_of_work
def complete_sale(sale_id: int, user_id: int | None = None) -> Sale:
    """
    Finalize a DRAFT sale.

    Any unpaid balance becomes client debt, which requires a client with
    credit and enough room under the limit. Every line posts a SALE
    movement through the ledger; one product short of stock aborts the
    whole completion.
    """
    sale = _get_sale(sale_id)
    _ensure_draft(sale)
    if not sale.items:
        raise InvalidStateError("Cannot complete a sale with no items", details={"sale_id": sale.id})

    _recalculate_totals(sale)
    recalculate_sale_payments(sale)
    balance = Decimal(sale.balance)

    client = None
    if balance > 0:
        if not sale.client_id:
            raise InvalidStateError(
                f"Sale has an unpaid balance of {balance} and no client to carry it",
                details={"balance": str(balance)},
            )
        client = _get_client(sale.client_id, lock=True)
        if not client.has_credit:
            raise InsufficientResourceError(
                f"Client {client.name} has no credit; the sale must be paid in full",
                details={"client_id": client.id, "balance": str(balance)},
            )
        available = Decimal(client.credit_limit) - Decimal(client.current_debt)
        if balance > available:
            raise InsufficientResourceError(
                f"Credit limit exceeded for {client.name}. Available {available}, required {balance}",
                details={
                    "client_id": client.id,
                    "credit_limit": str(client.credit_limit),
                    "current_debt": str(client.current_debt),
                    "balance": str(balance),
                },
            )

    sale.invoice_number = next_document_number(
        document_type=DOC_INVOICE,
        prefix=current_app.config.get("INVOICE_PREFIX", "F"),
    )

    total_cost = Decimal("0")
    for item in sale.items:
        cost = round_cost(Decimal(item.product.cost))
        register_movement(
            product_id=item.product_id,
            movement_type=MOVEMENT_SALE,
            quantity=item.quantity,
            reason=f"Sale {sale.invoice_number}",
            user_id=user_id,
            reference_type="SALE",
            reference_id=sale.id,
            unit_cost=cost,
        )
        item.cost_at_sale = cost
        total_cost += cost * item.quantity

    sale.total_cost = round_cost(total_cost)
    sale.profit = Decimal(sale.total) - sale.total_cost

    if client is not None:
        client.current_debt = round_money(Decimal(client.current_debt) + balance)

    _update_client_prices(sale, user_id)

    sale.flow_status = FLOW_COMPLETED
    sale.completed_at = utcnow()
    db.session.flush()

    current_app.logger.info(
        "Sale %s completed as %s: total %s, cost %s, on credit %s",
        sale.id, sale.invoice_number, sale.total, sale.total_cost, balance,
    )
    return sale


# =============================================================================
# PAYMENTS
# =============================================================================

@unit_of_work
def add_payment(
    sale_id: int,
    payment: PaymentInput,
    user_id: int | None = None,
    shifts: CashShiftProvider | None = None,
) -> SalePayment:
    """
    Take a payment against a sale.

    Raises:
        InvalidStateError: sale cancelled or already fully paid
        ConflictError: cash without an open shift
        InsufficientResourceError: non-cash payment above the balance
    """
    sale = _get_sale(sale_id)
    record = apply_payment_to_sale(
        sale,
        method=payment.method,
        amount=payment.amount,
        user_id=user_id,
        reference=payment.reference,
        shifts=shifts,
    )
    current_app.logger.info(
        "Payment %s of %s applied to sale %s (balance %s)",
        record.method, record.amount, sale.id, sale.balance,
    )
    return record


# =============================================================================
# CANCELLATION AND RETURNS
# =============================================================================

def _collected_amount(sale: Sale) -> Decimal:
    """Money actually taken for the sale, net of refunds already handed back."""
    received = db.session.query(func.coalesce(func.sum(SalePayment.amount), 0)).filter(
        SalePayment.sale_id == sale.id,
        SalePayment.method != METHOD_RETURN_CREDIT,
    ).scalar()
    refunded = db.session.query(func.coalesce(func.sum(SaleRefund.amount), 0)).filter(
        SaleRefund.sale_id == sale.id,
    ).scalar()
    return round_money(Decimal(received or 0) - Decimal(refunded or 0))


@unit_of_work
def cancel_sale(
    sale_id: int,
    user_id: int | None = None,
    reason: str | None = None,
    shifts: CashShiftProvider | None = None,
) -> Sale:
    """
    Cancel a DRAFT or COMPLETED sale.

    A completed sale puts back every unit not already returned and releases
    the client debt it still carries. Money collected is recorded as a
    refund and taken out of the canceller's open shift; with no shift open
    the refund is still recorded and a warning logged.
    """
    sale = _get_sale(sale_id)
    if sale.flow_status == FLOW_CANCELLED or sale.status == SALE_CANCELLED:
        raise InvalidStateError(f"Sale {sale.id} is already cancelled")

    was_completed = sale.flow_status == FLOW_COMPLETED

    if was_completed:
        returned = _returned_quantities(sale)
        for item in sale.items:
            remaining = item.quantity - returned.get(item.id, 0)
            if remaining <= 0:
                continue
            register_movement(
                product_id=item.product_id,
                movement_type=MOVEMENT_RETURN_IN,
                quantity=remaining,
                reason=f"Cancellation of sale {sale.invoice_number}",
                user_id=user_id,
                reference_type="SALE_CANCEL",
                reference_id=sale.id,
                unit_cost=item.cost_at_sale,
            )

        if sale.client_id and Decimal(sale.balance) > 0:
            client = _get_client(sale.client_id, lock=True)
            reduce_client_debt(client, Decimal(sale.balance))

    refund_amount = _collected_amount(sale)
    if refund_amount > 0:
        sale_return = SaleReturn(
            sale_id=sale.id,
            processed_by_user_id=user_id,
            total=refund_amount,
            note=f"Cancellation: {reason}" if reason else "Cancellation",
        )
        db.session.add(sale_return)
        db.session.flush()

        shifts = shifts or default_shift_provider
        shift = shifts.current_shift(user_id)
        refund = SaleRefund(
            sale_return_id=sale_return.id,
            sale_id=sale.id,
            amount=refund_amount,
            method=METHOD_CASH,
            cash_shift_id=shift.id if shift else None,
        )
        db.session.add(refund)

        if shift is not None:
            shifts.record(
                shift,
                transaction_type=CASH_REFUND_OUT,
                amount=refund_amount,
                reason=f"Refund for cancelled sale {sale.invoice_number or sale.id}",
                user_id=user_id,
                reference_type="SALE",
                reference_id=sale.id,
            )
        else:
            current_app.logger.warning(
                "Sale %s cancelled with %s collected but user %s has no open shift; "
                "refund recorded without a cash movement",
                sale.id, refund_amount, user_id,
            )

    sale.flow_status = FLOW_CANCELLED
    sale.status = SALE_CANCELLED
    sale.balance = ZERO
    sale.cancelled_at = utcnow()
    sale.cancelled_by_user_id = user_id
    db.session.flush()

    current_app.logger.info("Sale %s cancelled by user %s", sale.id, user_id)
    return sale


@unit_of_work
def create_return(
    sale_id: int,
    lines: list[ReturnLineInput],
    refund_to_customer: bool = True,
    note: str | None = None,
    user_id: int | None = None,
    shifts: CashShiftProvider | None = None,
) -> SaleReturn:
    """
    Return some or all units of a COMPLETED sale.

    Restocked lines go back on the shelf (RETURN_IN). Damaged lines are
    recorded as RETURN_IN immediately written off as LOSS. The refund first
    settles the sale's open balance (RETURN_CREDIT payment, lowering the
    client's debt); anything beyond that is paid in cash from the open shift.
    """
    if not lines:
        raise ValidationError("At least one line is required for a return")

    sale = _get_sale(sale_id)
    if sale.flow_status != FLOW_COMPLETED:
        raise InvalidStateError(
            f"Only completed sales can be returned; sale {sale.id} is {sale.flow_status}",
        )

    items_by_id = {item.id: item for item in sale.items}
    returned = _returned_quantities(sale)
    requested: dict[int, int] = {}
    for line in lines:
        item = items_by_id.get(line.sale_item_id)
        if item is None:
            raise NotFoundError(f"Item {line.sale_item_id} not found on sale {sale.id}")
        requested[item.id] = requested.get(item.id, 0) + line.quantity
        returnable = item.quantity - returned.get(item.id, 0)
        if requested[item.id] > returnable:
            raise ValidationError(
                f"Cannot return {requested[item.id]} of item {item.id}; only {returnable} of {item.quantity} remain returnable",
                details={"sale_item_id": item.id, "returnable": returnable},
            )

    sale_return = SaleReturn(sale_id=sale.id, processed_by_user_id=user_id, note=note, total=ZERO)
    db.session.add(sale_return)
    db.session.flush()

    total = ZERO
    for line in lines:
        item = items_by_id[line.sale_item_id]
        subtotal = round_money(Decimal(item.price) * line.quantity)
        db.session.add(SaleReturnItem(
            sale_return_id=sale_return.id,
            sale_item_id=item.id,
            product_id=item.product_id,
            quantity=line.quantity,
            unit_price=item.price,
            subtotal=subtotal,
            restock=line.restock,
            reason=line.reason,
        ))
        register_movement(
            product_id=item.product_id,
            movement_type=MOVEMENT_RETURN_IN,
            quantity=line.quantity,
            reason=f"Return on sale {sale.invoice_number}",
            user_id=user_id,
            reference_type="SALE_RETURN",
            reference_id=sale_return.id,
            unit_cost=item.cost_at_sale,
        )
        if not line.restock:
            register_movement(
                product_id=item.product_id,
                movement_type=MOVEMENT_LOSS,
                quantity=line.quantity,
                reason=f"Damaged return on sale {sale.invoice_number}: {line.reason or 'no reason given'}",
                user_id=user_id,
                reference_type="SALE_RETURN",
                reference_id=sale_return.id,
                unit_cost=item.cost_at_sale,
            )
        total += subtotal

    sale_return.total = round_money(total)

    if refund_to_customer and total > 0:
        credit_part = min(total, Decimal(sale.balance))
        if credit_part > 0:
            db.session.add(SalePayment(
                sale_id=sale.id,
                method=METHOD_RETURN_CREDIT,
                amount=credit_part,
                change_amount=ZERO,
                reference=f"Return {sale_return.id}",
                user_id=user_id,
            ))
            db.session.flush()
            recalculate_sale_payments(sale)
            if sale.client_id:
                reduce_client_debt(_get_client(sale.client_id, lock=True), credit_part)

        cash_part = round_money(total - credit_part)
        if cash_part > 0:
            shifts = shifts or default_shift_provider
            shift = shifts.require_open_shift(user_id, "cash refunds")
            shifts.record(
                shift,
                transaction_type=CASH_REFUND_OUT,
                amount=cash_part,
                reason=f"Refund for return {sale_return.id} on sale {sale.invoice_number}",
                user_id=user_id,
                reference_type="SALE_RETURN",
                reference_id=sale_return.id,
            )
            db.session.add(SaleRefund(
                sale_return_id=sale_return.id,
                sale_id=sale.id,
                amount=cash_part,
                method=METHOD_CASH,
                cash_shift_id=shift.id,
            ))

    db.session.flush()
    current_app.logger.info("Return %s on sale %s processed, total %s", sale_return.id, sale.id, sale_return.total)
    return sale_return


def get_sale(sale_id: int) -> Sale:
    return _get_sale(sale_id, lock=False)


def get_sale_by_invoice(invoice_number: str) -> Sale:
    sale = db.session.query(Sale).filter_by(invoice_number=invoice_number.strip()).first()
    if sale is None:
        raise NotFoundError(f"Sale with invoice {invoice_number} not found")
    return sale
