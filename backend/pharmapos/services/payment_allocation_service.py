"""
Payment Allocation Service

Applies client money to sales, either to a single document or across a
client's open invoices oldest-first (FIFO).

DESIGN PRINCIPLES:
- Sale totals are derived from its SalePayment rows, never adjusted in place
- Cash payments must land in the payer's open shift
- Client debt floors at zero; money left after every open invoice is covered
  is reported back as overpaid_not_applied, not silently dropped
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..constants import (
    FLOW_COMPLETED,
    METHOD_CASH,
    PAYMENT_METHODS,
    SALE_CANCELLED,
    SALE_COMPLETED,
    SALE_PARTIAL,
    SALE_PENDING,
)
from ..errors import (
    InsufficientResourceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Client, Sale, SalePayment
from ..money import ZERO, money_str, positive_money, round_money
from .cash_shift_service import CashShiftProvider, default_shift_provider
from .concurrency import lock_for_update, unit_of_work


@dataclass
class Allocation:
    sale_id: int
    invoice_number: str | None
    applied: Decimal
    balance_after: Decimal
    status: str

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "invoice_number": self.invoice_number,
            "applied": money_str(self.applied),
            "balance_after": money_str(self.balance_after),
            "status": self.status,
        }


@dataclass
class ClientPaymentResult:
    client_id: int
    amount: Decimal
    applied: Decimal
    overpaid_not_applied: Decimal
    remaining_debt: Decimal
    allocations: list[Allocation] = field(default_factory=list)

    @property
    def overpaid(self) -> bool:
        return self.overpaid_not_applied > 0

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "amount": money_str(self.amount),
            "applied": money_str(self.applied),
            "overpaid": self.overpaid,
            "overpaid_not_applied": money_str(self.overpaid_not_applied),
            "remaining_debt": money_str(self.remaining_debt),
            "allocations": [a.to_dict() for a in self.allocations],
        }


def validate_method(method: str) -> str:
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {PAYMENT_METHODS}")
    return method


def recalculate_sale_payments(sale: Sale) -> None:
    """
    Re-derive paid_amount, balance and status from the sale's payments.

    STATUS:
    - PENDING: nothing paid
    - PARTIAL: 0 < paid < total
    - COMPLETED: paid >= total
    CANCELLED sales keep their status.
    """
    paid = db.session.query(
        func.coalesce(func.sum(SalePayment.amount), 0)
    ).filter(SalePayment.sale_id == sale.id).scalar()
    paid = round_money(Decimal(paid or 0))

    sale.paid_amount = paid
    sale.balance = round_money(Decimal(sale.total) - paid)

    if sale.status == SALE_CANCELLED:
        return
    if paid >= Decimal(sale.total) and paid > 0:
        sale.status = SALE_COMPLETED
    elif paid > 0:
        sale.status = SALE_PARTIAL
    else:
        sale.status = SALE_PENDING


def reduce_client_debt(client: Client, amount: Decimal) -> Decimal:
    """Lower current_debt by amount, never below zero. Returns the new debt."""
    new_debt = Decimal(client.current_debt) - Decimal(amount)
    client.current_debt = round_money(new_debt) if new_debt > 0 else ZERO
    return client.current_debt


def apply_payment_to_sale(
    sale: Sale,
    *,
    method: str,
    amount: Decimal,
    user_id: int | None,
    reference: str | None = None,
    shifts: CashShiftProvider | None = None,
) -> SalePayment:
    """
    Apply one payment to one sale inside the caller's transaction.

    Cash over-tender is accepted: the applied amount is capped at the
    balance and the rest recorded as change. Other methods may not exceed
    the balance. On a completed sale the client's debt drops by the
    applied amount.
    """
    if sale.status == SALE_CANCELLED:
        raise InvalidStateError("Cannot add a payment to a cancelled sale")
    balance = Decimal(sale.balance)
    if balance <= 0:
        raise InvalidStateError("Sale is already fully paid")

    validate_method(method)
    amount = positive_money(amount)

    shift = None
    if method == METHOD_CASH:
        shift = (shifts or default_shift_provider).require_open_shift(user_id, "cash payments")

    change = ZERO
    applied = amount
    if amount > balance:
        if method != METHOD_CASH:
            raise InsufficientResourceError(
                f"Payment of {amount} exceeds the remaining balance of {balance}",
                details={"amount": str(amount), "balance": str(balance)},
            )
        applied = balance
        change = round_money(amount - balance)

    payment = SalePayment(
        sale_id=sale.id,
        method=method,
        amount=applied,
        change_amount=change,
        reference=reference,
        cash_shift_id=shift.id if shift else None,
        user_id=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    recalculate_sale_payments(sale)

    if sale.flow_status == FLOW_COMPLETED and sale.client_id:
        client = lock_for_update(db.session.query(Client).filter_by(id=sale.client_id)).first()
        reduce_client_debt(client, applied)

    return payment


@unit_of_work
def register_client_payment(
    client_id: int,
    amount,
    method: str,
    user_id: int | None,
    reference: str | None = None,
    shifts: CashShiftProvider | None = None,
) -> ClientPaymentResult:
    """
    Spread a client payment over their open invoices, oldest first.

    Each touched invoice gets its own SalePayment. Whatever is left once
    every open invoice is settled is returned as overpaid_not_applied.

    Raises:
        NotFoundError: unknown client
        InvalidStateError: the client owes nothing
        ConflictError: cash payment without an open shift
    """
    validate_method(method)
    amount = positive_money(amount)

    client = lock_for_update(db.session.query(Client).filter_by(id=client_id)).first()
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    if Decimal(client.current_debt) <= 0:
        raise InvalidStateError(
            f"Client {client.name} has no outstanding debt",
            details={"client_id": client.id},
        )

    shift = None
    if method == METHOD_CASH:
        shift = (shifts or default_shift_provider).require_open_shift(user_id, "cash payments")

    open_sales = lock_for_update(
        db.session.query(Sale).filter(
            Sale.client_id == client.id,
            Sale.flow_status == FLOW_COMPLETED,
            Sale.status != SALE_CANCELLED,
            Sale.balance > 0,
        ).order_by(Sale.completed_at.asc(), Sale.id.asc())
    ).all()

    remaining = amount
    allocations: list[Allocation] = []
    for sale in open_sales:
        if remaining <= 0:
            break
        applied = min(remaining, Decimal(sale.balance))

        db.session.add(SalePayment(
            sale_id=sale.id,
            method=method,
            amount=applied,
            change_amount=ZERO,
            reference=reference,
            cash_shift_id=shift.id if shift else None,
            user_id=user_id,
        ))
        db.session.flush()
        recalculate_sale_payments(sale)

        allocations.append(Allocation(
            sale_id=sale.id,
            invoice_number=sale.invoice_number,
            applied=applied,
            balance_after=Decimal(sale.balance),
            status=sale.status,
        ))
        remaining -= applied

    applied_total = round_money(amount - remaining)
    remaining_debt = reduce_client_debt(client, applied_total)

    if remaining > 0:
        current_app.logger.warning(
            "Client %s paid %s but only %s was owed on open invoices; %s not applied",
            client.id, amount, applied_total, remaining,
        )
    current_app.logger.info(
        "Client payment of %s allocated across %s invoice(s) for client %s",
        applied_total, len(allocations), client.id,
    )

    return ClientPaymentResult(
        client_id=client.id,
        amount=amount,
        applied=applied_total,
        overpaid_not_applied=round_money(remaining),
        remaining_debt=Decimal(remaining_debt),
        allocations=allocations,
    )
