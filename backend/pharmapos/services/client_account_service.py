# Overview: Client credit configuration and account statements.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..constants import FLOW_COMPLETED
from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Client, Sale
from ..money import ZERO, money_str, non_negative_money, round_money
from ..time_utils import to_utc_z
from .concurrency import lock_for_update, unit_of_work


def _get_client(client_id: int, *, lock: bool = False) -> Client:
    query = db.session.query(Client).filter_by(id=client_id)
    if lock:
        query = lock_for_update(query)
    client = query.first()
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


@unit_of_work
def update_credit_config(client_id: int, has_credit: bool, credit_limit) -> Client:
    """
    Turn credit on/off and set the limit.

    The limit may not be set below what the client already owes.
    """
    if not isinstance(has_credit, bool):
        raise ValidationError("has_credit must be true or false")
    limit = non_negative_money(credit_limit, "credit_limit")

    client = _get_client(client_id, lock=True)
    if limit < Decimal(client.current_debt):
        raise ValidationError(
            f"Credit limit {limit} is below the client's current debt of {client.current_debt}",
            details={"current_debt": str(client.current_debt)},
        )

    client.has_credit = has_credit
    client.credit_limit = limit
    db.session.flush()

    current_app.logger.info(
        "Credit config for client %s set to has_credit=%s limit=%s", client.id, has_credit, limit
    )
    return client


def get_account_statement(
    client_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """
    Completed sales for a client in a date range with what was paid on each,
    plus the current debt and available credit.

    Cancelled sales are listed with their status but excluded from the totals.
    """
    client = _get_client(client_id)

    query = db.session.query(Sale).filter(
        Sale.client_id == client.id,
        Sale.completed_at.isnot(None),
    )
    if start is not None:
        query = query.filter(Sale.completed_at >= start)
    if end is not None:
        query = query.filter(Sale.completed_at <= end)
    sales = query.order_by(Sale.completed_at.asc(), Sale.id.asc()).all()

    total_sold = ZERO
    total_paid = ZERO
    total_balance = ZERO
    rows = []
    for sale in sales:
        rows.append({
            "id": sale.id,
            "invoice_number": sale.invoice_number,
            "completed_at": to_utc_z(sale.completed_at),
            "status": sale.status,
            "flow_status": sale.flow_status,
            "total": money_str(sale.total),
            "paid_amount": money_str(sale.paid_amount),
            "balance": money_str(sale.balance),
            "payments": [p.to_dict() for p in sale.payments],
        })
        if sale.flow_status == FLOW_COMPLETED:
            total_sold += Decimal(sale.total)
            total_paid += Decimal(sale.paid_amount)
            total_balance += Decimal(sale.balance)

    debt = Decimal(client.current_debt)
    available = Decimal(client.credit_limit) - debt if client.has_credit else ZERO
    return {
        "client": client.to_dict(),
        "sales": rows,
        "summary": {
            "total_sold": money_str(round_money(total_sold)),
            "total_paid": money_str(round_money(total_paid)),
            "total_balance": money_str(round_money(total_balance)),
            "current_debt": money_str(debt),
            "credit_limit": money_str(client.credit_limit),
            "available_credit": money_str(round_money(max(available, ZERO))),
        },
    }
