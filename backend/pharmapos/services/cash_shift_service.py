"""
Cash Shift Service

Tracks each user's cash drawer session and reconciles it on close.

DESIGN PRINCIPLES:
- One OPEN shift per user at a time (also enforced by a partial unique index)
- Closed shifts are immutable
- Close is a blind count: the cashier declares what is in the drawer and the
  system computes the variance afterwards
- A variance above the tolerance closes the shift as AUDIT_REQUIRED. That is
  a successful close with a different flag, never an error
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..constants import (
    CASH_INFLOW_TYPES,
    CASH_MANUAL_TYPES,
    CASH_OUTFLOW_TYPES,
    METHOD_CASH,
    SHIFT_AUDIT_REQUIRED,
    SHIFT_CLOSED,
    SHIFT_OPEN,
)
from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashShift, CashTransaction, SalePayment
from ..money import ZERO, non_negative_money, positive_money, round_money
from ..time_utils import utcnow
from .concurrency import lock_for_update, unit_of_work


class CashShiftProvider:
    """
    Answers "which drawer is this user working on right now".

    The sale, purchase and payment engines take one of these instead of
    querying shifts themselves, so tests can hand them a fake.
    """

    def current_shift(self, user_id: int | None) -> CashShift | None:
        if user_id is None:
            return None
        return lock_for_update(
            db.session.query(CashShift).filter_by(user_id=user_id, status=SHIFT_OPEN)
        ).first()

    def require_open_shift(self, user_id: int | None, action: str = "cash operations") -> CashShift:
        shift = self.current_shift(user_id)
        if shift is None:
            raise ConflictError(
                f"An open cash shift is required for {action}",
                details={"user_id": user_id},
            )
        return shift

    def record(
        self,
        shift: CashShift,
        *,
        transaction_type: str,
        amount: Decimal,
        reason: str | None = None,
        user_id: int | None = None,
        reference_type: str | None = None,
        reference_id: int | None = None,
    ) -> CashTransaction:
        """Write a cash movement into the given open shift (caller's transaction)."""
        if shift.status != SHIFT_OPEN:
            raise InvalidStateError(f"Cash shift {shift.id} is not open")
        transaction = CashTransaction(
            shift_id=shift.id,
            type=transaction_type,
            amount=round_money(amount),
            reason=reason,
            reference_type=reference_type,
            reference_id=reference_id,
            user_id=user_id,
        )
        db.session.add(transaction)
        db.session.flush()
        return transaction


default_shift_provider = CashShiftProvider()


def _get_shift(shift_id: int, *, lock: bool = False) -> CashShift:
    query = db.session.query(CashShift).filter_by(id=shift_id)
    if lock:
        query = lock_for_update(query)
    shift = query.first()
    if shift is None:
        raise NotFoundError(f"Cash shift {shift_id} not found")
    return shift


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

@unit_of_work
def open_shift(user_id: int, initial_amount, notes: str | None = None) -> CashShift:
    """
    Open a drawer for a user.

    Raises:
        ConflictError: the user already has an OPEN shift
    """
    amount = non_negative_money(initial_amount, "initial_amount")

    existing = db.session.query(CashShift).filter_by(user_id=user_id, status=SHIFT_OPEN).first()
    if existing:
        raise ConflictError(
            "You already have an open cash shift. Close it before opening a new one.",
            details={"shift_id": existing.id},
        )

    shift = CashShift(
        user_id=user_id,
        status=SHIFT_OPEN,
        initial_amount=amount,
        notes=notes,
        opened_at=utcnow(),
    )
    db.session.add(shift)
    db.session.flush()

    current_app.logger.info("Cash shift %s opened by user %s with %s", shift.id, user_id, amount)
    return shift


def get_current_shift(user_id: int) -> CashShift | None:
    return db.session.query(CashShift).filter_by(user_id=user_id, status=SHIFT_OPEN).first()


@unit_of_work
def register_operation(
    user_id: int,
    transaction_type: str,
    amount,
    reason: str,
    shifts: CashShiftProvider | None = None,
) -> CashTransaction:
    """
    Manual drawer movement: cash added, cash withdrawn, or an expense paid out.

    Sale income and credit payments are written by the engines and are
    rejected here.
    """
    if transaction_type not in CASH_MANUAL_TYPES:
        raise ValidationError(
            f"{transaction_type} is not a manual cash operation. "
            f"Allowed: {', '.join(sorted(CASH_MANUAL_TYPES))}"
        )
    if not reason:
        raise ValidationError("A reason is required for manual cash operations")
    value = positive_money(amount)

    shifts = shifts or default_shift_provider
    shift = shifts.require_open_shift(user_id, "manual cash operations")
    return shifts.record(
        shift,
        transaction_type=transaction_type,
        amount=value,
        reason=reason,
        user_id=user_id,
    )


def _cash_totals(shift: CashShift) -> dict:
    cash_sales = db.session.query(
        func.coalesce(func.sum(SalePayment.amount), 0)
    ).filter(
        SalePayment.cash_shift_id == shift.id,
        SalePayment.method == METHOD_CASH,
    ).scalar()

    inflows = ZERO
    outflows = ZERO
    transactions = db.session.query(CashTransaction).filter_by(shift_id=shift.id).all()
    for t in transactions:
        if t.type in CASH_INFLOW_TYPES:
            inflows += t.amount
        elif t.type in CASH_OUTFLOW_TYPES:
            outflows += t.amount

    initial = Decimal(shift.initial_amount)
    cash_sales = round_money(Decimal(cash_sales or 0))
    expected = round_money(initial + cash_sales + inflows - outflows)
    return {
        "initial": initial,
        "sales_cash": cash_sales,
        "inflows": round_money(inflows),
        "outflows": round_money(outflows),
        "expected": expected,
    }


@unit_of_work
def close_shift(
    user_id: int,
    real_amount,
    notes: str | None = None,
    *,
    tolerance=None,
) -> CashShift:
    """
    Close the user's open shift against a blind count.

    expected = initial + cash sale payments + inflows - outflows
    difference = real - expected

    |difference| above the tolerance closes as AUDIT_REQUIRED, otherwise
    CLOSED. Both are successful closes.
    """
    real = non_negative_money(real_amount, "real_amount")

    shift = lock_for_update(
        db.session.query(CashShift).filter_by(user_id=user_id, status=SHIFT_OPEN)
    ).first()
    if shift is None:
        raise InvalidStateError("You have no open cash shift to close")

    if tolerance is None:
        tolerance = current_app.config.get("CASH_TOLERANCE_THRESHOLD", Decimal("10.00"))
    tolerance = Decimal(tolerance)

    totals = _cash_totals(shift)
    difference = round_money(real - totals["expected"])

    shift.status = SHIFT_AUDIT_REQUIRED if abs(difference) > tolerance else SHIFT_CLOSED
    shift.expected_amount = totals["expected"]
    shift.real_amount = real
    shift.difference = difference
    shift.closed_at = utcnow()
    if notes:
        shift.notes = f"{shift.notes} | Close: {notes}" if shift.notes else f"Close: {notes}"

    if shift.status == SHIFT_AUDIT_REQUIRED:
        current_app.logger.warning(
            "Cash shift %s closed for audit: expected %s, counted %s, difference %s",
            shift.id, totals["expected"], real, difference,
        )
    else:
        current_app.logger.info("Cash shift %s closed, difference %s", shift.id, difference)

    return shift


# =============================================================================
# REPORTING
# =============================================================================

def get_shift_summary(shift_id: int) -> dict:
    """Running figures for an open shift, or the frozen close for a closed one."""
    shift = _get_shift(shift_id)
    totals = _cash_totals(shift)

    summary = {
        "shift": shift.to_dict(),
        "initial": str(totals["initial"]),
        "sales_cash": str(totals["sales_cash"]),
        "inflows": str(totals["inflows"]),
        "outflows": str(totals["outflows"]),
        "expected": str(totals["expected"]),
        "transactions": [t.to_dict() for t in shift.transactions],
    }
    if shift.status != SHIFT_OPEN:
        summary["expected"] = str(shift.expected_amount)
        summary["real"] = str(shift.real_amount)
        summary["difference"] = str(shift.difference)
    return summary


def list_shifts(user_id: int | None = None, status: str | None = None) -> list[CashShift]:
    query = db.session.query(CashShift)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(CashShift.opened_at.desc(), CashShift.id.desc()).all()
