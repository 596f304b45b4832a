from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class CashShift(db.Model):
    """
    One cash drawer session for one user.

    LIFECYCLE:
    - OPEN: drawer in use, cash operations allowed
    - CLOSED: counted, variance within tolerance
    - AUDIT_REQUIRED: counted, variance above tolerance

    At most one OPEN shift per user (partial unique index).
    """
    __tablename__ = "cash_shifts"
    __table_args__ = (
        db.Index(
            "uq_cash_shifts_user_open",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="OPEN", index=True)

    initial_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # Set when closing
    expected_amount = db.Column(db.Numeric(12, 2), nullable=True)
    real_amount = db.Column(db.Numeric(12, 2), nullable=True)
    difference = db.Column(db.Numeric(12, 2), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "initial_amount": money_str(self.initial_amount),
            "expected_amount": money_str(self.expected_amount),
            "real_amount": money_str(self.real_amount),
            "difference": money_str(self.difference),
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }


class CashTransaction(db.Model):
    """
    Cash moved in or out of a drawer other than a sale payment.

    Manual: MANUAL_ADD, MANUAL_WITHDRAW, EXPENSE.
    Written by the engines: PURCHASE_PAYMENT, REFUND_IN, REFUND_OUT, ...
    amount is always positive; the type gives the direction.
    """
    __tablename__ = "cash_transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("cash_shifts.id"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("CashShift", backref=db.backref("transactions", lazy=True, order_by="CashTransaction.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "type": self.type,
            "amount": money_str(self.amount),
            "reason": self.reason,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
