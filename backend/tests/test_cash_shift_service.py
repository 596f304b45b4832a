from decimal import Decimal

import pytest

from conftest import CASHIER_ID, MANAGER_ID
from pharmapos.errors import ConflictError, InvalidStateError, ValidationError
from pharmapos.extensions import db
from pharmapos.models import CashShift, CashTransaction
from pharmapos.services import cash_shift_service


def test_open_shift(db_session):
    shift = cash_shift_service.open_shift(CASHIER_ID, "150.00", notes="Morning")

    assert shift.status == "OPEN"
    assert shift.initial_amount == Decimal("150.00")
    assert cash_shift_service.get_current_shift(CASHIER_ID).id == shift.id


def test_second_open_shift_for_same_user_conflicts(open_shift):
    with pytest.raises(ConflictError):
        cash_shift_service.open_shift(CASHIER_ID, "50.00")

    assert db.session.query(CashShift).filter_by(user_id=CASHIER_ID).count() == 1


def test_other_user_may_open_own_shift(open_shift):
    other = cash_shift_service.open_shift(MANAGER_ID, "0")
    assert other.id != open_shift.id


def test_negative_initial_amount_is_rejected(db_session):
    with pytest.raises(ValidationError):
        cash_shift_service.open_shift(CASHIER_ID, "-1.00")


def test_manual_operations(open_shift):
    t = cash_shift_service.register_operation(CASHIER_ID, "MANUAL_ADD", "25.00", "Change float")

    assert t.shift_id == open_shift.id
    assert t.amount == Decimal("25.00")


@pytest.mark.parametrize("transaction_type", ["SALE_INCOME", "CREDIT_PAYMENT", "REFUND_OUT", "BOGUS"])
def test_system_generated_types_are_rejected(open_shift, transaction_type):
    with pytest.raises(ValidationError):
        cash_shift_service.register_operation(CASHIER_ID, transaction_type, "10.00", "Nope")


def test_operation_requires_reason_and_open_shift(db_session):
    with pytest.raises(ConflictError):
        cash_shift_service.register_operation(CASHIER_ID, "EXPENSE", "10.00", "Coffee")

    cash_shift_service.open_shift(CASHIER_ID, "0")
    with pytest.raises(ValidationError):
        cash_shift_service.register_operation(CASHIER_ID, "EXPENSE", "10.00", "")


def _shift_with_250_cash_sales_and_20_withdrawn(make_product, make_completed_sale):
    product = make_product(stock=10, price="125.00")
    make_completed_sale(product, quantity=1, cash_paid="125.00")
    make_completed_sale(product, quantity=1, cash_paid="125.00")
    cash_shift_service.register_operation(CASHIER_ID, "MANUAL_WITHDRAW", "20.00", "Bank deposit")


def test_close_balanced(open_shift, make_product, make_completed_sale):
    _shift_with_250_cash_sales_and_20_withdrawn(make_product, make_completed_sale)

    shift = cash_shift_service.close_shift(CASHIER_ID, "330.00")

    assert shift.expected_amount == Decimal("330.00")
    assert shift.difference == Decimal("0.00")
    assert shift.status == "CLOSED"
    assert cash_shift_service.get_current_shift(CASHIER_ID) is None


def test_close_with_large_variance_requires_audit(open_shift, make_product, make_completed_sale):
    _shift_with_250_cash_sales_and_20_withdrawn(make_product, make_completed_sale)

    shift = cash_shift_service.close_shift(CASHIER_ID, "300.00")

    assert shift.expected_amount == Decimal("330.00")
    assert shift.difference == Decimal("-30.00")
    assert shift.status == "AUDIT_REQUIRED"


def test_variance_at_threshold_is_still_closed(open_shift):
    shift = cash_shift_service.close_shift(CASHIER_ID, "110.00")
    assert shift.difference == Decimal("10.00")
    assert shift.status == "CLOSED"


def test_tolerance_can_be_overridden(open_shift):
    shift = cash_shift_service.close_shift(CASHIER_ID, "101.00", tolerance=Decimal("0.50"))
    assert shift.status == "AUDIT_REQUIRED"


def test_expected_counts_every_inflow_and_outflow(open_shift):
    cash_shift_service.register_operation(CASHIER_ID, "MANUAL_ADD", "40.00", "Float")
    cash_shift_service.register_operation(CASHIER_ID, "EXPENSE", "15.00", "Cleaning")
    db.session.add(CashTransaction(shift_id=open_shift.id, type="REFUND_IN", amount=Decimal("5.00")))
    db.session.add(CashTransaction(shift_id=open_shift.id, type="PURCHASE_PAYMENT", amount=Decimal("30.00")))
    db.session.commit()

    summary = cash_shift_service.get_shift_summary(open_shift.id)

    assert summary["inflows"] == "45.00"
    assert summary["outflows"] == "45.00"
    assert summary["expected"] == "100.00"


def test_close_without_open_shift(db_session):
    with pytest.raises(InvalidStateError):
        cash_shift_service.close_shift(CASHIER_ID, "0")


def test_closed_shift_is_frozen(open_shift):
    shift = cash_shift_service.close_shift(CASHIER_ID, "100.00")

    with pytest.raises(ConflictError):
        cash_shift_service.register_operation(CASHIER_ID, "MANUAL_ADD", "5.00", "Late")
    with pytest.raises(InvalidStateError):
        cash_shift_service.default_shift_provider.record(
            db.session.get(CashShift, shift.id), transaction_type="MANUAL_ADD", amount=Decimal("1.00")
        )

    summary = cash_shift_service.get_shift_summary(shift.id)
    assert summary["real"] == "100.00"
    assert summary["difference"] == "0.00"


def test_list_shifts_filters(open_shift):
    cash_shift_service.close_shift(CASHIER_ID, "100.00")
    cash_shift_service.open_shift(CASHIER_ID, "20.00")
    cash_shift_service.open_shift(MANAGER_ID, "0")

    assert len(cash_shift_service.list_shifts(user_id=CASHIER_ID)) == 2
    assert len(cash_shift_service.list_shifts(status="OPEN")) == 2
    assert [s.status for s in cash_shift_service.list_shifts(user_id=CASHIER_ID, status="CLOSED")] == ["CLOSED"]
