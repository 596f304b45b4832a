from decimal import Decimal

import pytest

from pharmapos.errors import ValidationError
from pharmapos.inputs import PaymentInput, PurchaseLineInput, ReturnLineInput, SaleLineInput
from pharmapos.money import round_money, to_decimal


def test_money_accepts_strings_ints_and_decimals():
    assert to_decimal("12.50") == Decimal("12.50")
    assert to_decimal(3) == Decimal(3)
    assert to_decimal(Decimal("0.1")) == Decimal("0.1")


@pytest.mark.parametrize("value", [0.1, True, None, "abc", "NaN", "Infinity", [1]])
def test_money_rejects_everything_else(value):
    with pytest.raises(ValidationError):
        to_decimal(value)


def test_round_half_up():
    assert round_money(Decimal("2.675")) == Decimal("2.68")
    assert round_money(Decimal("2.665")) == Decimal("2.67")


def test_sale_line_normalizes_price():
    line = SaleLineInput.from_dict({"product_id": 1, "quantity": 2, "price": "3.455"})
    assert line.price == Decimal("3.46")
    assert SaleLineInput(1, 1).price is None


@pytest.mark.parametrize("data", [
    {"quantity": 1},
    {"product_id": 1, "quantity": 0},
    {"product_id": 1, "quantity": 1.0},
    {"product_id": "1", "quantity": 1},
    {"product_id": 1, "quantity": 1, "price": "0"},
    {"product_id": 1, "quantity": 1, "price": 9.99},
])
def test_sale_line_rejects_bad_input(data):
    with pytest.raises(ValidationError):
        SaleLineInput.from_dict(data)


def test_return_line_defaults_to_restock():
    line = ReturnLineInput.from_dict({"sale_item_id": 4, "quantity": 1})
    assert line.restock is True
    with pytest.raises(ValidationError):
        ReturnLineInput.from_dict({"sale_item_id": 4, "quantity": 1, "restock": "no"})


def test_purchase_line_keeps_four_decimal_cost():
    line = PurchaseLineInput.from_dict({"product_id": 1, "quantity": 12, "cost": "0.12345"})
    assert line.cost == Decimal("0.1235")
    with pytest.raises(ValidationError):
        PurchaseLineInput.from_dict({"product_id": 1, "quantity": 12, "cost": "-1"})


def test_payment_input():
    payment = PaymentInput.from_dict({"method": "cash", "amount": "10"})
    assert payment.method == "CASH"
    assert payment.amount == Decimal("10.00")
    with pytest.raises(ValidationError):
        PaymentInput.from_dict({"method": "CASH", "amount": "-5"})
    with pytest.raises(ValidationError):
        PaymentInput.from_dict({"amount": "5"})
