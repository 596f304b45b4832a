"""
Command objects passed into the engines.

Routes build these from JSON; tests build them directly. Each one validates
and normalizes itself on construction so the engines only ever see positive
integer quantities and Decimal amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .errors import ValidationError
from .money import positive_money, positive_quantity, round_cost, to_decimal


def _require(data: dict, key: str):
    if not isinstance(data, dict):
        raise ValidationError("Each line must be an object")
    if key not in data:
        raise ValidationError(f"{key} is required")
    return data[key]


def _require_id(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    # Negotiated unit price; None resolves client special price, then catalog
    price: Optional[Decimal] = None

    def __post_init__(self):
        _require_id(self.product_id, "product_id")
        positive_quantity(self.quantity)
        if self.price is not None:
            price = positive_money(self.price, "price")
            object.__setattr__(self, "price", price)

    @classmethod
    def from_dict(cls, data: dict) -> "SaleLineInput":
        return cls(
            product_id=_require(data, "product_id"),
            quantity=_require(data, "quantity"),
            price=data.get("price"),
        )


@dataclass(frozen=True)
class ReturnLineInput:
    sale_item_id: int
    quantity: int
    restock: bool = True
    reason: Optional[str] = None

    def __post_init__(self):
        _require_id(self.sale_item_id, "sale_item_id")
        positive_quantity(self.quantity)
        if not isinstance(self.restock, bool):
            raise ValidationError("restock must be true or false")

    @classmethod
    def from_dict(cls, data: dict) -> "ReturnLineInput":
        return cls(
            sale_item_id=_require(data, "sale_item_id"),
            quantity=_require(data, "quantity"),
            restock=data.get("restock", True),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class PurchaseLineInput:
    product_id: int
    quantity: int
    cost: Decimal

    def __post_init__(self):
        _require_id(self.product_id, "product_id")
        positive_quantity(self.quantity)
        cost = round_cost(to_decimal(self.cost, "cost"))
        if cost < 0:
            raise ValidationError("cost cannot be negative")
        object.__setattr__(self, "cost", cost)

    @classmethod
    def from_dict(cls, data: dict) -> "PurchaseLineInput":
        return cls(
            product_id=_require(data, "product_id"),
            quantity=_require(data, "quantity"),
            cost=_require(data, "cost"),
        )


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount: Decimal
    reference: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.method, str) or not self.method:
            raise ValidationError("method is required")
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "amount", positive_money(self.amount))

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentInput":
        return cls(
            method=_require(data, "method"),
            amount=_require(data, "amount"),
            reference=data.get("reference"),
        )
