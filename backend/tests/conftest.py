"""
Pytest fixtures for PharmaPOS core tests.

Provides the in-memory database, a test client and small factories for
products, clients, suppliers, shifts and sales.
"""

from decimal import Decimal

import pytest

from pharmapos import create_app
from pharmapos.config import TestConfig
from pharmapos.extensions import db
from pharmapos.inputs import PaymentInput, SaleLineInput
from pharmapos.models import Client, Product, Supplier
from pharmapos.services import cash_shift_service, sales_service

CASHIER_ID = 1
MANAGER_ID = 2


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.info.pop("in_unit_of_work", None)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(stock=10, price="10.00", cost="5.00")."""
    counter = {"n": 0}

    def _make(stock=10, price="10.00", cost="5.00", min_stock=0, is_active=True, name=None):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            price=Decimal(price),
            cost=Decimal(cost),
            stock=stock,
            min_stock=min_stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_client(db_session):
    def _make(has_credit=True, credit_limit="1000.00", current_debt="0.00", name="Farmacia Central"):
        client = Client(
            name=name,
            has_credit=has_credit,
            credit_limit=Decimal(credit_limit),
            current_debt=Decimal(current_debt),
        )
        db_session.add(client)
        db_session.commit()
        return client

    return _make


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Drogueria Norte", balance=Decimal("0.00"))
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def open_shift(db_session):
    """OPEN shift for CASHIER_ID with 100.00 in the drawer."""
    return cash_shift_service.open_shift(CASHIER_ID, "100.00")


@pytest.fixture(scope='function')
def make_completed_sale(db_session):
    """
    Factory: a completed sale of `quantity` units of `product`.

    cash_paid pays that amount in cash on the draft before completing
    (requires an open shift); any remainder goes on the client's credit.
    """
    def _make(product, quantity=1, client=None, cash_paid=None, price=None):
        sale = sales_service.create_sale(
            [SaleLineInput(product_id=product.id, quantity=quantity, price=price)],
            client_id=client.id if client else None,
            user_id=CASHIER_ID,
        )
        if cash_paid is not None:
            sales_service.add_payment(sale.id, PaymentInput("CASH", cash_paid), user_id=CASHIER_ID)
        return sales_service.complete_sale(sale.id, user_id=CASHIER_ID)

    return _make


def user_headers(user_id: int = CASHIER_ID) -> dict:
    """Helper to create the acting-user header."""
    return {'X-User-Id': str(user_id)}
