"""
Unit-of-work boundaries and the conditional stock decrement under real
contention (two threads, one file-backed SQLite database).
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from conftest import CASHIER_ID
from pharmapos import create_app
from pharmapos.config import TestConfig
from pharmapos.errors import InsufficientResourceError
from pharmapos.extensions import db
from pharmapos.inputs import SaleLineInput
from pharmapos.models import Client, Product
from pharmapos.services import sales_service
from pharmapos.services.concurrency import run_with_retry, unit_of_work


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


# ===== Unit of work =====

@pytest.mark.parametrize("error", [_locked(), StaleDataError("version mismatch")])
def test_unit_of_work_runs_once_and_propagates_lock_errors(db_session, error):
    calls = []

    @unit_of_work
    def operation():
        calls.append(1)
        raise error

    with pytest.raises(type(error)):
        operation()

    assert len(calls) == 1
    assert "in_unit_of_work" not in db.session.info


def test_unit_of_work_rolls_back_on_failure(db_session):
    @unit_of_work
    def operation():
        db.session.add(Product(sku="ROLLBACK", name="Rolled back", price=Decimal("1"), cost=Decimal("1"), stock=1))
        db.session.flush()
        raise InsufficientResourceError("no")

    with pytest.raises(InsufficientResourceError):
        operation()

    assert db.session.query(Product).filter_by(sku="ROLLBACK").count() == 0


def test_run_with_retry_retries_lock_errors(db_session, monkeypatch):
    monkeypatch.setattr("pharmapos.services.concurrency.time.sleep", lambda seconds: None)
    attempts = []

    def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise StaleDataError("version mismatch")
        return "done"

    assert run_with_retry(operation) == "done"
    assert len(attempts) == 3


def test_run_with_retry_gives_up_and_skips_business_errors(db_session, monkeypatch):
    monkeypatch.setattr("pharmapos.services.concurrency.time.sleep", lambda seconds: None)
    attempts = []

    def locked():
        attempts.append(1)
        raise _locked()

    with pytest.raises(OperationalError):
        run_with_retry(locked, attempts=2)
    assert len(attempts) == 2

    def short_of_stock():
        attempts.append(1)
        raise InsufficientResourceError("no stock")

    attempts.clear()
    with pytest.raises(InsufficientResourceError):
        run_with_retry(short_of_stock)
    assert len(attempts) == 1


# ===== Two cashiers, one unit =====

@pytest.fixture
def file_app(tmp_path):
    class FileDatabaseConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'contention.sqlite3'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    file_app = create_app(FileDatabaseConfig)
    with file_app.app_context():
        db.create_all()

    yield file_app

    with file_app.app_context():
        db.drop_all()
        db.engine.dispose()


def test_concurrent_completions_cannot_oversell(file_app):
    with file_app.app_context():
        product = Product(sku="LAST-1", name="Insulin pen", price=Decimal("5.00"), cost=Decimal("3.00"), stock=1)
        client = Client(name="Clinic", has_credit=True, credit_limit=Decimal("100.00"), current_debt=Decimal("0"))
        db.session.add_all([product, client])
        db.session.commit()
        product_id = product.id
        sale_ids = [
            sales_service.create_sale([SaleLineInput(product_id, 1)], client_id=client.id).id
            for _ in range(2)
        ]

    barrier = threading.Barrier(2)
    outcomes = []

    def complete(sale_id):
        with file_app.app_context():
            barrier.wait()
            try:
                sales_service.complete_sale(sale_id, user_id=CASHIER_ID)
                outcomes.append("completed")
            except InsufficientResourceError:
                outcomes.append("insufficient")

    threads = [threading.Thread(target=complete, args=(sale_id,)) for sale_id in sale_ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert sorted(outcomes) == ["completed", "insufficient"]
    with file_app.app_context():
        assert db.session.get(Product, product_id).stock == 0
        flows = sorted(sales_service.get_sale(sale_id).flow_status for sale_id in sale_ids)
        assert flows == ["COMPLETED", "DRAFT"]
