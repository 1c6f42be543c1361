"""
Concurrency safeguards against a file-backed SQLite database.

Each worker thread pushes its own app context (and therefore its own
session), waits on a barrier, then races the others.
"""

import os
import tempfile
import threading

import pytest

from backoffice import create_app
from backoffice.errors import CouponAlreadyUsed, InsufficientStock
from backoffice.extensions import db
from backoffice.models import Coupon, Customer, Product
from backoffice.services import catalog_service, coupon_service, sales_service, stock_ledger_service


@pytest.fixture
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "LOG_LEVEL": "WARNING",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tmpdir.cleanup()


def _seed_product(app, *, stock, price_cents=1000):
    with app.app_context():
        product = catalog_service.create_product(patch={
            "sku": "CONCUR-1",
            "name": "Concurrent Product",
            "selling_price_cents": price_cents,
            "cost_price_cents": 400,
        })
        stock_ledger_service.stock_in(product_id=product.id, quantity=stock, note="Seed inventory")
        return product.id


def _race(app, count, work):
    """Run `work(index)` in `count` threads released together; returns results in arrival order."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker(index):
        with app.app_context():
            try:
                barrier.wait()
                outcome = work(index)
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_sales_never_oversell(file_app):
    product_id = _seed_product(file_app, stock=5)

    def buy(index):
        result = sales_service.create_sale(
            items=[{"product_id": product_id, "quantity": 1}],
            payment_method="CASH",
            customer_name=f"Buyer {index}",
        )
        return result.sale.invoice_number

    results = _race(file_app, 10, buy)

    sold = [r for r in results if isinstance(r, str)]
    rejected = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(sold) == 5
    assert len(rejected) == 5
    assert len(set(sold)) == 5

    with file_app.app_context():
        assert db.session.get(Product, product_id).current_stock == 0
        assert stock_ledger_service.reconcile(product_id)["consistent"] is True


def test_concurrent_invoice_numbers_are_unique(file_app):
    product_id = _seed_product(file_app, stock=100)

    def buy(index):
        result = sales_service.create_sale(
            items=[{"product_id": product_id, "quantity": 2}],
            payment_method="CARD",
            customer_name=f"Buyer {index}",
        )
        return result.sale.invoice_number

    results = _race(file_app, 10, buy)

    assert all(isinstance(r, str) for r in results), results
    assert len(set(results)) == 10

    with file_app.app_context():
        assert db.session.get(Product, product_id).current_stock == 80
        assert stock_ledger_service.reconcile(product_id)["consistent"] is True


def test_coupon_redeemed_exactly_once_under_race(file_app):
    product_id = _seed_product(file_app, stock=10)
    with file_app.app_context():
        customer = Customer(first_name="Race", last_name="Winner")
        db.session.add(customer)
        db.session.commit()
        customer_id = customer.id
        code = coupon_service.generate(customer_id=customer_id).code

    def buy(index):
        result = sales_service.create_sale(
            items=[{"product_id": product_id, "quantity": 1}],
            payment_method="CASH",
            customer_id=customer_id,
            coupon_code=code,
        )
        return result.sale.id

    results = _race(file_app, 4, buy)

    winners = [r for r in results if isinstance(r, int)]
    losers = [r for r in results if isinstance(r, CouponAlreadyUsed)]
    assert len(winners) == 1
    assert len(losers) == 3

    with file_app.app_context():
        coupon = db.session.query(Coupon).filter_by(code=code).one()
        assert coupon.is_used is True
        assert coupon.used_in_sale_id == winners[0]
        assert db.session.get(Product, product_id).current_stock == 9
