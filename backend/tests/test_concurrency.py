"""
Concurrent checkout and webhook tests.

Runs against a file-backed SQLite database so several threads can hold
their own connections.

Verifies:
- Of several simultaneous checkouts competing for the same stock, exactly
  one commits; the rest get 409 and leave no rows
- Simultaneous duplicate "approved" notifications apply one transition
"""

import threading
from decimal import Decimal

import pytest

from conftest import TEST_CONFIG, StubGateway, checkout_body

from storefront import create_app
from storefront.extensions import db
from storefront.formatting import utcnow
from storefront.models import (
    Branch,
    CashSession,
    PaymentTransaction,
    Product,
    ProductStock,
    Sale,
)


WORKERS = 4


@pytest.fixture
def file_app(tmp_path):
    config = dict(TEST_CONFIG, SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'storefront.db'}")
    app = create_app(config)
    app.extensions["payment_gateway"] = StubGateway()

    with app.app_context():
        db.create_all()
        db.session.add(Branch(id=1, name="Online store", is_active=True))
        db.session.add(Product(id=7, code="LAST", name="Last units", retail_price=Decimal("10.00"),
                               is_active=True, is_deleted=False))
        db.session.flush()
        db.session.add(ProductStock(product_id=7, branch_id=1, quantity=Decimal("3")))
        db.session.add(CashSession(branch_id=1, opened_at=utcnow(), opening_amount=Decimal("0.00"), is_closed=False))
        db.session.commit()
        db.session.remove()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _in_parallel(app, send):
    """Run send(client) from WORKERS threads released together; return status codes."""
    barrier = threading.Barrier(WORKERS)
    results = []
    lock = threading.Lock()

    def worker():
        client = app.test_client()
        barrier.wait()
        resp = send(client)
        with lock:
            results.append(resp.status_code)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return sorted(results)


class TestConcurrentCheckout:

    def test_only_one_checkout_wins_the_last_units(self, file_app):
        body = checkout_body(product_id=7, qty=2, unit_price=10, total=20)

        statuses = _in_parallel(file_app, lambda c: c.post("/checkout/start", json=body))

        assert statuses == [200] + [409] * (WORKERS - 1)
        with file_app.app_context():
            stock = db.session.query(ProductStock).filter_by(product_id=7, branch_id=1).one()
            assert stock.quantity == Decimal("1.000")
            assert db.session.query(Sale).count() == 1
            assert db.session.query(PaymentTransaction).count() == 1
        assert len(file_app.extensions["payment_gateway"].calls) == 1


class TestConcurrentWebhooks:

    def test_duplicate_approvals_apply_once(self, file_app):
        resp = file_app.test_client().post(
            "/checkout/start", json=checkout_body(product_id=7, qty=1, unit_price=10, total=10)
        )
        assert resp.status_code == 200, resp.get_json()
        sale_id, transaction_id = resp.get_json()["saleId"], resp.get_json()["transactionId"]

        with file_app.app_context():
            txn_version = db.session.query(PaymentTransaction).filter_by(transaction_id=transaction_id).one().version_id
            sale_version = db.session.get(Sale, sale_id).version_id

        payload = {"siteTransactionId": transaction_id, "status": "approved"}
        statuses = _in_parallel(file_app, lambda c: c.post("/payments/webhook", json=payload))

        assert statuses == [200] * WORKERS
        with file_app.app_context():
            txn = db.session.query(PaymentTransaction).filter_by(transaction_id=transaction_id).one()
            sale = db.session.get(Sale, sale_id)
            assert txn.status == "approved"
            assert txn.completed_at is not None
            assert txn.version_id == txn_version + 1
            assert sale.payment_status == "PAID"
            assert sale.version_id == sale_version + 1
