"""
Pytest fixtures for storefront backend tests.

Provides an in-memory database, a stub payment gateway installed in
app.extensions, and seeded catalog/cash-session/user fixtures.
"""

from decimal import Decimal

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.formatting import utcnow
from storefront.models import Branch, CashSession, Product, ProductStock, User
from storefront.models.auth import ROLE_ADMIN, ROLE_CASHIER
from storefront.services.auth_service import hash_password
from storefront.services.payment_gateway import GatewayCheckout
from storefront.services.session_service import create_session


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ONLINE_BRANCH_ID': 1,
    'APP_URL': 'https://shop.test',
    'GATEWAY_API_URL': 'https://gateway.test',
    'GATEWAY_ENVIRONMENT': 'test',
    'GATEWAY_PUBLIC_KEY': 'pk_test',
    'GATEWAY_PRIVATE_KEY': 'sk_test',
    'GATEWAY_RETRY_BACKOFF_SECONDS': 0,
    'GATEWAY_WEBHOOK_SECRET': None,
    'GATEWAY_STATUS_REFRESH': False,
}


class StubGateway:
    """Records checkout requests; configurable failure and status answers."""

    def __init__(self):
        self.calls = []
        self.status_calls = []
        self.fail_with = None
        self.checkout_url = "https://gateway.test/checkout/abc123"
        self.checkout_id = "chk_abc123"
        self.payment_status = None

    def create_checkout(self, request):
        self.calls.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        return GatewayCheckout(
            checkout_id=self.checkout_id,
            checkout_url=self.checkout_url,
            transaction_id=request.transaction_id,
        )

    def get_payment_status(self, transaction_id):
        self.status_calls.append(transaction_id)
        return self.payment_status


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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


@pytest.fixture(scope='function')
def gateway(app):
    """Swap the real gateway client for a stub for the duration of a test."""
    original = app.extensions["payment_gateway"]
    stub = StubGateway()
    app.extensions["payment_gateway"] = stub
    yield stub
    app.extensions["payment_gateway"] = original


@pytest.fixture(scope='function')
def branch(db_session):
    branch = Branch(id=1, name="Online store", is_active=True)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def make_product(db_session, branch):
    """Factory: product with a stock record on the online branch."""
    def _make(product_id=None, price="100.00", stock="10", code=None, is_active=True):
        product = Product(
            id=product_id,
            code=code or f"SKU-{product_id or 'X'}-{price}-{stock}",
            name=f"Product {code or product_id}",
            retail_price=Decimal(price),
            is_active=is_active,
            is_deleted=False,
        )
        db_session.add(product)
        db_session.flush()
        db_session.add(ProductStock(product_id=product.id, branch_id=branch.id, quantity=Decimal(stock)))
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product 5, price 100.00, 10 units in stock."""
    return make_product(product_id=5, price="100.00", stock="10", code="MUG")


@pytest.fixture(scope='function')
def cash_session(db_session, branch):
    session = CashSession(branch_id=branch.id, opened_at=utcnow(), opening_amount=Decimal("0.00"), is_closed=False)
    db_session.add(session)
    db_session.commit()
    return session


@pytest.fixture(scope='function')
def shop(product, cash_session, gateway):
    """Everything a checkout needs: product 5, an open cash session, a stub gateway."""
    return product


def _make_user(db_session, username, role):
    user = User(username=username, password_hash=hash_password("Password123!", rounds=4), role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return _make_user(db_session, "cashier", ROLE_CASHIER)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def cashier_headers(cashier_user):
    _, token = create_session(cashier_user.id)
    return {"Authorization": f"Bearer {token}"}


def checkout_body(product_id=5, qty=2, unit_price=100, total=200, **extra):
    body = {
        "items": [{"productId": product_id, "qty": qty, "unitPrice": unit_price}],
        "payments": [{"method": 1, "amount": total}],
        "total": total,
    }
    body.update(extra)
    return body


@pytest.fixture(scope='function')
def pending_sale(client, shop):
    """A committed sale with a pending gateway transaction."""
    resp = client.post("/checkout/start", json=checkout_body())
    assert resp.status_code == 200, resp.get_json()
    data = resp.get_json()
    return data["saleId"], data["transactionId"]
