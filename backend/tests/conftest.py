"""
Pytest fixtures for posengine backend tests.

Provides an in-memory database, per-test table wipe, row factories and a
test client with bearer-token headers.
"""

import itertools

import pytest
from posengine import create_app
from posengine.extensions import db
from posengine.models import Coupon, Customer, Product, ProductVariant, User
from posengine.models.auth import ROLE_ADMIN, ROLE_CASHIER
from posengine.services import settings_service
from posengine.validation import SaleLineInput, SaleRequest


_seq = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_TX_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_user(db_session):
    def _make(role=ROLE_CASHIER, name=None, is_active=True):
        n = next(_seq)
        user = User(
            username=f"user{n}",
            name=name or f"User {n}",
            role=role,
            api_token=f"token-{n}",
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_product(db_session):
    def _make(stock=10, price_cents=1000, cost_price_cents=400, category_id=None, name=None):
        n = next(_seq)
        product = Product(
            sku=f"SKU-{n}",
            name=name or f"Product {n}",
            category_id=category_id,
            price_cents=price_cents,
            cost_price_cents=cost_price_cents,
            stock=stock,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture
def make_variant(db_session):
    def _make(product, stock=5, cost_price_cents=450, price_cents=None):
        variant = ProductVariant(
            product_id=product.id,
            name=f"Variant {next(_seq)}",
            stock=stock,
            cost_price_cents=cost_price_cents,
            price_cents=price_cents,
        )
        db_session.add(variant)
        db_session.commit()
        return variant
    return _make


@pytest.fixture
def make_customer(db_session):
    def _make(loyalty_points=0, name=None):
        customer = Customer(name=name or f"Customer {next(_seq)}", loyalty_points=loyalty_points)
        db_session.add(customer)
        db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_coupon(db_session):
    def _make(code=None, **kwargs):
        values = {
            "code": code or f"CODE{next(_seq)}",
            "type": "fixed",
            "value": 500,
            "scope": "all",
            "status": "active",
        }
        values.update(kwargs)
        coupon = Coupon(**values)
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return _make


@pytest.fixture
def configure(db_session):
    """Store settings, e.g. configure(tax_enabled="true", tax_rate="14")."""
    def _configure(**values):
        for key, value in values.items():
            settings_service.set_setting(key, str(value))
    return _configure


# =============================================================================
# USERS / HEADERS
# =============================================================================

@pytest.fixture
def cashier(make_user):
    return make_user(role=ROLE_CASHIER, name="Casey Cashier")


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN, name="Ada Admin")


@pytest.fixture
def cashier_headers(cashier):
    return auth_headers(cashier.api_token)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin.api_token)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def sale_request(*lines, **kwargs) -> SaleRequest:
    """Build a SaleRequest from (product, quantity, unit_price_cents[, variant]) tuples."""
    items = []
    for line in lines:
        product, quantity, unit_price_cents = line[:3]
        variant = line[3] if len(line) > 3 else None
        items.append(SaleLineInput(
            product_id=product.id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            variant_id=variant.id if variant is not None else None,
        ))
    return SaleRequest(items=tuple(items), **kwargs)
