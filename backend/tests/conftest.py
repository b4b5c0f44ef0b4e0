"""
Pytest fixtures for sale engine tests.

Provides the test app and database, a Repository bound to the test session,
catalog factories and an open shift for the default cashier.
"""

from datetime import datetime, timedelta

import pytest

from salecore import create_app
from salecore.extensions import db
from salecore.models import Customer, Product, ProductBatch, Promotion
from salecore.models.promotions import PROMO_PERCENTAGE
from salecore.services import shift_service
from salecore.services.repository import Repository
from salecore.time_utils import utcnow


CASHIER_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

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
def repo(db_session):
    return Repository(db_session)


@pytest.fixture(scope='function')
def auth_headers():
    return {"X-User-Id": str(CASHIER_ID)}


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for products with optional lots.

    lots: list of quantities, or (quantity, expiry_date) tuples, oldest first.
    stock defaults to the lot total.
    """
    created = {"count": 0}

    def _make(sku=None, price_cents=1000, tax_rate_bps=0, lots=None, stock=None, is_active=True):
        created["count"] += 1
        sku = sku or f"SKU-{created['count']}"
        lots = [lot if isinstance(lot, tuple) else (lot, None) for lot in (lots or [])]

        product = Product(
            sku=sku,
            name=f"Product {sku}",
            price_cents=price_cents,
            cost_price_cents=price_cents // 2,
            tax_rate_bps=tax_rate_bps,
            stock_quantity=stock if stock is not None else sum(qty for qty, _ in lots),
            is_active=is_active,
        )
        db_session.add(product)
        db_session.flush()

        base = datetime(2026, 1, 1, 9, 0, 0)
        for index, (qty, expiry) in enumerate(lots):
            db_session.add(ProductBatch(
                product_id=product.id,
                batch_number=f"{sku}-L{index + 1}",
                quantity_initial=qty,
                quantity_remaining=qty,
                expiry_date=expiry,
                created_at=base + timedelta(days=index),
            ))
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    def _make(name="Test Customer", loyalty_points=0, is_active=True):
        customer = Customer(name=name, phone="555-0199", loyalty_points=loyalty_points, is_active=is_active)
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def make_promotion(db_session):
    def _make(code="SAVE10", promo_type=PROMO_PERCENTAGE, value=1000, min_order_cents=0, **kwargs):
        promo = Promotion(code=code, promo_type=promo_type, value=value, min_order_cents=min_order_cents, **kwargs)
        db_session.add(promo)
        db_session.commit()
        return promo

    return _make


@pytest.fixture(scope='function')
def open_shift(repo):
    """Open shift for the default cashier, started a minute ago."""
    return shift_service.open_shift(repo, CASHIER_ID, 10000, now=utcnow() - timedelta(minutes=1))

