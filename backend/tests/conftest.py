"""
Pytest fixtures for shopledger backend tests.

Provides an in-memory database, a per-test clean slate, catalog factories
and a Flask test client.
"""

from decimal import Decimal

import pytest
from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Product, ProductVariant
from shopledger.services.draft_builder import InvoiceDraftBuilder
from shopledger.services.pricing import TaxConfig


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_TYPE': 'NONE',
        'DEFAULT_TAX_PERCENT': '0',
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
def make_product(db_session):
    """Factory: make_product(name, price, offer_price=None, stock=0, item_code=None)."""
    def _make(name="Cotton Kurta", price="100.00", offer_price=None, stock=0, item_code=None):
        product = Product(
            name=name,
            price=Decimal(price) if price is not None else None,
            offer_price=Decimal(offer_price) if offer_price is not None else None,
            stock_quantity=stock,
            item_code=item_code,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_variant(db_session):
    """Factory: make_variant(product, stock, size="M", color="Blue", price=None)."""
    def _make(product, stock=0, size="M", color="Blue", price=None):
        variant = ProductVariant(
            product_id=product.id,
            size=size,
            color=color,
            price=Decimal(price) if price is not None else None,
            stock_quantity=stock,
        )
        db_session.add(variant)
        db_session.commit()
        return variant
    return _make


@pytest.fixture(scope='function')
def draft():
    """Blank draft, no tax, named customer."""
    builder = InvoiceDraftBuilder(tax=TaxConfig.build("NONE", "0"))
    builder.set_customer(name="Asha Rao", phone="9800000000")
    return builder


@pytest.fixture(scope='function')
def stock_of(db_session):
    """stock_of(model, id): fresh stock_quantity straight from the database."""
    def _read(model, row_id):
        db_session.expire_all()
        return db_session.get(model, row_id).stock_quantity
    return _read
