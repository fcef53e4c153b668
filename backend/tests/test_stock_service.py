# Overview: Pytest coverage for stock reads and the guarded, idempotent decrement.

import threading

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Product, ProductVariant, StockMovement
from shopledger.services import stock_service
from shopledger.services.invoice_service import commit_draft
from shopledger.services.stock_service import (
    InsufficientStockError,
    StockNotFoundError,
    StockTarget,
)
from shopledger.validation import ValidationError


class TestAvailability:
    def test_product_total_sums_variants(self, make_product, make_variant):
        product = make_product(stock=99)
        make_variant(product, stock=3, size="S")
        make_variant(product, stock=4, size="L")
        assert stock_service.available_for_product(product.id) == 7

    def test_product_without_variants_uses_own_counter(self, make_product):
        product = make_product(stock=12)
        assert stock_service.available_for_product(product.id) == 12
        assert stock_service.available(StockTarget.for_product(product.id)) == 12

    def test_product_target_refused_when_variants_exist(self, make_product, make_variant):
        product = make_product()
        make_variant(product, stock=3)
        with pytest.raises(ValidationError):
            stock_service.available(StockTarget.for_product(product.id))

    def test_unknown_variant(self, db_session):
        with pytest.raises(StockNotFoundError):
            stock_service.available_for_variant(4242)

    def test_line_target_prefers_variant(self):
        assert StockTarget.for_line(1, 9) == StockTarget("variant", 9)
        assert StockTarget.for_line(1, None) == StockTarget("product", 1)


class TestReserveAndDeduct:
    def test_decrements_variant(self, make_product, make_variant, stock_of):
        variant = make_variant(make_product(), stock=5)
        movement = stock_service.reserve_and_deduct(StockTarget.for_variant(variant.id), 2)
        assert movement.quantity_delta == -2
        assert stock_of(ProductVariant, variant.id) == 3

    def test_decrements_product_without_variants(self, make_product, stock_of):
        product = make_product(stock=4)
        stock_service.reserve_and_deduct(StockTarget.for_product(product.id), 4)
        assert stock_of(Product, product.id) == 0

    def test_insufficient_leaves_stock_untouched(self, make_product, make_variant, stock_of):
        variant = make_variant(make_product(), stock=5)
        with pytest.raises(InsufficientStockError) as excinfo:
            stock_service.reserve_and_deduct(StockTarget.for_variant(variant.id), 6, line_index=0)
        assert excinfo.value.available == 5
        assert excinfo.value.requested == 6
        assert excinfo.value.details["line_index"] == 0
        assert stock_of(ProductVariant, variant.id) == 5

    def test_second_deduction_loses_when_stock_runs_out(self, make_product, make_variant, stock_of):
        variant = make_variant(make_product(), stock=5)
        target = StockTarget.for_variant(variant.id)
        stock_service.reserve_and_deduct(target, 3)
        with pytest.raises(InsufficientStockError):
            stock_service.reserve_and_deduct(target, 3)
        assert stock_of(ProductVariant, variant.id) == 2

    def test_product_counter_not_used_when_variants_exist(self, make_product, make_variant, stock_of):
        product = make_product(stock=10)
        make_variant(product, stock=1)
        with pytest.raises(ValidationError):
            stock_service.reserve_and_deduct(StockTarget.for_product(product.id), 1)
        assert stock_of(Product, product.id) == 10

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_quantity_must_be_positive_integer(self, make_product, quantity):
        product = make_product(stock=10)
        with pytest.raises(ValidationError):
            stock_service.reserve_and_deduct(StockTarget.for_product(product.id), quantity)

    def test_unknown_variant_raises_not_found(self, db_session):
        with pytest.raises(StockNotFoundError):
            stock_service.reserve_and_deduct(StockTarget.for_variant(4242), 1)

    def test_same_invoice_line_deducted_once(self, make_product, make_variant, draft, stock_of, db_session):
        product = make_product()
        variant = make_variant(product, stock=5)
        draft.add_catalog_line(product, variant)
        draft.update_line(0, "quantity", "2")
        invoice = commit_draft(draft)
        assert stock_of(ProductVariant, variant.id) == 3

        line = invoice.lines[0]
        again = stock_service.reserve_and_deduct(
            StockTarget.for_variant(variant.id), 2,
            invoice_id=invoice.id, invoice_line_id=line.id,
        )
        assert again.invoice_line_id == line.id
        assert stock_of(ProductVariant, variant.id) == 3
        assert db_session.query(StockMovement).filter_by(invoice_id=invoice.id).count() == 1


class TestConcurrentDeduction:
    """Two workers race for the same units on a shared file database."""

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.sqlite3'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False}},
            "DEFAULT_TAX_TYPE": "NONE",
            "DEFAULT_TAX_PERCENT": "0",
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.engine.dispose()

    def test_only_one_worker_gets_the_last_units(self, file_app):
        with file_app.app_context():
            product = Product(name="Silk Saree", price=3000, stock_quantity=0)
            db.session.add(product)
            db.session.flush()
            variant = ProductVariant(product_id=product.id, size="Free", color="Red", stock_quantity=3)
            db.session.add(variant)
            db.session.commit()
            variant_id = variant.id

        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            with file_app.app_context():
                try:
                    stock_service.reserve_and_deduct(StockTarget.for_variant(variant_id), 3)
                    outcome = "ok"
                except InsufficientStockError:
                    outcome = "insufficient"
                except Exception as exc:
                    outcome = repr(exc)
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(results) == ["insufficient", "ok"]
        with file_app.app_context():
            assert db.session.get(ProductVariant, variant_id).stock_quantity == 0
            assert db.session.query(StockMovement).count() == 1
