# Overview: Stock ledger reads and the guarded, idempotent stock decrement.

"""
Stock Ledger

STOCK COUNTERS:
- product_variants.stock_quantity for products that have variants
- products.stock_quantity for products without variants
A deduction addresses exactly one of them. They are never summed and then
split.

DEDUCTION:
- Single guarded UPDATE ... SET stock = stock - q WHERE id = ? AND stock >= q.
  Two concurrent commits against the same counter cannot both pass: the
  loser updates zero rows and gets InsufficientStockError with the counter
  untouched.
- The StockMovement row is written in the same transaction; its unique
  invoice_line_id makes a repeated deduction for the same line a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import exists, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ProductVariant, StockMovement
from ..validation import ValidationError
from .concurrency import run_with_retry
from .ledger_service import append_ledger_event


TARGET_VARIANT = "variant"
TARGET_PRODUCT = "product"


class StockError(Exception):
    """Raised for stock ledger errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class StockNotFoundError(StockError):
    pass


class InsufficientStockError(StockError):
    @property
    def available(self):
        return self.details.get("available")

    @property
    def requested(self):
        return self.details.get("requested")


@dataclass(frozen=True)
class StockTarget:
    target_type: str
    target_id: int

    @classmethod
    def for_variant(cls, variant_id: int) -> "StockTarget":
        return cls(TARGET_VARIANT, variant_id)

    @classmethod
    def for_product(cls, product_id: int) -> "StockTarget":
        return cls(TARGET_PRODUCT, product_id)

    @classmethod
    def for_line(cls, product_id: int | None, variant_id: int | None) -> "StockTarget":
        """A line is deducted against its variant when one is chosen, else its product."""
        if variant_id is not None:
            return cls.for_variant(variant_id)
        if product_id is None:
            raise ValidationError("Catalog line needs a product_id")
        return cls.for_product(product_id)

    def to_dict(self) -> dict:
        return {"target_type": self.target_type, "target_id": self.target_id}


# =============================================================================
# AVAILABILITY
# =============================================================================

def available_for_variant(variant_id: int) -> int:
    qty = (
        db.session.query(ProductVariant.stock_quantity)
        .filter(ProductVariant.id == variant_id)
        .scalar()
    )
    if qty is None:
        raise StockNotFoundError(
            f"Variant {variant_id} not found",
            details={"target_type": TARGET_VARIANT, "target_id": variant_id},
        )
    return int(qty)


def variant_count(product_id: int) -> int:
    return (
        db.session.query(func.count(ProductVariant.id))
        .filter(ProductVariant.product_id == product_id)
        .scalar()
    ) or 0


def available_for_product(product_id: int) -> int:
    """Aggregate stock: sum over variants, or the product's own counter when it has none."""
    own = (
        db.session.query(Product.stock_quantity)
        .filter(Product.id == product_id)
        .scalar()
    )
    if own is None:
        raise StockNotFoundError(
            f"Product {product_id} not found",
            details={"target_type": TARGET_PRODUCT, "target_id": product_id},
        )
    if variant_count(product_id):
        total = (
            db.session.query(func.coalesce(func.sum(ProductVariant.stock_quantity), 0))
            .filter(ProductVariant.product_id == product_id)
            .scalar()
        )
        return int(total)
    return int(own)


def available(target: StockTarget) -> int:
    if target.target_type == TARGET_VARIANT:
        return available_for_variant(target.target_id)
    if variant_count(target.target_id):
        raise ValidationError(
            f"Product {target.target_id} tracks stock per variant; choose a variant"
        )
    return available_for_product(target.target_id)


def deducted_line_ids(invoice_id: int) -> set[int]:
    rows = (
        db.session.query(StockMovement.invoice_line_id)
        .filter(StockMovement.invoice_id == invoice_id)
        .all()
    )
    return {row[0] for row in rows if row[0] is not None}


# =============================================================================
# DEDUCTION
# =============================================================================

def _guarded_decrement(target: StockTarget, quantity: int) -> int:
    if target.target_type == TARGET_VARIANT:
        stmt = (
            update(ProductVariant)
            .where(
                ProductVariant.id == target.target_id,
                ProductVariant.stock_quantity >= quantity,
            )
            .values(stock_quantity=ProductVariant.stock_quantity - quantity)
        )
    else:
        has_variants = exists().where(ProductVariant.product_id == Product.id)
        stmt = (
            update(Product)
            .where(
                Product.id == target.target_id,
                Product.stock_quantity >= quantity,
                ~has_variants,
            )
            .values(stock_quantity=Product.stock_quantity - quantity)
        )
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount


def reserve_and_deduct(
    target: StockTarget,
    quantity: int,
    *,
    invoice_id: int | None = None,
    invoice_line_id: int | None = None,
    line_index: int | None = None,
) -> StockMovement:
    """
    Atomically decrement one stock counter and commit.

    Raises:
        ValidationError: quantity is not a positive integer
        StockNotFoundError: unknown variant/product
        InsufficientStockError: quantity exceeds current stock (nothing changed)
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Deduction quantity must be a positive integer")

    def _op():
        if invoice_line_id is not None:
            existing = (
                db.session.query(StockMovement)
                .filter_by(invoice_line_id=invoice_line_id)
                .first()
            )
            if existing:
                return existing

        if not _guarded_decrement(target, quantity):
            db.session.rollback()
            current = available(target)
            raise InsufficientStockError(
                f"Insufficient stock for {target.target_type} {target.target_id}",
                details={
                    **target.to_dict(),
                    "available": current,
                    "requested": quantity,
                    "line_index": line_index,
                },
            )

        movement = StockMovement(
            target_type=target.target_type,
            target_id=target.target_id,
            quantity_delta=-quantity,
            invoice_id=invoice_id,
            invoice_line_id=invoice_line_id,
        )
        db.session.add(movement)
        db.session.flush()

        append_ledger_event(
            event_type="stock.deducted",
            event_category="stock",
            entity_type=f"{target.target_type}",
            entity_id=target.target_id,
            invoice_id=invoice_id,
            payload={"quantity": quantity, "invoice_line_id": invoice_line_id},
        )
        db.session.commit()
        return movement

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # A concurrent repair recorded this line first; its decrement won.
        db.session.rollback()
        existing = (
            db.session.query(StockMovement)
            .filter_by(invoice_line_id=invoice_line_id)
            .first()
        )
        if existing is None:
            raise
        return existing
