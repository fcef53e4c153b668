# Overview: Ingestion of storefront (online channel) orders as reconciliation sale events.

"""
Online orders

The storefront is external and handles its own stock; recording an order
here never touches stock counters. Lines without a unit_price are priced at
the product's current effective price (offer_price, else price).
"""

from __future__ import annotations

import secrets
import time
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OnlineOrder, OnlineOrderLine, Product, ProductVariant
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import ConflictError, ValidationError, to_decimal, to_optional_int
from .concurrency import run_with_retry
from .ledger_service import append_ledger_event
from .pricing import money

ZERO = Decimal("0")


def _order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


def _effective_price(product: Product) -> Decimal:
    if product.offer_price is not None:
        return Decimal(product.offer_price)
    if product.price is not None:
        return Decimal(product.price)
    return ZERO


def _normalize_line(index: int, raw: dict) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"Line {index + 1}: must be an object")
    product_id = to_optional_int(raw.get("product_id"), "product_id")
    if product_id is None:
        raise ValidationError(f"Line {index + 1}: product_id is required")
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Line {index + 1}: product {product_id} not found")

    variant_id = to_optional_int(raw.get("variant_id"), "variant_id")
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None or variant.product_id != product.id:
            raise ValidationError(f"Line {index + 1}: variant {variant_id} does not belong to product {product_id}")

    quantity = to_decimal(raw.get("quantity"), "quantity", default=None)
    if quantity <= ZERO:
        raise ValidationError(f"Line {index + 1}: quantity must be greater than 0")

    if raw.get("unit_price") in (None, ""):
        unit_price = _effective_price(product)
    else:
        unit_price = to_decimal(raw.get("unit_price"), "unit_price")
        if unit_price < ZERO:
            raise ValidationError(f"Line {index + 1}: unit_price must be >= 0")

    return {
        "product_id": product.id,
        "variant_id": variant_id,
        "quantity": quantity,
        "unit_price": money(unit_price),
    }


def record_online_order(lines: list, created_at=None, order_number: str | None = None) -> OnlineOrder:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("An order needs at least one line")

    if isinstance(created_at, str):
        try:
            created_at = parse_iso_datetime(created_at)
        except ValueError:
            raise ValidationError("created_at must be an ISO-8601 datetime")
    created_at = created_at or utcnow()

    normalized = [_normalize_line(i, raw) for i, raw in enumerate(lines)]
    total = money(sum((line["quantity"] * line["unit_price"] for line in normalized), ZERO))

    def _op():
        order = OnlineOrder(
            order_number=order_number or _order_number(),
            total_amount=total,
            created_at=created_at,
        )
        db.session.add(order)
        db.session.flush()
        for line in normalized:
            db.session.add(OnlineOrderLine(order_id=order.id, created_at=created_at, **line))
        append_ledger_event(
            event_type="order.recorded",
            event_category="orders",
            entity_type="online_order",
            entity_id=order.id,
            occurred_at=created_at,
            note=order.order_number,
            payload={"lines": len(normalized), "total_amount": str(total)},
        )
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Order number already recorded: {order_number}")


def get_order(order_id: int) -> OnlineOrder | None:
    return db.session.get(OnlineOrder, order_id)
