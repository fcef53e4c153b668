# backend/shopledger/services/catalog_service.py
"""
Catalog seeding

Catalog management proper is an outside collaborator; this module only
creates and lists products/variants so the CLI and tests have something to
sell. Stock edits made here are direct counter writes, not deductions.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, ProductVariant
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_priced_item,
    validate_payload,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "item_code", "price", "offer_price", "stock_quantity", "is_active"},
    required_on_create={"name"},
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields={"size", "color", "price", "stock_quantity"},
    required_on_create=set(),
)


def create_product(payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_priced_item(patch)

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"item_code already exists: {patch.get('item_code')}")
    return product


def create_variant(product_id: int, payload: dict) -> ProductVariant:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found")

    patch = validate_payload(model=ProductVariant, payload=payload, policy=VARIANT_POLICY, partial=False)
    enforce_rules_priced_item(patch)

    variant = ProductVariant(product_id=product.id, **patch)
    db.session.add(variant)
    db.session.commit()
    return variant


def list_products(include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.name.asc(), Product.id.asc()).all()
