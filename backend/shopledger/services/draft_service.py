# Overview: Keyed draft sessions (one per invoice tab) persisted in draft_sessions.

"""
Draft Sessions

Each open invoice tab is an independent InvoiceDraftBuilder stored under its
own session key. Nothing is shared between sessions.

- open_session(): new key inv_<ms>_<n>, label "New Invoice"
- close_session(): refuses to close the last open session
- the label follows the draft's customer name
- commit_session(): commits through the sequencer and resets the draft on success
- a commit that fails after the invoice header exists pins that invoice id on
  the session; further commits are refused until the draft is reset
"""

from __future__ import annotations

import itertools
import time

from flask import current_app

from ..extensions import db
from ..models import Customer, DraftSession, Invoice, Product, ProductVariant
from ..validation import ValidationError, to_optional_int
from .concurrency import run_with_retry
from .draft_builder import InvoiceDraftBuilder, LINE_CATALOG, LINE_MANUAL
from .invoice_service import CommitError, InvoiceCommitSequencer
from .pricing import TaxConfig


class DraftError(Exception):
    """Raised for draft session errors."""


class DraftNotFound(DraftError):
    pass


class CommitBlocked(DraftError):
    def __init__(self, message: str, invoice_id: int):
        super().__init__(message)
        self.invoice_id = invoice_id


DEFAULT_LABEL = "New Invoice"

_session_counter = itertools.count(1)


def new_session_key() -> str:
    return f"inv_{int(time.time() * 1000)}_{next(_session_counter)}"


def new_builder() -> InvoiceDraftBuilder:
    """Blank draft seeded with the configured tax defaults."""
    config = current_app.config
    tax = TaxConfig.build(
        config.get("DEFAULT_TAX_TYPE", "NONE"),
        config.get("DEFAULT_TAX_PERCENT", "0"),
    )
    return InvoiceDraftBuilder(tax=tax)


# =============================================================================
# SESSIONS
# =============================================================================

def open_session(builder: InvoiceDraftBuilder | None = None) -> DraftSession:
    builder = builder or new_builder()

    def _op():
        session = DraftSession(
            session_key=new_session_key(),
            label=builder.label or DEFAULT_LABEL,
            payload=builder.to_dict(),
        )
        db.session.add(session)
        db.session.commit()
        return session

    return run_with_retry(_op)


def list_sessions() -> list[DraftSession]:
    return db.session.query(DraftSession).order_by(DraftSession.id.asc()).all()


def ensure_session() -> DraftSession:
    """At least one tab is always open."""
    sessions = list_sessions()
    if sessions:
        return sessions[0]
    return open_session()


def get_session(key: str) -> DraftSession:
    session = db.session.query(DraftSession).filter_by(session_key=key).first()
    if not session:
        raise DraftNotFound(f"Draft session {key} not found")
    return session


def load(key: str) -> InvoiceDraftBuilder:
    return InvoiceDraftBuilder.from_dict(get_session(key).payload)


def save(key: str, builder: InvoiceDraftBuilder, clear_failure: bool = False) -> DraftSession:
    def _op():
        session = get_session(key)
        session.payload = builder.to_dict()
        session.label = builder.label or DEFAULT_LABEL
        if clear_failure:
            session.failed_invoice_id = None
        db.session.commit()
        return session

    return run_with_retry(_op)


def close_session(key: str) -> None:
    def _op():
        session = get_session(key)
        remaining = db.session.query(DraftSession).count()
        if remaining <= 1:
            raise DraftError("Cannot close the last open invoice")
        db.session.delete(session)
        db.session.commit()

    run_with_retry(_op)


def reset_session(key: str) -> DraftSession:
    return save(key, new_builder(), clear_failure=True)


# =============================================================================
# EDITS (each loads, applies one change, saves)
# =============================================================================

def apply_customer(builder: InvoiceDraftBuilder, customer_id) -> None:
    """Copy name and phone from the customer registry by value."""
    customer_id = to_optional_int(customer_id, "customer_id")
    if customer_id is None:
        builder.set_customer(customer_id=None)
        return
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise ValidationError(f"Customer {customer_id} not found")
    builder.set_customer(name=customer.name, phone=customer.phone or "", customer_id=customer.id)


def update_header(key: str, payload: dict) -> InvoiceDraftBuilder:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    builder = load(key)

    if "customer_id" in payload:
        apply_customer(builder, payload["customer_id"])
    if any(k in payload for k in ("customer_name", "customer_phone", "reference_by")):
        # Typing a different name detaches the draft from the registry entry.
        keep_id = "customer_id" in payload or "customer_name" not in payload
        builder.set_customer(
            name=payload.get("customer_name"),
            phone=payload.get("customer_phone"),
            reference_by=payload.get("reference_by"),
            customer_id=builder.customer_id if keep_id else None,
        )
    if "tax_type" in payload or "tax_percent" in payload:
        builder.set_tax(payload.get("tax_type", builder.tax.tax_type), payload.get("tax_percent"))
    if "payment_method" in payload:
        builder.set_payment_method(payload["payment_method"])
    if "payment_status" in payload:
        builder.select_payment_status(payload["payment_status"], payload.get("paid_amount"))
    elif "paid_amount" in payload:
        builder.select_payment_status("partial", payload["paid_amount"])

    save(key, builder)
    return builder


def _catalog_rows(product_id, variant_id):
    product_id = to_optional_int(product_id, "product_id")
    variant_id = to_optional_int(variant_id, "variant_id")
    if product_id is None:
        raise ValidationError("product_id is required for a catalog line")
    product = db.session.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product {product_id} not found")
    variant = None
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        if variant is None:
            raise ValidationError(f"Variant {variant_id} not found")
    return product, variant


def add_line(key: str, payload: dict) -> InvoiceDraftBuilder:
    payload = payload or {}
    builder = load(key)
    line_type = payload.get("line_type") or (LINE_CATALOG if payload.get("product_id") else LINE_MANUAL)

    if line_type == LINE_CATALOG:
        product, variant = _catalog_rows(payload.get("product_id"), payload.get("variant_id"))
        index = builder.add_catalog_line(product, variant)
    elif line_type == LINE_MANUAL:
        index = builder.add_manual_line(
            description=payload.get("description") or "",
            unit_price=payload.get("unit_price"),
            quantity=payload.get("quantity", 1),
        )
    else:
        raise ValidationError(f"Unknown line_type: {line_type}")

    if line_type == LINE_CATALOG and "quantity" in payload:
        builder.update_line(index, "quantity", payload["quantity"])

    save(key, builder)
    return builder


def update_line(key: str, index: int, payload: dict) -> InvoiceDraftBuilder:
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("Nothing to update")
    builder = load(key)

    if "product_id" in payload:
        product, _ = _catalog_rows(payload["product_id"], None)
        builder.select_product(index, product)
    if payload.get("variant_id") is not None:
        line = builder.lines[index] if 0 <= index < len(builder.lines) else None
        product, variant = _catalog_rows(
            payload.get("product_id", line.product_id if line else None),
            payload["variant_id"],
        )
        builder.select_variant(index, product, variant)

    for field_name, value in payload.items():
        if field_name in ("product_id", "variant_id"):
            continue
        builder.update_line(index, field_name, value)

    save(key, builder)
    return builder


def remove_line(key: str, index: int) -> InvoiceDraftBuilder:
    builder = load(key)
    builder.remove_line(index)
    save(key, builder)
    return builder


def commit_session(key: str) -> Invoice:
    """
    Commit the session's draft. The draft is reset only when the commit
    fully succeeds; on any failure it is left as-is for the operator.

    If the failure left an invoice behind, its id is kept on the session and
    a second commit raises CommitBlocked instead of writing another header.
    """
    session = get_session(key)
    if session.failed_invoice_id is not None:
        raise CommitBlocked(
            f"Draft already produced invoice {session.failed_invoice_id}; "
            "repair that invoice or reset the draft",
            invoice_id=session.failed_invoice_id,
        )

    builder = InvoiceDraftBuilder.from_dict(session.payload)
    try:
        invoice = InvoiceCommitSequencer(builder).commit()
    except CommitError as exc:
        if exc.invoice_id is not None:
            _pin_failed_invoice(key, exc.invoice_id)
        raise
    reset_session(key)
    return invoice


def _pin_failed_invoice(key: str, invoice_id: int) -> None:
    def _op():
        session = get_session(key)
        session.failed_invoice_id = invoice_id
        db.session.commit()

    run_with_retry(_op)
