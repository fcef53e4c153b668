# Overview: Invoice commit saga (validate, persist, deduct), stock repair, and the invoice archive.

"""
Invoice Commit Sequencer

STATES:
    VALIDATING -> PERSISTING -> DEDUCTING -> COMMITTED
    any state  -> FAILED(reason)

- VALIDATING: no writes. Customer, lines, products/variants and stock are
  checked; the first stock shortfall aborts with InsufficientStockError.
- PERSISTING: header committed first (commit_state=PERSISTING), then all
  lines plus the opening PAYMENT entry in one transaction. A failure here
  leaves a header without its full line set: PersistenceFailure.
- DEDUCTING: one guarded decrement per catalog line, floor(quantity) units,
  each in its own transaction. A failure leaves a valid invoice with stock
  not (fully) deducted: DeductionFailure.
- COMMITTED: reported only after every deduction succeeded.

Nothing is rolled back automatically. FAILED invoices stay visible with
failure_reason set; repair_invoice_stock() finishes the deduction
idempotently (stock_movements is the record of what was deducted).

KNOWN LIMITATION:
Stock is validated before persistence and not re-checked until the guarded
decrement, so a concurrent commit can win the counter in between. The
decrement itself never drives stock negative.
"""

from __future__ import annotations

import math
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, Invoice, InvoiceLine, Product, ProductVariant
from ..time_utils import day_bounds, parse_iso_date
from ..validation import ValidationError, to_decimal
from . import payment_service, stock_service
from .concurrency import run_with_retry
from .draft_builder import InvoiceDraftBuilder, LINE_CATALOG
from .ledger_service import append_ledger_event, list_events
from .payment_service import ENTRY_PAYMENT, get_invoice
from .pricing import money
from .stock_service import InsufficientStockError, StockError, StockTarget


STATE_VALIDATING = "VALIDATING"
STATE_PERSISTING = "PERSISTING"
STATE_DEDUCTING = "DEDUCTING"
STATE_COMMITTED = "COMMITTED"
STATE_FAILED = "FAILED"

ZERO = Decimal("0")


class CommitError(Exception):
    """A commit failed after validation passed; the invoice may exist in a partial state."""
    error_kind = "commit_failure"

    def __init__(self, message: str, details: dict | None = None, invoice_id: int | None = None):
        super().__init__(message)
        self.details = details or {}
        self.invoice_id = invoice_id


class PersistenceFailure(CommitError):
    error_kind = "persistence_failure"


class DeductionFailure(CommitError):
    error_kind = "deduction_failure"


@dataclass
class ValidatedLine:
    index: int
    line: object
    target: StockTarget | None


@dataclass
class InvoiceCommitSequencer:
    """
    One commit attempt for one draft. Not reusable: create a new one per attempt.
    """
    builder: InvoiceDraftBuilder
    state: str = STATE_VALIDATING
    history: list = field(default_factory=list)
    failure_reason: str | None = None
    invoice: Invoice | None = None

    def commit(self) -> Invoice:
        self._enter(STATE_VALIDATING)
        try:
            validated = self.validate()
        except (ValidationError, StockError) as exc:
            self._fail(str(exc))
            raise

        self._enter(STATE_PERSISTING)
        invoice = self.persist(validated)

        self._enter(STATE_DEDUCTING)
        self.deduct(invoice)

        self._enter(STATE_COMMITTED)
        _set_commit_state(invoice.id, STATE_COMMITTED)
        current_app.logger.info("Invoice %s committed", invoice.invoice_number)
        return invoice

    # ------------------------------------------------------------------
    # VALIDATING
    # ------------------------------------------------------------------

    def validate(self) -> list[ValidatedLine]:
        draft = self.builder
        if not (draft.customer_name or "").strip():
            raise ValidationError("Customer name is required")
        if not draft.lines:
            raise ValidationError("Invoice must have at least one line")
        if draft.customer_id is not None and db.session.get(Customer, draft.customer_id) is None:
            raise ValidationError(f"Customer {draft.customer_id} not found")

        validated: list[ValidatedLine] = []
        requested: dict[StockTarget, Decimal] = {}

        for index, line in enumerate(draft.lines):
            if line.quantity <= ZERO:
                raise ValidationError(f"Line {index + 1}: quantity must be greater than 0")

            if line.line_type != LINE_CATALOG:
                validated.append(ValidatedLine(index, line, None))
                continue

            target = _target_for_line(index, line)

            # Same counter on several lines: check the running total.
            requested[target] = requested.get(target, ZERO) + line.quantity
            available = stock_service.available(target)
            if available < requested[target]:
                raise InsufficientStockError(
                    f"Line {index + 1}: insufficient stock "
                    f"(available {available}, requested {requested[target]})",
                    details={
                        **target.to_dict(),
                        "available": available,
                        "requested": requested[target],
                        "line_index": index,
                    },
                )
            validated.append(ValidatedLine(index, line, target))

        if draft.compute_totals().grand_total < ZERO:
            raise ValidationError("Invoice total cannot be negative")

        return validated

    # ------------------------------------------------------------------
    # PERSISTING
    # ------------------------------------------------------------------

    def persist(self, validated: list[ValidatedLine]) -> Invoice:
        draft = self.builder
        totals = draft.compute_totals()

        def _write_header():
            invoice = Invoice(
                invoice_number=generate_invoice_number(),
                customer_id=draft.customer_id,
                customer_name=draft.customer_name.strip(),
                customer_phone=draft.customer_phone or None,
                reference_by=draft.reference_by or None,
                subtotal=totals.subtotal,
                total_discount=totals.total_discount,
                taxable_amount=totals.taxable_amount,
                tax_type=draft.tax.tax_type,
                tax_percent=draft.tax.tax_percent,
                cgst=totals.cgst,
                sgst=totals.sgst,
                igst=totals.igst,
                grand_total=totals.grand_total,
                paid_amount=ZERO,
                payment_status="unpaid",
                line_count=len(validated),
                commit_state=STATE_PERSISTING,
            )
            db.session.add(invoice)
            db.session.commit()
            return invoice

        try:
            invoice = run_with_retry(_write_header)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Invoice header write failed")
            self._fail("header write failed")
            raise PersistenceFailure(
                "Could not save the invoice header",
                details={"stage": "header", "error": str(exc.__class__.__name__)},
            )

        self.invoice = invoice
        invoice_id = invoice.id
        invoice_number = invoice.invoice_number

        try:
            self._write_lines(invoice, validated)
        except SQLAlchemyError as exc:
            db.session.rollback()
            reason = "line write failed"
            current_app.logger.error(
                "Invoice %s saved without its lines (%s)", invoice_number, exc.__class__.__name__,
            )
            self._fail(reason)
            _mark_failed(invoice_id, reason)
            raise PersistenceFailure(
                f"Invoice {invoice_number} was saved but its lines were not",
                details={"stage": "lines", "invoice_number": invoice_number},
                invoice_id=invoice_id,
            )
        return invoice

    def _write_lines(self, invoice: Invoice, validated: list[ValidatedLine]) -> None:
        draft = self.builder
        for item in validated:
            line = item.line
            db.session.add(InvoiceLine(
                invoice_id=invoice.id,
                line_no=item.index + 1,
                line_type=line.line_type,
                product_id=line.product_id if line.line_type == LINE_CATALOG else None,
                variant_id=line.variant_id if line.line_type == LINE_CATALOG else None,
                item_code=line.item_code or None,
                description=line.description or "",
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount_percent=line.discount_percent,
                discount_amount=line.discount_amount,
                line_discount=money(line.line_discount),
                line_total=line.line_total,
            ))
        db.session.flush()

        # Opening payment selected on the draft becomes the first ledger entry.
        opening = money(draft.paid_amount)
        if opening > ZERO:
            payment_service.append_entry(invoice, ENTRY_PAYMENT, opening, method=draft.payment_method)
        payment_service.refresh_invoice_payment_state(invoice)

        invoice.commit_state = STATE_DEDUCTING
        append_ledger_event(
            event_type="invoice.persisted",
            event_category="invoices",
            entity_type="invoice",
            entity_id=invoice.id,
            invoice_id=invoice.id,
            note=invoice.invoice_number,
            payload={"lines": len(validated), "grand_total": str(invoice.grand_total)},
        )
        db.session.commit()

    # ------------------------------------------------------------------
    # DEDUCTING
    # ------------------------------------------------------------------

    def deduct(self, invoice: Invoice) -> None:
        try:
            deduct_invoice_lines(invoice)
        except DeductionFailure as exc:
            self._fail(str(exc))
            raise

    def _enter(self, state: str) -> None:
        self.state = state
        self.history.append(state)

    def _fail(self, reason: str) -> None:
        self.failure_reason = reason
        self._enter(STATE_FAILED)


def commit_draft(builder: InvoiceDraftBuilder) -> Invoice:
    return InvoiceCommitSequencer(builder).commit()


def generate_invoice_number() -> str:
    """Timestamp-derived token, e.g. INV-1730000000000-3F2A."""
    return f"INV-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


def deduction_quantity(quantity) -> int:
    """Whole units only; 2.9 deducts 2."""
    return int(math.floor(Decimal(quantity)))


def _target_for_line(index: int, line) -> StockTarget:
    if line.product_id is None:
        raise ValidationError(f"Line {index + 1}: choose a product")
    product = db.session.get(Product, line.product_id)
    if product is None:
        raise ValidationError(f"Line {index + 1}: product {line.product_id} not found")

    if line.variant_id is not None:
        variant = db.session.get(ProductVariant, line.variant_id)
        if variant is None:
            raise ValidationError(f"Line {index + 1}: variant {line.variant_id} not found")
        if variant.product_id != product.id:
            raise ValidationError(
                f"Line {index + 1}: variant {variant.id} does not belong to product {product.id}"
            )
    elif stock_service.variant_count(product.id):
        raise ValidationError(f"Line {index + 1}: choose a variant for {product.name}")

    return StockTarget.for_line(line.product_id, line.variant_id)


def _set_commit_state(invoice_id: int, state: str, reason: str | None = None) -> None:
    def _op():
        invoice = db.session.get(Invoice, invoice_id)
        invoice.commit_state = state
        invoice.failure_reason = reason
        db.session.commit()
    run_with_retry(_op)


def _mark_failed(invoice_id: int, reason: str) -> None:
    try:
        _set_commit_state(invoice_id, STATE_FAILED, reason)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Could not mark invoice %s as FAILED", invoice_id)


def deduct_invoice_lines(invoice: Invoice) -> dict:
    """
    Deduct every catalog line of a persisted invoice that has no stock movement yet.

    Stops at the first failing line, marks the invoice FAILED and raises
    DeductionFailure. Returns {"deducted": [...], "skipped": [...]} line numbers.
    """
    invoice_id = invoice.id
    invoice_number = invoice.invoice_number
    lines = (
        db.session.query(InvoiceLine)
        .filter_by(invoice_id=invoice_id)
        .order_by(InvoiceLine.line_no.asc())
        .all()
    )
    already = stock_service.deducted_line_ids(invoice_id)

    deducted: list[int] = []
    skipped: list[int] = []
    for line in lines:
        if line.line_type != LINE_CATALOG:
            continue
        if line.id in already:
            skipped.append(line.line_no)
            continue
        qty = deduction_quantity(line.quantity)
        if qty <= 0:
            skipped.append(line.line_no)
            continue

        line_id, line_no = line.id, line.line_no
        target = StockTarget.for_line(line.product_id, line.variant_id)
        try:
            stock_service.reserve_and_deduct(
                target,
                qty,
                invoice_id=invoice_id,
                invoice_line_id=line_id,
                line_index=line_no - 1,
            )
        except (StockError, ValidationError, SQLAlchemyError) as exc:
            db.session.rollback()
            reason = f"stock deduction failed on line {line_no}"
            current_app.logger.error(
                "Invoice %s: %s (%s); %d line(s) deducted before the failure",
                invoice_number, reason, exc, len(deducted),
            )
            _mark_failed(invoice_id, reason)
            details = {
                "stage": "deduct",
                "invoice_number": invoice_number,
                "line_no": line_no,
                "deducted_lines": deducted,
                "error": str(exc),
            }
            if isinstance(exc, StockError):
                details.update(exc.details)
            raise DeductionFailure(
                f"Invoice {invoice_number} was saved but stock for line {line_no} was not deducted",
                details=details,
                invoice_id=invoice_id,
            )
        deducted.append(line_no)

    return {"deducted": deducted, "skipped": skipped}


def repair_invoice_stock(invoice_id: int) -> dict:
    """
    Bring stock in line with a persisted invoice after a partial failure.

    Idempotent: lines that already have a stock movement are skipped, so
    running it twice deducts nothing the second time. Refuses invoices whose
    line set is incomplete (a header-only PersistenceFailure).
    """
    invoice = get_invoice(invoice_id)
    present = (
        db.session.query(func.count(InvoiceLine.id))
        .filter(InvoiceLine.invoice_id == invoice.id)
        .scalar()
    )
    if present < invoice.line_count:
        raise PersistenceFailure(
            f"Invoice {invoice.invoice_number} has {present} of {invoice.line_count} lines; "
            "stock cannot be repaired",
            details={"stage": "lines", "present": present, "expected": invoice.line_count},
            invoice_id=invoice.id,
        )

    result = deduct_invoice_lines(invoice)
    _set_commit_state(invoice.id, STATE_COMMITTED)
    db.session.refresh(invoice)
    if result["deducted"]:
        current_app.logger.info(
            "Repaired stock for invoice %s: lines %s", invoice.invoice_number, result["deducted"],
        )
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "commit_state": invoice.commit_state,
        **result,
    }


# =============================================================================
# ARCHIVE
# =============================================================================

def list_invoices(
    *,
    search: str | None = None,
    status: str | None = None,
    customer: str | None = None,
    min_amount=None,
    max_amount=None,
    start=None,
    end=None,
    limit: int | None = None,
) -> tuple[list[Invoice], dict]:
    """
    Filter the invoice archive. Dates are inclusive calendar days.

    Returns (invoices newest first, summary) where summary is
    {count, total_sold, total_paid, total_remaining} over the filtered set.
    """
    query = db.session.query(Invoice)

    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Invoice.invoice_number.ilike(like),
            Invoice.customer_name.ilike(like),
            Invoice.customer_phone.ilike(like),
        ))
    if status:
        query = query.filter(Invoice.payment_status == status.strip().lower())
    if customer:
        query = query.filter(Invoice.customer_name.ilike(f"%{customer.strip()}%"))
    if min_amount not in (None, ""):
        query = query.filter(Invoice.grand_total >= to_decimal(min_amount, "min_amount"))
    if max_amount not in (None, ""):
        query = query.filter(Invoice.grand_total <= to_decimal(max_amount, "max_amount"))

    try:
        start_date = parse_iso_date(start)
        end_date = parse_iso_date(end)
    except ValueError:
        raise ValidationError("start/end must be YYYY-MM-DD")
    if start_date or end_date:
        lo, hi = day_bounds(start_date or end_date, end_date or start_date)
        if start_date and end_date:
            query = query.filter(and_(Invoice.created_at >= lo, Invoice.created_at <= hi))
        elif start_date:
            query = query.filter(Invoice.created_at >= lo)
        else:
            query = query.filter(Invoice.created_at <= hi)

    query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    if limit:
        query = query.limit(limit)
    invoices = query.all()

    total_sold = sum((Decimal(i.grand_total) for i in invoices), ZERO)
    total_paid = sum((Decimal(i.paid_amount) for i in invoices), ZERO)
    summary = {
        "count": len(invoices),
        "total_sold": total_sold,
        "total_paid": total_paid,
        "total_remaining": total_sold - total_paid,
    }
    return invoices, summary


def get_invoice_detail(invoice_id: int) -> dict:
    invoice = get_invoice(invoice_id)
    data = invoice.to_dict()
    data["lines"] = [line.to_dict() for line in invoice.lines]
    data["payments"] = [p.to_dict() for p in payment_service.list_payments(invoice.id)]
    data["status_audits"] = [a.to_dict() for a in payment_service.list_status_audits(invoice.id)]
    data["stock_movements"] = sorted(stock_service.deducted_line_ids(invoice.id))
    data["events"] = [e.to_dict() for e in list_events(invoice_id=invoice.id)]
    return data
