# Overview: Payment ledger for committed invoices; paid_amount/payment_status are recomputed from it.

"""
Invoice Payment Service

DESIGN PRINCIPLES:
- invoice_payments is an append-only ledger (PAYMENT, DISCOUNT, ADJUSTMENT).
- Invoice.paid_amount is a materialized view: clamp(SUM(ledger), 0, G),
  re-summed from the table on every write, never old P + a.
- Overpayment is rejected before any write.
- Moving an invoice away from 'paid' needs a reason; the audit row is
  committed before the status change is applied.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoicePayment, InvoiceStatusAudit
from ..validation import ValidationError, to_decimal
from . import payment_state
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import append_ledger_event
from .pricing import money


class PaymentError(Exception):
    """Raised for payment operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class PaymentAmountInvalid(PaymentError):
    """Amount/discount exceeds the remaining balance, or a discount has no reason."""


class ReasonRequired(PaymentError):
    """Leaving 'paid' without a reason."""


class InvoiceNotFound(PaymentError):
    pass


# =============================================================================
# LEDGER ENTRY TYPES (CONSTANTS)
# =============================================================================

ENTRY_PAYMENT = "PAYMENT"
ENTRY_DISCOUNT = "DISCOUNT"
ENTRY_ADJUSTMENT = "ADJUSTMENT"

METHOD_CASH = "cash"
METHOD_UPI = "upi"
METHOD_CARD = "card"

VALID_METHODS = [METHOD_CASH, METHOD_UPI, METHOD_CARD]

ZERO = Decimal("0")


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int, *, for_update: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id)
    if for_update:
        query = lock_for_update(query)
    invoice = query.first()
    if not invoice:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found")
    return invoice


def ledger_total(invoice_id: int) -> Decimal:
    """Raw signed sum of every ledger entry for the invoice (unclamped)."""
    total = (
        db.session.query(func.coalesce(func.sum(InvoicePayment.amount), 0))
        .filter(InvoicePayment.invoice_id == invoice_id)
        .scalar()
    )
    return money(total)


def list_payments(invoice_id: int) -> list[InvoicePayment]:
    return (
        db.session.query(InvoicePayment)
        .filter_by(invoice_id=invoice_id)
        .order_by(InvoicePayment.id.asc())
        .all()
    )


def get_payment_summary(invoice_id: int) -> dict:
    invoice = get_invoice(invoice_id)
    return {
        "invoice_id": invoice.id,
        "grand_total": invoice.grand_total,
        "paid_amount": invoice.paid_amount,
        "remaining_amount": invoice.grand_total - invoice.paid_amount,
        "payment_status": invoice.payment_status,
        "ledger_total": ledger_total(invoice.id),
    }


# =============================================================================
# LEDGER WRITES
# =============================================================================

def append_entry(
    invoice: Invoice,
    entry_type: str,
    amount: Decimal,
    *,
    method: str | None = None,
    reason: str | None = None,
) -> InvoicePayment:
    """Append one ledger row and flush. Caller refreshes state and commits."""
    entry = InvoicePayment(
        invoice_id=invoice.id,
        entry_type=entry_type,
        amount=money(amount),
        method=method,
        reason=reason,
    )
    db.session.add(entry)
    db.session.flush()

    append_ledger_event(
        event_type=f"payment.{entry_type.lower()}",
        event_category="payments",
        entity_type="invoice_payment",
        entity_id=entry.id,
        invoice_id=invoice.id,
        note=reason,
        payload={"amount": str(entry.amount), "method": method},
    )
    return entry


def refresh_invoice_payment_state(invoice: Invoice) -> Invoice:
    """
    Recompute paid_amount and payment_status from the ledger.

    Every write path ends here so the cached fields never drift.
    """
    db.session.flush()
    grand_total = Decimal(invoice.grand_total)
    paid = payment_state.clamp_paid(ledger_total(invoice.id), grand_total)
    invoice.paid_amount = paid
    invoice.payment_status = payment_state.derive_payment_status(paid, grand_total)
    db.session.flush()
    return invoice


def _positive_or_zero(value, field: str) -> Decimal:
    amount = money(to_decimal(value, field))
    if amount < ZERO:
        raise PaymentAmountInvalid(f"{field} must be >= 0")
    return amount


def record_payment(
    invoice_id: int,
    amount,
    method: str = METHOD_CASH,
    discount_amount=None,
    discount_reason: str | None = None,
) -> Invoice:
    """
    Record a payment (and optionally a settlement discount) on a committed invoice.

    Raises:
        InvoiceNotFound: unknown invoice
        PaymentAmountInvalid: nothing to record, amount + discount exceeds
            the remaining balance, or a discount has no reason
        ValidationError: unknown payment method
    """
    method = (method or METHOD_CASH).strip().lower()
    if method not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")

    try:
        pay = _positive_or_zero(amount, "amount")
        discount = _positive_or_zero(discount_amount, "discount_amount")
    except ValidationError as exc:
        raise PaymentAmountInvalid(str(exc))

    reason = (discount_reason or "").strip()
    if discount > ZERO and not reason:
        raise PaymentAmountInvalid("discount_reason is required when a discount is given")
    if pay + discount <= ZERO:
        raise PaymentAmountInvalid("Payment amount must be positive")

    def _op():
        invoice = get_invoice(invoice_id, for_update=True)
        refresh_invoice_payment_state(invoice)

        remaining = Decimal(invoice.grand_total) - Decimal(invoice.paid_amount)
        if remaining <= ZERO:
            raise PaymentAmountInvalid("Invoice has no remaining balance")
        if pay + discount > remaining:
            raise PaymentAmountInvalid(
                "Amount exceeds remaining balance",
                details={
                    "remaining": str(remaining),
                    "amount": str(pay),
                    "discount_amount": str(discount),
                },
            )

        if pay > ZERO:
            append_entry(invoice, ENTRY_PAYMENT, pay, method=method)
        if discount > ZERO:
            append_entry(invoice, ENTRY_DISCOUNT, discount, reason=reason)

        refresh_invoice_payment_state(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# STATUS OVERRIDE
# =============================================================================

def change_status(
    invoice_id: int,
    new_status: str,
    reason: str | None = None,
    amount=None,
) -> Invoice:
    """
    Explicitly set an invoice's payment status.

    unpaid  -> P = 0
    paid    -> P = G
    partial -> P = clamp(amount); without an amount the current P is kept
               when it is strictly between 0 and G

    Realised as a signed ADJUSTMENT entry so P stays SUM(ledger).
    Leaving 'paid' requires a non-empty reason; the audit row is committed
    before the adjustment is written.
    """
    new_status = payment_state.normalize_status(new_status)
    reason = (reason or "").strip() or None

    invoice = get_invoice(invoice_id)
    grand_total = Decimal(invoice.grand_total)
    old_status = invoice.payment_status

    resulting_status, target_paid = payment_state.select_status(
        new_status, grand_total, amount=amount, current=invoice.paid_amount,
    )
    if new_status == payment_state.STATUS_PARTIAL and target_paid <= ZERO:
        raise PaymentAmountInvalid("A partial status needs an amount between 0 and the grand total")

    # partial at G snaps back to paid; only a real move away from paid is audited
    if old_status == payment_state.STATUS_PAID and resulting_status != payment_state.STATUS_PAID:
        if not reason:
            raise ReasonRequired("A reason is required to change the status of a paid invoice")
        _write_status_audit(invoice.id, reason, old_status, resulting_status)

    def _op():
        locked = get_invoice(invoice_id, for_update=True)
        delta = money(target_paid - ledger_total(locked.id))
        if delta != ZERO:
            append_entry(locked, ENTRY_ADJUSTMENT, delta, reason=reason or f"status set to {resulting_status}")
        refresh_invoice_payment_state(locked)
        db.session.commit()
        return locked

    return run_with_retry(_op)


def _write_status_audit(invoice_id: int, reason: str, old_status: str, new_status: str) -> InvoiceStatusAudit:
    def _op():
        audit = InvoiceStatusAudit(
            invoice_id=invoice_id,
            reason=reason,
            old_status=old_status,
            new_status=new_status,
        )
        db.session.add(audit)
        db.session.flush()
        append_ledger_event(
            event_type="invoice.status_override",
            event_category="payments",
            entity_type="invoice_status_audit",
            entity_id=audit.id,
            invoice_id=invoice_id,
            note=reason,
            payload={"old_status": old_status, "new_status": new_status},
        )
        db.session.commit()
        return audit

    return run_with_retry(_op)


def list_status_audits(invoice_id: int) -> list[InvoiceStatusAudit]:
    return (
        db.session.query(InvoiceStatusAudit)
        .filter_by(invoice_id=invoice_id)
        .order_by(InvoiceStatusAudit.id.asc())
        .all()
    )
