# Overview: Tri-state payment status derivation shared by drafts and committed invoices.

from __future__ import annotations

from decimal import Decimal

from ..validation import ValidationError, to_decimal


STATUS_UNPAID = "unpaid"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"

VALID_STATUSES = (STATUS_UNPAID, STATUS_PARTIAL, STATUS_PAID)

ZERO = Decimal("0")


def clamp_paid(paid, grand_total) -> Decimal:
    """Overpayment is not representable: P is held in [0, G]."""
    paid = Decimal(paid)
    grand_total = Decimal(grand_total)
    if paid < ZERO:
        return ZERO
    if grand_total > ZERO and paid > grand_total:
        return grand_total
    if grand_total <= ZERO:
        return ZERO
    return paid


def derive_payment_status(paid, grand_total) -> str:
    """
    P <= 0      -> unpaid
    P >= G      -> paid
    0 < P < G   -> partial

    A zero-total invoice with nothing paid is unpaid.
    """
    paid = Decimal(paid)
    grand_total = Decimal(grand_total)
    if paid <= ZERO:
        return STATUS_UNPAID
    if paid >= grand_total:
        return STATUS_PAID
    return STATUS_PARTIAL


def normalize_status(status: str | None) -> str:
    value = (status or "").strip().lower()
    if value not in VALID_STATUSES:
        raise ValidationError(f"payment_status must be one of {', '.join(VALID_STATUSES)}")
    return value


def select_status(status: str, grand_total, amount=None, current=ZERO) -> tuple[str, Decimal]:
    """
    Direct status selection, before any payment record exists.

    paid    -> P = G
    unpaid  -> P = 0
    partial -> P = clamp(amount); status re-derived from P, so entering G
               snaps to paid. Without an amount the current P is kept if it
               is strictly between 0 and G, otherwise P = 0 and the status
               stays 'partial' until an amount is entered.

    Returns (status, paid_amount).
    """
    status = normalize_status(status)
    grand_total = Decimal(grand_total)

    if status == STATUS_PAID:
        return STATUS_PAID, clamp_paid(grand_total, grand_total)
    if status == STATUS_UNPAID:
        return STATUS_UNPAID, ZERO

    if amount is None or (isinstance(amount, str) and not amount.strip()):
        current = Decimal(current)
        if ZERO < current < grand_total:
            return STATUS_PARTIAL, current
        return STATUS_PARTIAL, ZERO

    paid = clamp_paid(to_decimal(amount, "paid_amount"), grand_total)
    return derive_payment_status(paid, grand_total), paid


def reclamp(status: str, paid, grand_total) -> tuple[str, Decimal]:
    """
    Re-apply a selected status after the grand total moved.

    paid tracks G, unpaid stays 0, partial is clamped and re-derived
    (a partial draft with nothing entered yet stays partial).
    """
    grand_total = Decimal(grand_total)
    if status == STATUS_PAID:
        return STATUS_PAID, clamp_paid(grand_total, grand_total)
    if status == STATUS_UNPAID:
        return STATUS_UNPAID, ZERO
    paid = clamp_paid(paid, grand_total)
    if paid <= ZERO:
        return STATUS_PARTIAL, ZERO
    return derive_payment_status(paid, grand_total), paid
