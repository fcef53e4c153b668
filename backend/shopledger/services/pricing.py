# Overview: Pure invoice arithmetic (line discounts, subtotal, GST split, grand total).

"""
Invoice pricing

All money is Decimal rounded half-up to 0.01 at the point it is reported.
Nothing in this module touches the database; callers pass plain line
objects (anything with quantity / unit_price / discount_percent /
discount_amount attributes) and get a frozen Totals back.

DISCOUNT PRECEDENCE:
- discount_amount > 0 wins (fixed amount off each unit)
- otherwise unit_price * discount_percent / 100 per unit
- the per-unit discount never exceeds unit_price, so no line goes negative
- line_discount = per-unit discount * quantity
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..validation import ValidationError, to_decimal


TAX_CGST_SGST = "CGST_SGST"
TAX_IGST = "IGST"
TAX_NONE = "NONE"

VALID_TAX_TYPES = (TAX_CGST_SGST, TAX_IGST, TAX_NONE)

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def coerce_quantity(value) -> Decimal:
    """Quantities are numbers >= 0; negative input clamps to 0."""
    qty = to_decimal(value, "quantity")
    return qty if qty > ZERO else ZERO


@dataclass(frozen=True)
class TaxConfig:
    tax_type: str = TAX_NONE
    tax_percent: Decimal = ZERO

    @classmethod
    def build(cls, tax_type: str | None, tax_percent=None) -> "TaxConfig":
        tax_type = (tax_type or TAX_NONE).strip().upper()
        if tax_type not in VALID_TAX_TYPES:
            raise ValidationError(f"tax_type must be one of {', '.join(VALID_TAX_TYPES)}")
        percent = to_decimal(tax_percent, "tax_percent")
        if percent < ZERO or percent > HUNDRED:
            raise ValidationError("tax_percent must be between 0 and 100")
        return cls(tax_type=tax_type, tax_percent=percent)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    total_discount: Decimal
    taxable_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    grand_total: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "taxable_amount": self.taxable_amount,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "igst": self.igst,
            "grand_total": self.grand_total,
        }


def unit_discount(unit_price: Decimal, discount_percent: Decimal, discount_amount: Decimal) -> Decimal:
    if discount_amount and discount_amount > ZERO:
        per_unit = discount_amount
    elif discount_percent and discount_percent > ZERO:
        per_unit = unit_price * discount_percent / HUNDRED
    else:
        return ZERO
    return max(min(per_unit, unit_price), ZERO)


def line_discount(line) -> Decimal:
    return unit_discount(line.unit_price, line.discount_percent, line.discount_amount) * line.quantity


def line_total(line) -> Decimal:
    return money(line.quantity * line.unit_price - line_discount(line))


def compute_totals(lines: Iterable, tax: TaxConfig) -> Totals:
    """
    subtotal       = sum(quantity * unit_price)          (pre-discount)
    total_discount = sum(line discount)
    taxable_amount = subtotal - total_discount
    CGST_SGST: cgst = sgst = taxable * percent / 200
    IGST:      igst = taxable * percent / 100
    grand_total    = taxable + cgst + sgst + igst
    """
    gross = ZERO
    discount = ZERO
    for line in lines:
        gross += line.quantity * line.unit_price
        discount += line_discount(line)

    subtotal = money(gross)
    total_discount = money(discount)
    taxable = subtotal - total_discount

    cgst = sgst = igst = money(ZERO)
    if tax.tax_type == TAX_CGST_SGST:
        cgst = money(taxable * tax.tax_percent / (HUNDRED * 2))
        sgst = cgst
    elif tax.tax_type == TAX_IGST:
        igst = money(taxable * tax.tax_percent / HUNDRED)

    return Totals(
        subtotal=subtotal,
        total_discount=total_discount,
        taxable_amount=taxable,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
        grand_total=taxable + cgst + sgst + igst,
    )
