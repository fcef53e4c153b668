# Overview: Pytest coverage for invoice arithmetic.

from decimal import Decimal

import pytest

from shopledger.services.draft_builder import DraftLine
from shopledger.services.pricing import (
    TAX_CGST_SGST,
    TAX_IGST,
    TAX_NONE,
    TaxConfig,
    compute_totals,
    line_discount,
    line_total,
)
from shopledger.validation import ValidationError


def _line(qty, price, pct="0", amount="0"):
    return DraftLine(
        line_type="manual",
        quantity=Decimal(qty),
        unit_price=Decimal(price),
        discount_percent=Decimal(pct),
        discount_amount=Decimal(amount),
    )


class TestLineMath:
    def test_percent_discount_scales_with_quantity(self):
        line = _line("2", "50", pct="10")
        assert line_discount(line) == Decimal("10")
        assert line_total(line) == Decimal("90.00")

    def test_fixed_amount_wins_over_percent(self):
        line = _line("3", "100", pct="50", amount="5")
        assert line_discount(line) == Decimal("15")
        assert line_total(line) == Decimal("285.00")

    def test_zero_amount_falls_back_to_percent(self):
        line = _line("1", "200", pct="25", amount="0")
        assert line_total(line) == Decimal("150.00")

    def test_amount_above_unit_price_capped_at_price(self):
        line = _line("1", "100", amount="250")
        assert line_discount(line) == Decimal("100")
        assert line_total(line) == Decimal("0.00")

    def test_cap_applies_per_unit(self):
        line = _line("3", "40", amount="55")
        assert line_discount(line) == Decimal("120")
        assert line_total(line) == Decimal("0.00")

    def test_overdiscounted_line_never_drags_grand_total_negative(self):
        lines = [_line("1", "100", amount="250"), _line("1", "60")]
        totals = compute_totals(lines, TaxConfig.build(TAX_NONE, "0"))
        assert totals.grand_total == Decimal("60.00")


class TestComputeTotals:
    def test_no_tax(self):
        totals = compute_totals([_line("3", "100")], TaxConfig(TAX_NONE, Decimal("0")))
        assert totals.subtotal == Decimal("300.00")
        assert totals.total_discount == Decimal("0.00")
        assert totals.taxable_amount == Decimal("300.00")
        assert totals.grand_total == Decimal("300.00")

    def test_cgst_sgst_splits_percent_evenly(self):
        totals = compute_totals([_line("3", "100")], TaxConfig.build(TAX_CGST_SGST, "18"))
        assert totals.cgst == Decimal("27.00")
        assert totals.sgst == Decimal("27.00")
        assert totals.igst == Decimal("0.00")
        assert totals.grand_total == Decimal("354.00")

    def test_igst_applies_full_percent_once(self):
        totals = compute_totals([_line("3", "100")], TaxConfig.build(TAX_IGST, "18"))
        assert totals.igst == Decimal("54.00")
        assert totals.cgst == totals.sgst == Decimal("0.00")
        assert totals.grand_total == Decimal("354.00")

    def test_subtotal_is_pre_discount(self):
        totals = compute_totals(
            [_line("2", "50", pct="10"), _line("1", "30")],
            TaxConfig(TAX_NONE, Decimal("0")),
        )
        assert totals.subtotal == Decimal("130.00")
        assert totals.total_discount == Decimal("10.00")
        assert totals.taxable_amount == Decimal("120.00")

    def test_grand_total_identity_holds_with_rounding(self):
        lines = [_line("3", "33.33", pct="7"), _line("1.5", "19.99", amount="1.25")]
        totals = compute_totals(lines, TaxConfig.build(TAX_CGST_SGST, "12"))
        assert totals.taxable_amount == totals.subtotal - totals.total_discount
        assert totals.grand_total == totals.taxable_amount + totals.cgst + totals.sgst + totals.igst

    def test_empty_lines(self):
        totals = compute_totals([], TaxConfig.build(TAX_CGST_SGST, "18"))
        assert totals.grand_total == Decimal("0.00")


class TestTaxConfig:
    def test_rejects_unknown_tax_type(self):
        with pytest.raises(ValidationError):
            TaxConfig.build("VAT", "10")

    def test_rejects_out_of_range_percent(self):
        with pytest.raises(ValidationError):
            TaxConfig.build(TAX_IGST, "120")

    def test_lowercase_type_accepted(self):
        assert TaxConfig.build("igst", "5").tax_type == TAX_IGST
