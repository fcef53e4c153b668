# Overview: Pytest coverage for the in-memory invoice draft (lines, header, payment selection).

from decimal import Decimal
from types import SimpleNamespace

import pytest

from shopledger.services.draft_builder import (
    LINE_CATALOG,
    LINE_MANUAL,
    InvoiceDraftBuilder,
    seed_price,
)
from shopledger.services.pricing import TaxConfig
from shopledger.validation import ValidationError


def _product(**overrides):
    data = dict(id=1, name="Cotton Kurta", item_code="K-01", price=Decimal("100"), offer_price=None)
    data.update(overrides)
    return SimpleNamespace(**data)


def _variant(**overrides):
    data = dict(id=7, product_id=1, size="M", color="Blue", price=None)
    data.update(overrides)
    return SimpleNamespace(**data)


class TestSeedPrice:
    def test_list_price(self):
        assert seed_price(_product()) == Decimal("100")

    def test_lower_offer_price_wins(self):
        assert seed_price(_product(offer_price=Decimal("80"))) == Decimal("80")

    def test_higher_offer_price_ignored(self):
        assert seed_price(_product(offer_price=Decimal("120"))) == Decimal("100")

    def test_variant_override(self):
        product = _product(offer_price=Decimal("80"))
        assert seed_price(product, _variant(price=Decimal("95"))) == Decimal("95")

    def test_no_price_at_all(self):
        assert seed_price(_product(price=None)) == Decimal("0")


class TestLines:
    def test_catalog_line_seeds_from_product(self, draft):
        index = draft.add_catalog_line(_product())
        line = draft.lines[index]
        assert line.line_type == LINE_CATALOG
        assert line.product_id == 1
        assert line.item_code == "K-01"
        assert line.quantity == Decimal("1")
        assert draft.totals.grand_total == Decimal("100.00")

    def test_variant_selection_updates_description_and_price(self, draft):
        index = draft.add_catalog_line(_product(), _variant(price=Decimal("120")))
        line = draft.lines[index]
        assert line.variant_id == 7
        assert line.description == "Cotton Kurta (Blue M)"
        assert line.unit_price == Decimal("120")

    def test_foreign_variant_rejected(self, draft):
        with pytest.raises(ValidationError):
            draft.add_catalog_line(_product(), _variant(product_id=99))

    def test_reselecting_product_clears_variant(self, draft):
        index = draft.add_catalog_line(_product(), _variant())
        draft.select_product(index, _product(id=2, name="Silk Saree", price=Decimal("900")))
        line = draft.lines[index]
        assert line.product_id == 2
        assert line.variant_id is None
        assert line.unit_price == Decimal("900")

    def test_edit_recomputes_totals(self, draft):
        index = draft.add_manual_line("Alteration", "50", 1)
        draft.update_line(index, "quantity", "3")
        assert draft.totals.subtotal == Decimal("150.00")
        draft.update_line(index, "discount_percent", "10")
        assert draft.totals.total_discount == Decimal("15.00")
        assert draft.totals.grand_total == Decimal("135.00")

    def test_negative_quantity_clamps_to_zero(self, draft):
        index = draft.add_manual_line("Alteration", "50", 2)
        draft.update_line(index, "quantity", "-4")
        assert draft.lines[index].quantity == Decimal("0")
        assert draft.totals.grand_total == Decimal("0.00")

    def test_negative_price_rejected(self, draft):
        index = draft.add_manual_line("Alteration", "50", 1)
        with pytest.raises(ValidationError):
            draft.update_line(index, "unit_price", "-1")

    def test_unknown_field_rejected(self, draft):
        index = draft.add_manual_line("Alteration", "50", 1)
        with pytest.raises(ValidationError):
            draft.update_line(index, "line_total", "1")

    def test_remove_line(self, draft):
        draft.add_manual_line("A", "10", 1)
        draft.add_manual_line("B", "20", 1)
        draft.remove_line(0)
        assert [line.description for line in draft.lines] == ["B"]
        assert draft.totals.grand_total == Decimal("20.00")

    def test_missing_line_index(self, draft):
        with pytest.raises(ValidationError):
            draft.remove_line(3)

    def test_lines_are_replaced_not_mutated(self, draft):
        index = draft.add_manual_line("A", "10", 1)
        before = draft.lines[index]
        draft.update_line(index, "quantity", "5")
        assert before.quantity == Decimal("1")
        assert draft.lines[index] is not before


class TestHeader:
    def test_label_follows_customer_name(self):
        builder = InvoiceDraftBuilder()
        assert builder.label == "New Invoice"
        builder.set_customer(name="  Meera  ")
        assert builder.label == "Meera"

    def test_tax_change_recomputes(self, draft):
        draft.add_manual_line("Shirt", "100", 3)
        draft.set_tax("CGST_SGST", "18")
        assert draft.totals.cgst == Decimal("27.00")
        assert draft.totals.grand_total == Decimal("354.00")

    def test_payment_method_validated(self, draft):
        draft.set_payment_method("UPI")
        assert draft.payment_method == "upi"
        with pytest.raises(ValidationError):
            draft.set_payment_method("cheque")


class TestPaymentSelection:
    def test_paid_tracks_grand_total(self, draft):
        draft.add_manual_line("Shirt", "100", 1)
        draft.select_payment_status("paid")
        assert draft.paid_amount == Decimal("100.00")
        draft.add_manual_line("Belt", "50", 1)
        assert draft.payment_status == "paid"
        assert draft.paid_amount == Decimal("150.00")

    def test_partial_snaps_to_paid_at_grand_total(self, draft):
        draft.add_manual_line("Shirt", "300", 1)
        draft.select_payment_status("partial", "300")
        assert draft.payment_status == "paid"

    def test_partial_clamped_when_lines_removed(self, draft):
        draft.add_manual_line("Shirt", "300", 1)
        draft.add_manual_line("Belt", "100", 1)
        draft.select_payment_status("partial", "250")
        assert draft.payment_status == "partial"
        draft.remove_line(0)
        assert draft.payment_status == "paid"
        assert draft.paid_amount == Decimal("100.00")

    def test_unpaid_resets_amount(self, draft):
        draft.add_manual_line("Shirt", "300", 1)
        draft.select_payment_status("partial", "100")
        draft.select_payment_status("unpaid")
        assert draft.paid_amount == Decimal("0")


class TestSerialization:
    def test_restored_draft_has_same_totals(self):
        builder = InvoiceDraftBuilder(tax=TaxConfig.build("IGST", "12"))
        builder.set_customer(name="Ravi", phone="99", reference_by="walk-in")
        builder.add_catalog_line(_product(offer_price=Decimal("90")), _variant())
        builder.add_manual_line("Alteration", "40", 2)
        builder.update_line(1, "discount_amount", "5")
        builder.select_payment_status("partial", "50")

        restored = InvoiceDraftBuilder.from_dict(builder.to_dict())
        assert restored.totals == builder.totals
        assert restored.lines == builder.lines
        assert restored.payment_status == "partial"
        assert restored.paid_amount == Decimal("50")
        assert restored.lines[1].line_type == LINE_MANUAL

    def test_unknown_line_type_rejected(self):
        with pytest.raises(ValidationError):
            InvoiceDraftBuilder.from_dict({"lines": [{"line_type": "bundle"}]})
