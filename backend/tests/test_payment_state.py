from decimal import Decimal

import pytest

from shopledger.services.payment_state import (
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_UNPAID,
    clamp_paid,
    derive_payment_status,
    reclamp,
    select_status,
)
from shopledger.validation import ValidationError


G = Decimal("500")


class TestDerivation:
    @pytest.mark.parametrize("paid,expected", [
        ("0", STATUS_UNPAID),
        ("0.01", STATUS_PARTIAL),
        ("499.99", STATUS_PARTIAL),
        ("500", STATUS_PAID),
        ("650", STATUS_PAID),
    ])
    def test_rule(self, paid, expected):
        assert derive_payment_status(Decimal(paid), G) == expected

    def test_clamp(self):
        assert clamp_paid(Decimal("-5"), G) == Decimal("0")
        assert clamp_paid(Decimal("650"), G) == G
        assert clamp_paid(Decimal("120"), G) == Decimal("120")


class TestSelectStatus:
    def test_paid_sets_grand_total(self):
        assert select_status("paid", G) == (STATUS_PAID, G)

    def test_unpaid_sets_zero(self):
        assert select_status("unpaid", G, current=Decimal("200")) == (STATUS_UNPAID, Decimal("0"))

    def test_partial_with_amount(self):
        assert select_status("partial", G, amount="200") == (STATUS_PARTIAL, Decimal("200"))

    def test_partial_amount_equal_to_total_snaps_to_paid(self):
        assert select_status("partial", G, amount="500") == (STATUS_PAID, G)

    def test_partial_amount_clamped(self):
        assert select_status("partial", G, amount="900") == (STATUS_PAID, G)
        assert select_status("partial", G, amount="-3") == (STATUS_UNPAID, Decimal("0"))

    def test_partial_without_amount_keeps_current(self):
        assert select_status("partial", G, current=Decimal("120")) == (STATUS_PARTIAL, Decimal("120"))
        assert select_status("partial", G, current=G) == (STATUS_PARTIAL, Decimal("0"))

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            select_status("settled", G)


class TestReclamp:
    def test_paid_tracks_new_total(self):
        assert reclamp(STATUS_PAID, G, Decimal("800")) == (STATUS_PAID, Decimal("800"))

    def test_partial_clamped_when_total_drops(self):
        assert reclamp(STATUS_PARTIAL, Decimal("300"), Decimal("250")) == (STATUS_PAID, Decimal("250"))

    def test_unpaid_stays_zero(self):
        assert reclamp(STATUS_UNPAID, Decimal("0"), Decimal("250")) == (STATUS_UNPAID, Decimal("0"))
