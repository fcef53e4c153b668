# Overview: Pytest coverage for the invoice payment ledger and explicit status changes.

from decimal import Decimal

import pytest

from shopledger.models import InvoicePayment, InvoiceStatusAudit
from shopledger.services import payment_service
from shopledger.services.invoice_service import commit_draft
from shopledger.services.payment_service import (
    InvoiceNotFound,
    PaymentAmountInvalid,
    ReasonRequired,
)
from shopledger.validation import ValidationError


@pytest.fixture
def invoice_500(draft, db_session):
    """Committed, unpaid invoice with grand_total 500."""
    draft.add_manual_line("Wedding sherwani alteration", "500", 1)
    return commit_draft(draft)


class TestRecordPayment:
    def test_partial_then_paid(self, invoice_500):
        invoice = payment_service.record_payment(invoice_500.id, "200")
        assert invoice.payment_status == "partial"
        assert invoice.paid_amount == Decimal("200")

        invoice = payment_service.record_payment(invoice_500.id, "300", method="card")
        assert invoice.payment_status == "paid"
        assert invoice.paid_amount == Decimal("500")

    def test_paid_amount_is_ledger_sum(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "120.50")
        payment_service.record_payment(invoice_500.id, "79.50", method="upi")
        summary = payment_service.get_payment_summary(invoice_500.id)
        assert summary["ledger_total"] == Decimal("200.00")
        assert summary["paid_amount"] == Decimal("200.00")
        assert summary["remaining_amount"] == Decimal("300.00")
        assert db_session.query(InvoicePayment).filter_by(invoice_id=invoice_500.id).count() == 2

    def test_overpayment_rejected_before_write(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "450")
        with pytest.raises(PaymentAmountInvalid) as excinfo:
            payment_service.record_payment(invoice_500.id, "60")
        assert excinfo.value.details["remaining"] == "50.00"
        assert db_session.query(InvoicePayment).filter_by(invoice_id=invoice_500.id).count() == 1

    def test_fully_paid_invoice_takes_no_more(self, invoice_500):
        payment_service.record_payment(invoice_500.id, "500")
        with pytest.raises(PaymentAmountInvalid):
            payment_service.record_payment(invoice_500.id, "1")

    def test_discount_needs_reason(self, invoice_500):
        with pytest.raises(PaymentAmountInvalid):
            payment_service.record_payment(invoice_500.id, "400", discount_amount="100")

    def test_discount_counts_towards_paid(self, invoice_500, db_session):
        invoice = payment_service.record_payment(
            invoice_500.id, "450", discount_amount="50", discount_reason="festival offer",
        )
        assert invoice.payment_status == "paid"
        entries = db_session.query(InvoicePayment).filter_by(invoice_id=invoice_500.id).all()
        assert sorted(e.entry_type for e in entries) == ["DISCOUNT", "PAYMENT"]

    @pytest.mark.parametrize("amount", ["0", "-10", None])
    def test_non_positive_amount_rejected(self, invoice_500, amount):
        with pytest.raises(PaymentAmountInvalid):
            payment_service.record_payment(invoice_500.id, amount)

    def test_unknown_method(self, invoice_500):
        with pytest.raises(ValidationError):
            payment_service.record_payment(invoice_500.id, "100", method="cheque")

    def test_unknown_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            payment_service.record_payment(4242, "100")


class TestChangeStatus:
    def test_mark_paid_and_unpaid_with_reason(self, invoice_500, db_session):
        invoice = payment_service.change_status(invoice_500.id, "paid")
        assert invoice.paid_amount == Decimal("500")

        invoice = payment_service.change_status(invoice_500.id, "unpaid", reason="card charge reversed")
        assert invoice.payment_status == "unpaid"
        assert invoice.paid_amount == Decimal("0")
        assert payment_service.ledger_total(invoice_500.id) == Decimal("0")

        audits = payment_service.list_status_audits(invoice_500.id)
        assert [(a.old_status, a.new_status, a.reason) for a in audits] == [
            ("paid", "unpaid", "card charge reversed"),
        ]

    def test_leaving_paid_without_reason_rejected(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "500")
        with pytest.raises(ReasonRequired):
            payment_service.change_status(invoice_500.id, "partial", amount="100")
        with pytest.raises(ReasonRequired):
            payment_service.change_status(invoice_500.id, "unpaid", reason="   ")

        invoice = payment_service.get_invoice(invoice_500.id)
        assert invoice.payment_status == "paid"
        assert db_session.query(InvoiceStatusAudit).count() == 0

    def test_partial_override_writes_signed_adjustment(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "500")
        invoice = payment_service.change_status(
            invoice_500.id, "partial", reason="cash short", amount="350",
        )
        assert invoice.payment_status == "partial"
        assert invoice.paid_amount == Decimal("350")

        adjustment = (
            db_session.query(InvoicePayment)
            .filter_by(invoice_id=invoice_500.id, entry_type="ADJUSTMENT")
            .one()
        )
        assert adjustment.amount == Decimal("-150.00")

    def test_partial_without_amount_on_unpaid_invoice(self, invoice_500):
        with pytest.raises(PaymentAmountInvalid):
            payment_service.change_status(invoice_500.id, "partial")

    def test_unknown_status(self, invoice_500):
        with pytest.raises(ValidationError):
            payment_service.change_status(invoice_500.id, "refunded")

    def test_unpaid_to_paid_needs_no_reason(self, invoice_500, db_session):
        payment_service.change_status(invoice_500.id, "paid")
        assert db_session.query(InvoiceStatusAudit).count() == 0

    def test_partial_at_grand_total_stays_paid_without_audit(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "500")
        invoice = payment_service.change_status(invoice_500.id, "partial", amount="500")

        assert invoice.payment_status == "paid"
        assert invoice.paid_amount == Decimal("500")
        assert db_session.query(InvoiceStatusAudit).count() == 0
        assert db_session.query(InvoicePayment).filter_by(entry_type="ADJUSTMENT").count() == 0

    def test_audit_stores_resulting_status(self, invoice_500, db_session):
        payment_service.record_payment(invoice_500.id, "500")
        payment_service.change_status(invoice_500.id, "partial", amount="0.50", reason="coin short")

        audit = db_session.query(InvoiceStatusAudit).one()
        assert (audit.old_status, audit.new_status) == ("paid", "partial")
