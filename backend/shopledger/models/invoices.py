from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Offline (in-person) sale document.

    Header fields are written once at commit. Afterwards only paid_amount
    and payment_status change, and both are recomputed from the
    invoice_payments ledger on every write (see payment_service).

    COMMIT STATES:
    - PERSISTING: header written, lines being written
    - DEDUCTING: header + all lines written, stock being deducted
    - COMMITTED: lines written and every catalog line deducted
    - FAILED: a write or a deduction failed; failure_reason says which.
      Never rolled back automatically; use invoice_service.repair_invoice_stock.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_status_created", "payment_status", "created_at"),
        db.CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, timestamp-derived number (e.g., "INV-1730000000000-3F2A")
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    # Customer by value; customer_id only when picked from the registry
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=False, index=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    reference_by = db.Column(db.String(255), nullable=True)

    # Totals (computed by pricing.compute_totals at commit)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    taxable_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_type = db.Column(db.String(16), nullable=False, default="NONE")  # CGST_SGST, IGST, NONE
    tax_percent = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    cgst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    sgst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    igst = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Materialized view over invoice_payments
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)  # unpaid, partial, paid

    # Commit saga tracking
    line_count = db.Column(db.Integer, nullable=False, default=0)
    commit_state = db.Column(db.String(16), nullable=False, default="PERSISTING", index=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))

    @property
    def remaining_amount(self):
        return self.grand_total - self.paid_amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "reference_by": self.reference_by,
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "taxable_amount": self.taxable_amount,
            "tax_type": self.tax_type,
            "tax_percent": self.tax_percent,
            "cgst": self.cgst,
            "sgst": self.sgst,
            "igst": self.igst,
            "grand_total": self.grand_total,
            "paid_amount": self.paid_amount,
            "remaining_amount": self.remaining_amount,
            "payment_status": self.payment_status,
            "line_count": self.line_count,
            "commit_state": self.commit_state,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceLine(db.Model):
    """Committed line item. catalog lines reference a product (and maybe a variant)."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_no", name="uq_invoice_lines_invoice_line_no"),
        db.Index("ix_invoice_lines_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    line_type = db.Column(db.String(16), nullable=False)  # catalog, manual
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)
    item_code = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=False, default="")

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_percent = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("lines", lazy=True, order_by="InvoiceLine.line_no"))
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_no": self.line_no,
            "line_type": self.line_type,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "discount_percent": self.discount_percent,
            "discount_amount": self.discount_amount,
            "line_discount": self.line_discount,
            "line_total": self.line_total,
            "created_at": to_utc_z(self.created_at),
        }


class InvoicePayment(db.Model):
    """
    Append-only payment ledger for an invoice.

    ENTRY TYPES:
    - PAYMENT: money received (amount > 0, method cash/upi/card)
    - DISCOUNT: settlement discount granted at payment time (amount > 0, reason required)
    - ADJUSTMENT: signed correction written by an explicit status override

    Invoice.paid_amount is clamp(SUM(amount), 0, grand_total).
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.Index("ix_invoice_payments_invoice_created", "invoice_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, default="PAYMENT", index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    method = db.Column(db.String(16), nullable=True)  # cash, upi, card
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="InvoicePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "entry_type": self.entry_type,
            "amount": self.amount,
            "method": self.method,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceStatusAudit(db.Model):
    """
    Audit trail for moving an invoice away from 'paid'.

    Written and committed before the status change itself is applied.
    """
    __tablename__ = "invoice_status_audits"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=False)
    old_status = db.Column(db.String(16), nullable=False)
    new_status = db.Column(db.String(16), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("status_audits", lazy=True, order_by="InvoiceStatusAudit.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "reason": self.reason,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "created_at": to_utc_z(self.created_at),
        }
