from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    One row per successful stock deduction.

    Written in the same DB transaction as the guarded decrement, so the
    presence of a row for an invoice line means its stock is deducted.
    UniqueConstraint on invoice_line_id makes repair idempotent.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("invoice_line_id", name="uq_stock_movements_invoice_line"),
        db.Index("ix_stock_movements_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    target_type = db.Column(db.String(16), nullable=False)  # variant, product
    target_id = db.Column(db.Integer, nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    invoice_line_id = db.Column(db.Integer, db.ForeignKey("invoice_lines.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "quantity_delta": self.quantity_delta,
            "invoice_id": self.invoice_id,
            "invoice_line_id": self.invoice_line_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class LedgerEvent(db.Model):
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_category_occurred", "event_category", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g., invoice.committed, stock.deducted
    event_category = db.Column(db.String(32), nullable=False, index=True)  # invoices, stock, payments, orders

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(64), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Optional structured metadata (keep small; do not denormalize domain state)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "invoice_id": self.invoice_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "note": self.note,
            "payload": self.payload,
        }
