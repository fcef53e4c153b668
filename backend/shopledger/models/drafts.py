from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class DraftSession(db.Model):
    """
    Key-value store for invoice drafts, one row per open tab.

    payload holds InvoiceDraftBuilder.to_dict(); nothing else reads it.
    """
    __tablename__ = "draft_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_key = db.Column(db.String(64), nullable=False, unique=True)
    label = db.Column(db.String(255), nullable=False, default="New Invoice")
    payload = db.Column(db.JSON, nullable=False, default=dict)
    # invoice written by a commit that failed part-way; blocks a blind retry
    failed_invoice_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "session_key": self.session_key,
            "label": self.label,
            "failed_invoice_id": self.failed_invoice_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
