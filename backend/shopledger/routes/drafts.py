# backend/shopledger/routes/drafts.py
"""
Invoice draft API (one draft per open tab)

Every edit returns the full draft including recomputed totals, so the
client never computes money itself.

Commit error mapping:
    ValidationError        400
    StockNotFoundError     404
    InsufficientStockError 409  (details: target, available, requested, line_index)
    PersistenceFailure     502  (error_kind=persistence_failure, invoice_id may be set)
    DeductionFailure       500  (error_kind=deduction_failure, invoice exists)
    CommitBlocked          409  (an earlier commit left invoice_id behind; reset first)
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import draft_service
from ..services.draft_service import CommitBlocked, DraftError, DraftNotFound
from ..services.invoice_service import DeductionFailure, PersistenceFailure
from ..services.stock_service import InsufficientStockError, StockNotFoundError
from ..validation import ValidationError


drafts_bp = Blueprint("drafts", __name__, url_prefix="/api/drafts")


def _session_payload(key: str) -> dict:
    session = draft_service.get_session(key)
    data = session.to_dict()
    data["draft"] = session.payload
    return data


def _draft_error(exc: Exception):
    if isinstance(exc, DraftNotFound):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, DraftError):
        return jsonify({"error": str(exc)}), 409
    return jsonify({"error": str(exc)}), 400


@drafts_bp.get("")
def list_drafts_route():
    try:
        draft_service.ensure_session()
        sessions = draft_service.list_sessions()
        return jsonify({"items": [s.to_dict() for s in sessions], "count": len(sessions)}), 200
    except Exception:
        current_app.logger.exception("Failed to list drafts")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("")
def open_draft_route():
    try:
        session = draft_service.open_session()
        return jsonify(_session_payload(session.session_key)), 201
    except Exception:
        current_app.logger.exception("Failed to open draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.get("/<key>")
def get_draft_route(key: str):
    try:
        return jsonify(_session_payload(key)), 200
    except DraftNotFound as exc:
        return jsonify({"error": str(exc)}), 404


@drafts_bp.patch("/<key>")
def update_draft_route(key: str):
    """
    Request body (all optional):
    {
        "customer_id": 3, "customer_name": "Asha", "customer_phone": "98...",
        "reference_by": "walk-in",
        "tax_type": "CGST_SGST" | "IGST" | "NONE", "tax_percent": "18",
        "payment_status": "unpaid" | "partial" | "paid", "paid_amount": "100.00",
        "payment_method": "cash" | "upi" | "card"
    }
    """
    try:
        draft_service.update_header(key, request.get_json(silent=True) or {})
        return jsonify(_session_payload(key)), 200
    except (DraftError, ValidationError) as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.delete("/<key>")
def close_draft_route(key: str):
    try:
        draft_service.close_session(key)
        return jsonify({"closed": key}), 200
    except DraftError as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to close draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("/<key>/lines")
def add_line_route(key: str):
    """
    Catalog line: {"line_type": "catalog", "product_id": 1, "variant_id": 4, "quantity": 2}
    Manual line:  {"line_type": "manual", "description": "Alteration", "unit_price": "150"}
    """
    try:
        draft_service.add_line(key, request.get_json(silent=True) or {})
        return jsonify(_session_payload(key)), 201
    except (DraftError, ValidationError) as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to add draft line")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.patch("/<key>/lines/<int:index>")
def update_line_route(key: str, index: int):
    try:
        draft_service.update_line(key, index, request.get_json(silent=True) or {})
        return jsonify(_session_payload(key)), 200
    except (DraftError, ValidationError) as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to update draft line")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.delete("/<key>/lines/<int:index>")
def remove_line_route(key: str, index: int):
    try:
        draft_service.remove_line(key, index)
        return jsonify(_session_payload(key)), 200
    except (DraftError, ValidationError) as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to remove draft line")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("/<key>/reset")
def reset_draft_route(key: str):
    """Discard the draft and clear any failed-commit marker."""
    try:
        draft_service.reset_session(key)
        return jsonify(_session_payload(key)), 200
    except DraftError as exc:
        return _draft_error(exc)
    except Exception:
        current_app.logger.exception("Failed to reset draft")
        return jsonify({"error": "Internal server error"}), 500


@drafts_bp.post("/<key>/commit")
def commit_draft_route(key: str):
    try:
        invoice = draft_service.commit_session(key)
        return jsonify({"invoice": invoice.to_dict(), "session": _session_payload(key)}), 201
    except DraftNotFound as exc:
        return jsonify({"error": str(exc)}), 404
    except CommitBlocked as exc:
        return jsonify({"error": str(exc), "error_kind": "commit_blocked", "invoice_id": exc.invoice_id}), 409
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except StockNotFoundError as exc:
        return jsonify({"error": str(exc), "details": exc.details}), 404
    except InsufficientStockError as exc:
        return jsonify({"error": str(exc), "error_kind": "insufficient_stock", "details": exc.details}), 409
    except PersistenceFailure as exc:
        return jsonify({
            "error": str(exc),
            "error_kind": exc.error_kind,
            "invoice_id": exc.invoice_id,
            "details": exc.details,
        }), 502
    except DeductionFailure as exc:
        return jsonify({
            "error": str(exc),
            "error_kind": exc.error_kind,
            "invoice_id": exc.invoice_id,
            "details": exc.details,
        }), 500
    except Exception:
        current_app.logger.exception("Failed to commit draft")
        return jsonify({"error": "Internal server error"}), 500
