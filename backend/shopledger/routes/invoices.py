# backend/shopledger/routes/invoices.py
"""
Committed invoices: archive, detail, payments, status override, stock repair.
"""

from flask import Blueprint, current_app, jsonify, request

from ..services import invoice_service, payment_service
from ..services.invoice_service import CommitError
from ..services.payment_service import (
    InvoiceNotFound,
    PaymentAmountInvalid,
    PaymentError,
    ReasonRequired,
)
from ..validation import ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    """
    Query params: search, status, customer, min_amount, max_amount,
    start, end (YYYY-MM-DD, inclusive), limit
    """
    args = request.args
    try:
        invoices, summary = invoice_service.list_invoices(
            search=args.get("search"),
            status=args.get("status"),
            customer=args.get("customer"),
            min_amount=args.get("min_amount"),
            max_amount=args.get("max_amount"),
            start=args.get("start"),
            end=args.get("end"),
            limit=args.get("limit", type=int),
        )
        return jsonify({"items": [i.to_dict() for i in invoices], "summary": summary}), 200
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        return jsonify(invoice_service.get_invoice_detail(invoice_id)), 200
    except InvoiceNotFound as exc:
        return jsonify({"error": str(exc)}), 404


@invoices_bp.post("/<int:invoice_id>/payments")
def record_payment_route(invoice_id: int):
    """
    Request body:
    {
        "amount": "200.00",
        "method": "cash" | "upi" | "card",
        "discount_amount": "20.00",      (optional)
        "discount_reason": "loyal customer"   (required with a discount)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        invoice = payment_service.record_payment(
            invoice_id,
            amount=data.get("amount"),
            method=data.get("method") or "cash",
            discount_amount=data.get("discount_amount"),
            discount_reason=data.get("discount_reason"),
        )
        return jsonify({
            "invoice": invoice.to_dict(),
            "summary": payment_service.get_payment_summary(invoice_id),
        }), 201
    except InvoiceNotFound as exc:
        return jsonify({"error": str(exc)}), 404
    except PaymentAmountInvalid as exc:
        return jsonify({"error": str(exc), "details": exc.details}), 400
    except (PaymentError, ValidationError) as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/status")
def change_status_route(invoice_id: int):
    """
    Request body:
    {"status": "unpaid" | "partial" | "paid", "reason": "...", "amount": "150.00"}

    Moving away from "paid" requires a reason (audited before the change).
    """
    data = request.get_json(silent=True) or {}
    try:
        invoice = payment_service.change_status(
            invoice_id,
            data.get("status"),
            reason=data.get("reason"),
            amount=data.get("amount"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except InvoiceNotFound as exc:
        return jsonify({"error": str(exc)}), 404
    except ReasonRequired as exc:
        return jsonify({"error": str(exc), "error_kind": "reason_required"}), 400
    except (PaymentError, ValidationError) as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to change invoice status")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/repair-stock")
def repair_stock_route(invoice_id: int):
    try:
        return jsonify(invoice_service.repair_invoice_stock(invoice_id)), 200
    except InvoiceNotFound as exc:
        return jsonify({"error": str(exc)}), 404
    except CommitError as exc:
        return jsonify({
            "error": str(exc),
            "error_kind": exc.error_kind,
            "invoice_id": exc.invoice_id,
            "details": exc.details,
        }), 409
    except Exception:
        current_app.logger.exception("Failed to repair invoice stock")
        return jsonify({"error": "Internal server error"}), 500
