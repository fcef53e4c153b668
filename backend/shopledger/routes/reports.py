from flask import Blueprint, jsonify, request

from ..services import reconciliation_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales")
def sales_report():
    start = request.args.get("start")
    end = request.args.get("end")

    try:
        report = reconciliation_service.sales_report(start, end)
        return jsonify(report), 200
    except reconciliation_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/daily-orders")
def daily_orders_report():
    start = request.args.get("start")
    end = request.args.get("end")

    try:
        report = reconciliation_service.daily_orders_report(start, end)
        return jsonify(report), 200
    except reconciliation_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400
