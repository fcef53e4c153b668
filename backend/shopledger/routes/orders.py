from flask import Blueprint, current_app, jsonify, request

from ..services import order_service
from ..validation import ConflictError, ValidationError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def record_order_route():
    """
    Storefront hand-off. Does not touch stock.

    {"order_number": "WEB-1001", "created_at": "2026-03-01T10:15:00Z",
     "lines": [{"product_id": 1, "variant_id": 2, "quantity": 1, "unit_price": "499"}]}
    """
    data = request.get_json(silent=True) or {}
    try:
        order = order_service.record_online_order(
            data.get("lines"),
            created_at=data.get("created_at"),
            order_number=data.get("order_number"),
        )
        return jsonify(order.to_dict()), 201
    except ConflictError as exc:
        return jsonify({"error": str(exc)}), 409
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to record online order")
        return jsonify({"error": "Internal server error"}), 500
