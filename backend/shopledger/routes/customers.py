from flask import Blueprint, current_app, jsonify, request

from ..services import customer_service
from ..validation import ValidationError


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    customers = customer_service.list_customers(search=request.args.get("search"))
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.post("")
def create_customer_route():
    try:
        customer = customer_service.create_customer(request.get_json(silent=True))
        return jsonify(customer.to_dict()), 201
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 400
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500
