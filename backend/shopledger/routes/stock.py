from flask import Blueprint, jsonify

from ..services import stock_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/variants/<int:variant_id>")
def variant_stock(variant_id: int):
    try:
        available = stock_service.available_for_variant(variant_id)
    except stock_service.StockNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    return jsonify({"target_type": "variant", "target_id": variant_id, "available": available}), 200


@stock_bp.get("/products/<int:product_id>")
def product_stock(product_id: int):
    try:
        available = stock_service.available_for_product(product_id)
    except stock_service.StockNotFoundError as exc:
        return jsonify({"error": str(exc)}), 404
    return jsonify({
        "target_type": "product",
        "target_id": product_id,
        "available": available,
        "has_variants": stock_service.variant_count(product_id) > 0,
    }), 200
