# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import CoreError, ValidationError
from ..decorators import require_user
from ..money import money_str
from ..services import inventory_service
from . import json_body


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/movements")
@require_user
def register_movement_route():
    """
    Record a stock movement.

    Body: product_id, type, quantity (positive; the type gives the sign),
    reason, optional reference_type/reference_id.
    """
    try:
        data = json_body()
        for key in ("product_id", "type", "quantity"):
            if data.get(key) is None:
                raise ValidationError(f"{key} required")

        movement = inventory_service.register_movement(
            product_id=data["product_id"],
            movement_type=data["type"],
            quantity=data["quantity"],
            reason=data.get("reason"),
            user_id=g.user_id,
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register inventory movement")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjustments")
@require_user
def register_adjustment_route():
    """Physical count. Body: product_id, real_quantity, reason."""
    try:
        data = json_body()
        if data.get("product_id") is None or data.get("real_quantity") is None:
            raise ValidationError("product_id and real_quantity required")

        movement = inventory_service.register_adjustment(
            product_id=data["product_id"],
            real_quantity=data["real_quantity"],
            reason=data.get("reason"),
            user_id=g.user_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/stock")
@require_user
def get_stock_route(product_id: int):
    try:
        return jsonify(inventory_service.get_stock(product_id)), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/products/<int:product_id>/kardex")
@require_user
def get_kardex_route(product_id: int):
    """Movement history, newest first. Query: limit."""
    try:
        limit = request.args.get("limit", type=int)
        movements = inventory_service.get_kardex(product_id, limit=limit)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/valuation")
@require_user
def get_valuation_route():
    valuation = inventory_service.get_inventory_valuation()
    return jsonify({
        "total_value": money_str(valuation["total_value"]),
        "product_count": valuation["product_count"],
    }), 200


@inventory_bp.get("/low-stock")
@require_user
def get_low_stock_route():
    products = inventory_service.get_low_stock_alerts()
    return jsonify({"products": [p.to_dict() for p in products]}), 200
