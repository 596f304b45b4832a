# Overview: Flask API routes for supplier purchases; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_user
from ..errors import CoreError, ValidationError
from ..inputs import PaymentInput, PurchaseLineInput
from ..services import purchase_service
from . import json_body, json_list


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("/")
@require_user
def create_purchase_route():
    """
    Create a purchase order.

    Body: supplier_id, items [{product_id, quantity, cost}],
    payments? [{method, amount, reference?}], invoice_number?, note?
    """
    try:
        data = json_body()
        if data.get("supplier_id") is None:
            raise ValidationError("supplier_id required")
        items = [PurchaseLineInput.from_dict(i) for i in json_list(data, "items")]
        payments = [PaymentInput.from_dict(p) for p in json_list(data, "payments", required=False)]

        purchase = purchase_service.create_purchase(
            data["supplier_id"],
            items,
            payments=payments,
            invoice_number=data.get("invoice_number"),
            note=data.get("note"),
            user_id=g.user_id,
        )
        return jsonify({"purchase": purchase.to_dict(include_items=True)}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
@require_user
def get_purchase_route(purchase_id: int):
    try:
        purchase = purchase_service.get_purchase(purchase_id)
        return jsonify({"purchase": purchase.to_dict(include_items=True)}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@purchases_bp.patch("/<int:purchase_id>")
@require_user
def update_purchase_route(purchase_id: int):
    try:
        data = json_body()
        purchase = purchase_service.update_purchase(
            purchase_id,
            supplier_id=data.get("supplier_id"),
            invoice_number=data.get("invoice_number"),
        )
        return jsonify({"purchase": purchase.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/items")
@require_user
def add_item_route(purchase_id: int):
    try:
        line = PurchaseLineInput.from_dict(json_body())
        item = purchase_service.add_item(purchase_id, line)
        return jsonify({"item": item.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add purchase item")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.patch("/<int:purchase_id>/items/<int:item_id>")
@require_user
def update_item_route(purchase_id: int, item_id: int):
    """Body: quantity?, cost?"""
    try:
        data = json_body()
        item = purchase_service.update_item(
            purchase_id, item_id, quantity=data.get("quantity"), cost=data.get("cost")
        )
        return jsonify({"item": item.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update purchase item")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<int:purchase_id>/items/<int:item_id>")
@require_user
def remove_item_route(purchase_id: int, item_id: int):
    try:
        purchase = purchase_service.remove_item(purchase_id, item_id)
        return jsonify({"purchase": purchase.to_dict(include_items=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove purchase item")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/receive")
@require_user
def receive_route(purchase_id: int):
    """Receive the goods: stock in, cost re-averaged, supplier debt assumed."""
    try:
        purchase = purchase_service.receive(purchase_id, user_id=g.user_id)
        return jsonify({"purchase": purchase.to_dict(include_items=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/payments")
@require_user
def add_payment_route(purchase_id: int):
    try:
        payment = PaymentInput.from_dict(json_body())
        record = purchase_service.add_payment(purchase_id, payment, user_id=g.user_id)
        return jsonify({"payment": record.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add purchase payment")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<int:purchase_id>/payments/<int:payment_id>")
@require_user
def remove_payment_route(purchase_id: int, payment_id: int):
    try:
        purchase = purchase_service.remove_payment(purchase_id, payment_id, user_id=g.user_id)
        return jsonify({"purchase": purchase.to_dict(include_items=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove purchase payment")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_user
def cancel_route(purchase_id: int):
    """Body: return_to_cash? (default false: paid amount becomes a credit note), reason?"""
    try:
        data = json_body()
        return_to_cash = data.get("return_to_cash", False)
        if not isinstance(return_to_cash, bool):
            raise ValidationError("return_to_cash must be true or false")

        purchase = purchase_service.cancel(
            purchase_id,
            return_to_cash=return_to_cash,
            user_id=g.user_id,
            reason=data.get("reason"),
        )
        return jsonify({"purchase": purchase.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel purchase")
        return jsonify({"error": "Internal server error"}), 500
