# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_user
from ..errors import CoreError, ValidationError
from ..inputs import PaymentInput, ReturnLineInput, SaleLineInput
from ..services import sales_service
from . import json_body, json_list


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_detail(sale) -> dict:
    data = sale.to_dict(include_items=True)
    data["returns"] = [r.to_dict() for r in sale.returns]
    return data


@sales_bp.post("/")
@require_user
def create_sale_route():
    """
    Create a DRAFT sale.

    Body: items [{product_id, quantity, price?}], client_id?, note?
    """
    try:
        data = json_body()
        items = [SaleLineInput.from_dict(i) for i in json_list(data, "items", required=False)]

        sale = sales_service.create_sale(
            items,
            client_id=data.get("client_id"),
            user_id=g.user_id,
            note=data.get("note"),
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_user
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": _sale_detail(sale)}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/by-invoice/<string:invoice_number>")
@require_user
def get_sale_by_invoice_route(invoice_number: str):
    try:
        sale = sales_service.get_sale_by_invoice(invoice_number)
        return jsonify({"sale": _sale_detail(sale)}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale by invoice")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/items")
@require_user
def add_item_route(sale_id: int):
    try:
        line = SaleLineInput.from_dict(json_body())
        item = sales_service.add_item(sale_id, line)
        return jsonify({"item": item.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>/items/<int:item_id>")
@require_user
def delete_item_route(sale_id: int, item_id: int):
    try:
        sale = sales_service.delete_item(sale_id, item_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/complete")
@require_user
def complete_sale_route(sale_id: int):
    """Finalize a draft: stock out, invoice number, cost and profit frozen."""
    try:
        sale = sales_service.complete_sale(sale_id, user_id=g.user_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/payments")
@require_user
def add_payment_route(sale_id: int):
    """Body: method, amount, reference?"""
    try:
        payment = PaymentInput.from_dict(json_body())
        record = sales_service.add_payment(sale_id, payment, user_id=g.user_id)
        sale = sales_service.get_sale(sale_id)
        return jsonify({"payment": record.to_dict(), "sale": sale.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add sale payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_user
def cancel_sale_route(sale_id: int):
    try:
        data = json_body()
        sale = sales_service.cancel_sale(sale_id, user_id=g.user_id, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/returns")
@require_user
def create_return_route(sale_id: int):
    """
    Return units of a completed sale.

    Body: items [{sale_item_id, quantity, restock?, reason?}],
    refund_to_customer? (default true), note?
    """
    try:
        data = json_body()
        lines = [ReturnLineInput.from_dict(i) for i in json_list(data, "items")]
        refund = data.get("refund_to_customer", True)
        if not isinstance(refund, bool):
            raise ValidationError("refund_to_customer must be true or false")

        sale_return = sales_service.create_return(
            sale_id,
            lines,
            refund_to_customer=refund,
            note=data.get("note"),
            user_id=g.user_id,
        )
        return jsonify({"return": sale_return.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale return")
        return jsonify({"error": "Internal server error"}), 500
