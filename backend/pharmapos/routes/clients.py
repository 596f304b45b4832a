# Overview: Flask API routes for client accounts (payments, credit, statements).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_user
from ..errors import CoreError, ValidationError
from ..inputs import PaymentInput
from ..services import client_account_service, payment_allocation_service
from ..time_utils import end_of_day, parse_iso_datetime
from . import json_body


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.post("/<int:client_id>/payments")
@require_user
def register_payment_route(client_id: int):
    """
    Apply a payment across the client's open invoices, oldest first.

    Body: amount, method, reference?
    The response reports any amount left over as overpaid_not_applied.
    """
    try:
        payment = PaymentInput.from_dict(json_body())
        result = payment_allocation_service.register_client_payment(
            client_id,
            payment.amount,
            payment.method,
            user_id=g.user_id,
            reference=payment.reference,
        )
        return jsonify(result.to_dict()), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register client payment")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.put("/<int:client_id>/credit")
@require_user
def update_credit_route(client_id: int):
    """Body: has_credit, credit_limit"""
    try:
        data = json_body()
        if data.get("has_credit") is None or data.get("credit_limit") is None:
            raise ValidationError("has_credit and credit_limit required")

        client = client_account_service.update_credit_config(
            client_id, data["has_credit"], data["credit_limit"]
        )
        return jsonify({"client": client.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update client credit")
        return jsonify({"error": "Internal server error"}), 500


@clients_bp.get("/<int:client_id>/statement")
@require_user
def account_statement_route(client_id: int):
    """Query: start?, end? (ISO dates; a bare end date covers the whole day)"""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end_raw = request.args.get("end")
            end = parse_iso_datetime(end_raw)
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 dates")
        if end is not None and end_raw and "T" not in end_raw:
            end = end_of_day(end)

        statement = client_account_service.get_account_statement(client_id, start=start, end=end)
        return jsonify(statement), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
