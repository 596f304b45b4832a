# Overview: Flask API routes for cash shifts (open, operations, blind-count close).

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_user
from ..errors import CoreError, ValidationError
from ..services import cash_shift_service
from . import json_body


cash_shifts_bp = Blueprint("cash_shifts", __name__, url_prefix="/api/cash-shifts")


@cash_shifts_bp.post("/open")
@require_user
def open_shift_route():
    """Body: initial_amount, notes?"""
    try:
        data = json_body()
        if data.get("initial_amount") is None:
            raise ValidationError("initial_amount required")

        shift = cash_shift_service.open_shift(g.user_id, data["initial_amount"], notes=data.get("notes"))
        return jsonify({"shift": shift.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_shifts_bp.get("/current")
@require_user
def current_shift_route():
    shift = cash_shift_service.get_current_shift(g.user_id)
    return jsonify({"shift": shift.to_dict() if shift else None}), 200


@cash_shifts_bp.post("/operations")
@require_user
def register_operation_route():
    """Body: type (MANUAL_ADD, MANUAL_WITHDRAW, EXPENSE), amount, reason"""
    try:
        data = json_body()
        if data.get("type") is None or data.get("amount") is None:
            raise ValidationError("type and amount required")

        transaction = cash_shift_service.register_operation(
            g.user_id, data["type"], data["amount"], data.get("reason")
        )
        return jsonify({"transaction": transaction.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register cash operation")
        return jsonify({"error": "Internal server error"}), 500


@cash_shifts_bp.post("/close")
@require_user
def close_shift_route():
    """
    Blind-count close. Body: real_amount, notes?

    Always 200 on a successful close; status AUDIT_REQUIRED flags a variance
    above the tolerance.
    """
    try:
        data = json_body()
        if data.get("real_amount") is None:
            raise ValidationError("real_amount required")

        shift = cash_shift_service.close_shift(g.user_id, data["real_amount"], notes=data.get("notes"))
        return jsonify({"shift": shift.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close cash shift")
        return jsonify({"error": "Internal server error"}), 500


@cash_shifts_bp.get("/<int:shift_id>/summary")
@require_user
def shift_summary_route(shift_id: int):
    try:
        return jsonify(cash_shift_service.get_shift_summary(shift_id)), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@cash_shifts_bp.get("/")
@require_user
def list_shifts_route():
    """Query: user_id?, status?"""
    shifts = cash_shift_service.list_shifts(
        user_id=request.args.get("user_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
