# Overview: Flask API routes for debts operations; parses input and returns JSON responses.

# backend/warung/routes/debts.py
"""Receivable (debt) routes and debt payment recording."""

from flask import Blueprint, request, jsonify, current_app

from ..services import debt_service
from ..validation import ValidationError, NotFoundError, parse_int
from ..decorators import require_auth


debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")
debt_payments_bp = Blueprint("debt_payments", __name__, url_prefix="/api/debt-payments")


def _record(debt_id, data: dict):
    try:
        payment, debt = debt_service.record_payment(
            debt_id,
            data.get("amount"),
            data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict(), "debt": debt.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to record payment on debt %s", debt_id)
        return jsonify({"error": "Internal server error"}), 500


@debts_bp.get("")
@require_auth
def list_debts_route():
    """
    List debts, newest first.

    Query params:
    - page, limit: pagination
    - status: unpaid | partial | paid
    - customer_id: int
    """
    result = debt_service.list_debts(
        page=request.args.get("page", type=int),
        limit=request.args.get("limit", type=int),
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
    )
    return jsonify(result), 200


@debts_bp.get("/stats")
@require_auth
def debt_stats_route():
    return jsonify(debt_service.debt_stats()), 200


@debts_bp.get("/<int:debt_id>")
@require_auth
def get_debt_route(debt_id: int):
    try:
        return jsonify(debt_service.get_debt(debt_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@debts_bp.get("/<int:debt_id>/payments")
@require_auth
def list_payments_route(debt_id: int):
    try:
        payments = debt_service.list_payments(debt_id)
        return jsonify({"data": [p.to_dict() for p in payments]}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@debts_bp.post("/<int:debt_id>/payments")
@require_auth
def record_payment_route(debt_id: int):
    """
    Body: {"amount": 20000, "notes": "..."}

    Returns {"payment": ..., "debt": ...}.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    return _record(debt_id, data)


@debt_payments_bp.post("")
@require_auth
def create_debt_payment_route():
    """Body: {"debt_id": 1, "amount": 20000, "notes": "..."}"""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400
    if data.get("debt_id") is None:
        return jsonify({"error": "debt_id is required"}), 400
    try:
        debt_id = parse_int(data.get("debt_id"), "debt_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return _record(debt_id, data)
