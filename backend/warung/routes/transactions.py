# Overview: Flask API routes for transactions operations; parses input and returns JSON responses.

# backend/warung/routes/transactions.py
"""Sale (and purchase) transaction routes."""

from flask import Blueprint, request, jsonify, current_app

from ..services import transaction_service
from ..validation import ValidationError, NotFoundError, ConflictError
from ..decorators import require_auth
from warung.time_utils import parse_iso_datetime, parse_range_end


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _conflict_body(e: ConflictError) -> dict:
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details
    return body


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """
    List transactions, newest first.

    Query params:
    - page, limit: pagination
    - type: sale | purchase
    - payment_status: paid | partial | unpaid
    - customer_id: int
    - start_date, end_date: YYYY-MM-DD (business days, inclusive) or ISO-8601
    """
    try:
        start = parse_iso_datetime(request.args.get("start_date"))
        end = parse_range_end(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date/end_date must be ISO-8601 dates"}), 400

    result = transaction_service.list_transactions(
        page=request.args.get("page", type=int),
        limit=request.args.get("limit", type=int),
        type=request.args.get("type"),
        payment_status=request.args.get("payment_status"),
        customer_id=request.args.get("customer_id", type=int),
        start=start,
        end=end,
    )
    return jsonify(result), 200


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id)
        return jsonify(transaction_service.transaction_detail(txn)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@transactions_bp.post("")
@require_auth
def create_transaction_route():
    """
    Record a sale.

    Body:
    {
        "customer_id": 3,              // required unless payment_status is paid
        "total_amount": 100000,
        "payment_status": "partial",   // paid | partial | unpaid
        "paid_amount": 40000,
        "notes": "...",
        "type": "sale",                // optional; "purchase" restocks
        "items": [{"product_id": 1, "quantity": 2, "price": 50000}]
    }
    """
    try:
        data = request.get_json(silent=True)
        txn = transaction_service.create_transaction(data)
        return jsonify(transaction_service.transaction_detail(txn)), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify(_conflict_body(e)), 400
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.put("/<int:transaction_id>")
@require_auth
def update_transaction_route(transaction_id: int):
    """Edit payment_status, paid_amount, notes or customer_id."""
    try:
        data = request.get_json(silent=True)
        txn = transaction_service.update_transaction(transaction_id, data)
        return jsonify(transaction_service.transaction_detail(txn)), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify(_conflict_body(e)), 400
    except Exception:
        current_app.logger.exception("Failed to update transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
def delete_transaction_route(transaction_id: int):
    try:
        transaction_service.delete_transaction(transaction_id)
        return jsonify({"ok": True}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify(_conflict_body(e)), 400
    except Exception:
        current_app.logger.exception("Failed to delete transaction %s", transaction_id)
        return jsonify({"error": "Internal server error"}), 500
