# Overview: Flask API routes for dashboard stats; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import reporting_service
from ..validation import ValidationError
from ..decorators import require_auth


reports_bp = Blueprint("reports", __name__, url_prefix="/api")


@reports_bp.get("/stats")
@require_auth
def dashboard_stats_route():
    """
    Query params:
    - range: today | this-month | last-month | last-2-months | last-3-months | this-year
    - start_date, end_date: YYYY-MM-DD, inclusive (override range)
    """
    try:
        stats = reporting_service.dashboard_stats(
            range_option=request.args.get("range"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
        )
        return jsonify(stats), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to build dashboard stats")
        return jsonify({"error": "Internal server error"}), 500
