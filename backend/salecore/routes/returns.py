# Overview: Flask API routes for partial returns; parses input and returns JSON responses.

"""
Return Processing API Routes

LIFECYCLE:
- POST /api/returns                      -> pending
- POST /api/returns/<id>/complete        -> completed, stock restored
- POST /api/returns/<id>/reject          -> rejected
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import SaleError
from ..services import return_service
from ..services.repository import Repository
from ..validation import coerce_int, parse_return_lines


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_user
def create_return_route():
    """
    Create a pending return.

    Request body:
    {
        "sale_id": 123,
        "items": [{"sale_item_id": 456, "quantity": 1}],
        "reason": "Damaged"  (optional)
    }

    Returns:
        201: {"return": {...}}
        400: invalid input or quantity exceeds what can still be returned
    """
    try:
        data = request.get_json(silent=True) or {}

        sale_id = coerce_int(data.get("sale_id", data.get("saleId")), "sale_id", required=True)
        lines = parse_return_lines(data.get("items"))

        return_request = return_service.create_return(
            Repository.for_app(),
            sale_id,
            lines,
            actor_id=g.user_id,
            reason=data.get("reason"),
        )
        return jsonify({"return": return_request.to_dict()}), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/complete")
@require_user
def complete_return_route(return_id: int):
    try:
        return_request, movements = return_service.complete_return(Repository.for_app(), return_id, g.user_id)
        return jsonify({
            "return": return_request.to_dict(),
            "movements": [m.to_dict() for m in movements],
        }), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/reject")
@require_user
def reject_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        return_request = return_service.reject_return(
            Repository.for_app(), return_id, g.user_id, reason=data.get("reason")
        )
        return jsonify({"return": return_request.to_dict()}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return jsonify({"error": "Internal server error"}), 500
