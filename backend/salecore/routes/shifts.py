# Overview: Flask API routes for cashier shifts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import SaleError
from ..services import shift_service
from ..services.repository import Repository
from ..time_utils import to_utc_z
from ..validation import coerce_int


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("")
@require_user
def open_shift_route():
    """
    Open a shift for the calling user.

    Request body: {"starting_cash_cents": 10000}
    """
    try:
        data = request.get_json(silent=True) or {}
        starting = coerce_int(
            data.get("starting_cash_cents", data.get("startingCashCents")), "starting_cash_cents", default=0
        )
        shift = shift_service.open_shift(Repository.for_app(), g.user_id, starting)
        return jsonify({"shift": shift.to_dict()}), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
@require_user
def current_shift_route():
    try:
        status = shift_service.get_shift_status(Repository.for_app(), g.user_id)
        status["start_time"] = to_utc_z(status["start_time"])
        return jsonify({"status": status}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load shift status")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_user
def close_shift_route(shift_id: int):
    """
    Close a shift with the counted drawer amount.

    Request body: {"ending_cash_cents": 15250, "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        ending = coerce_int(
            data.get("ending_cash_cents", data.get("endingCashCents")), "ending_cash_cents", required=True
        )
        shift = shift_service.close_shift(Repository.for_app(), shift_id, ending, notes=data.get("notes"))
        return jsonify({"shift": shift.to_dict()}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/cash-transactions")
@require_user
def add_cash_transaction_route(shift_id: int):
    """
    Record a pay-in, pay-out or safe drop.

    Request body: {"amount_cents": 500, "type": "pay_out", "reason": "Milk for staff room"}
    """
    try:
        data = request.get_json(silent=True) or {}
        amount = coerce_int(data.get("amount_cents", data.get("amountCents")), "amount_cents", required=True)
        transaction = shift_service.add_cash_transaction(
            Repository.for_app(), shift_id, amount, data.get("type"), data.get("reason")
        )
        return jsonify({"transaction": transaction.to_dict()}), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record cash transaction")
        return jsonify({"error": "Internal server error"}), 500
