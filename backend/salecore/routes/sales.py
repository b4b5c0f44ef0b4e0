# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API Routes

WHY: Thin HTTP boundary over the sale orchestrator. Body shapes are
normalized in salecore.validation; everything else happens in the service
layer.

ERRORS: SaleError subclasses map to their http_status with the body
{"error", "code", "details", "rollback_errors"}.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_user
from ..errors import SaleError
from ..services import return_service
from ..services.repository import Repository
from ..services.sales_service import EngineSettings, SaleOrchestrator
from ..validation import parse_sale_request


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _orchestrator() -> SaleOrchestrator:
    return SaleOrchestrator(Repository.for_app(), EngineSettings.from_config(current_app.config))


@sales_bp.post("")
@require_user
def create_sale_route():
    """
    Create and commit a sale.

    Request body (flat or nested under "sale"/"saleData"):
    {
        "items": [{"product_id": 1, "quantity": 2, "discount_cents": 0}],
        "payment_method": "cash",
        "amount_paid_cents": 2500,
        "payments": [{"method": "card", "amount_cents": 1000}],  (optional)
        "customer_id": 3, "promo_code": "SPRING", "approval_code": "...",
        "manager_id": 9, "discount_cents": 0  (all optional)
    }

    Returns:
        201: {"sale", "items", "payments", "warnings"}
        4xx/500: error body
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True), cashier_id=g.user_id)
        result = _orchestrator().create_sale(sale_request)
        return jsonify(result.to_dict()), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/drafts")
@require_user
def save_draft_route():
    try:
        sale_request = parse_sale_request(request.get_json(silent=True), cashier_id=g.user_id)
        result = _orchestrator().save_draft(sale_request)
        return jsonify(result.to_dict()), 201

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to save draft")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/drafts")
@require_user
def list_drafts_route():
    try:
        drafts = _orchestrator().list_drafts()
        return jsonify({"drafts": [sale.to_dict() for sale in drafts]}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list drafts")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_user
def get_sale_route(sale_id: int):
    try:
        result = _orchestrator().get_sale(sale_id)
        return jsonify(result.to_dict()), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/refund")
@require_user
def refund_sale_route(sale_id: int):
    """
    Refund every outstanding unit of a completed sale.

    Returns:
        200: {"sale", "movements", "warnings"}
        404: sale not found
        409: already refunded
    """
    try:
        result = return_service.refund_sale(Repository.for_app(), sale_id, g.user_id)
        return jsonify(result.to_dict()), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500
