# Overview: Flask API routes for administrative sale operations.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StorefrontError
from ..extensions import db
from ..services import sale_service


sales_bp = Blueprint("sales", __name__, url_prefix="/sales")


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_admin
def get_sale_route(sale_id: int):
    """Sale with items, declared payments and gateway transactions."""
    try:
        return jsonify({"sale": sale_service.get_sale_detail(sale_id)}), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/payment-status")
@require_auth
@require_admin
def override_payment_status_route(sale_id: int):
    """
    Manual reconciliation.

    Request body:
    {
        "status": "PAID"    (PENDING | PAID | REJECTED | DELIVERED)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sale_service.override_payment_status(sale_id, data.get("status"), user_id=g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to override payment status")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_admin
def delete_sale_route(sale_id: int):
    try:
        sale = sale_service.soft_delete_sale(sale_id, user_id=g.current_user.id)
        return jsonify({"sale": sale.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
