# Overview: Flask API routes for stock management adjustments.

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import StorefrontError
from ..services import stock_service
from ..validation import first_present, parse_id, parse_stock_delta, require_object


stock_bp = Blueprint("stock", __name__, url_prefix="/stock")


@stock_bp.post("/adjust")
@require_auth
@require_admin
def adjust_stock_route():
    """
    Receive, count or write off stock.

    Request body:
    {
        "productId": 5,
        "branchId": 1,       (optional, defaults to ONLINE_BRANCH_ID)
        "delta": -1.5        (fractional units allowed, result never < 0)
    }
    """
    try:
        data = require_object(request.get_json(silent=True))
        product_id = parse_id("productId", first_present(data, "productId", "product_id"))
        branch_id = first_present(data, "branchId", "branch_id")
        branch_id = parse_id("branchId", branch_id) if branch_id is not None else current_app.config["ONLINE_BRANCH_ID"]
        delta = parse_stock_delta("delta", data.get("delta"))

        record = stock_service.adjust_stock(product_id, branch_id, delta)
        return jsonify({"stock": record.to_dict()}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
