# Overview: Flask API routes for web checkout; parses input and returns JSON responses.

"""
Checkout API Routes

Public (unauthenticated) storefront endpoints.

ERROR CONTRACT:
- 400: malformed request, nothing stored
- 409: business rule (stock, cash session, totals), nothing stored
- 502: gateway failure AFTER the sale was committed; details.saleId
  identifies the sale to retry with POST /checkout/<saleId>/payment-link
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import StorefrontError
from ..extensions import db
from ..formatting import money_str, quantity_str, to_utc_z
from ..services import checkout_service, sale_service
from ..services.payment_gateway import current_gateway
from ..validation import optional_str


checkout_bp = Blueprint("checkout", __name__, url_prefix="/checkout")


def _link_fields(link) -> dict:
    return {
        "paywayRedirectUrl": link.checkout_url,
        "transactionId": link.transaction_id,
        "checkoutId": link.checkout_id,
    }


@checkout_bp.post("/start")
def start_checkout_route():
    """
    Commit a web sale and return the gateway redirect URL.

    Request body:
    {
        "items": [{"productId": 5, "qty": 2, "unitPrice": 100, "discount": 0}],
        "payments": [{"method": 1, "amount": 200, "reference": null}],
        "total": 200,
        "discountTotal": 0,                         (optional)
        "client": {"fullName", "phone", "document", "email"},   (optional)
        "delivery": {"type", "address", "cost", "note"}         (optional)
    }
    """
    try:
        result = checkout_service.start_checkout(request.get_json(silent=True), current_gateway())
        sale = result.sale

        return jsonify({
            "saleId": sale.id,
            "subtotal": money_str(sale.subtotal),
            "discountTotal": money_str(sale.discount_total),
            "total": money_str(sale.total),
            "soldAt": to_utc_z(sale.sold_at),
            "stockActualizado": [
                {"productId": product_id, "stock": quantity_str(stock)}
                for product_id, stock in result.stock_levels.items()
            ],
            "ticketUrl": checkout_service.build_ticket_url(sale),
            "message": "Sale created, redirecting to payment",
            **_link_fields(result.link),
        }), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to start checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/<int:sale_id>/payment-link")
def retry_payment_link_route(sale_id: int):
    """Retry the gateway hand-off for a committed sale that is still PENDING."""
    try:
        payload = request.get_json(silent=True) or {}
        email = optional_str(payload, "email") if isinstance(payload, dict) else None

        link = checkout_service.retry_payment_link(sale_id, current_gateway(), email=email)
        return jsonify({"saleId": sale_id, **_link_fields(link)}), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create payment link")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/<int:sale_id>/status")
def sale_status_route(sale_id: int):
    try:
        return jsonify(sale_service.get_sale_status(sale_id)), 200
    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get sale status")
        return jsonify({"error": "Internal server error"}), 500
