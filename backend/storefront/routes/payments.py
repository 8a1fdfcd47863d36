# Overview: Flask API routes for gateway notifications and payment status lookups.

"""
Payment API Routes

- POST /payments/webhook: provider notifications. Every syntactically
  valid notification for a known transaction is acknowledged with 200,
  including duplicates and unrecognized statuses, so the provider does
  not retry forever.
- GET /payments/status/<transactionId>: ledger snapshot. With
  GATEWAY_STATUS_REFRESH (or ?refresh=true) a still-pending transaction
  is first refreshed from the gateway through the same reconciler.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import StorefrontError
from ..extensions import db
from ..models import TransactionStatus
from ..services import payment_ledger, webhook_service
from ..services.payment_gateway import current_gateway
from ..services.webhook_service import PaymentNotification


payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/webhook")
def webhook_route():
    try:
        raw_body = request.get_data(cache=True)
        webhook_service.verify_signature(
            raw_body,
            request.headers.get(webhook_service.SIGNATURE_HEADER),
            current_app.config.get("GATEWAY_WEBHOOK_SECRET"),
        )

        notification = webhook_service.parse_notification(raw_body)
        current_app.logger.info(
            "Webhook received for %s status=%r", notification.transaction_id, notification.raw_status
        )

        webhook_service.reconcile(notification)
        return jsonify({"received": True, "status": notification.raw_status}), 200

    except StorefrontError as e:
        if e.status_code >= 400 and e.status_code != 404:
            current_app.logger.warning("Webhook rejected: %s", e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Internal server error"}), 500


def _refresh_requested() -> bool:
    flag = request.args.get("refresh")
    if flag is not None:
        return flag.lower() == "true"
    return bool(current_app.config.get("GATEWAY_STATUS_REFRESH"))


def _refresh_from_gateway(transaction_id: str) -> None:
    reported = current_gateway().get_payment_status(transaction_id)
    if reported is None or reported.status == TransactionStatus.PENDING:
        return

    webhook_service.reconcile(
        PaymentNotification(
            transaction_id=transaction_id,
            status=reported.status,
            raw_status=reported.raw_status or "",
            status_detail=reported.status_detail,
            amount=reported.amount,
        ),
        source="status-refresh",
    )


@payments_bp.get("/status/<transaction_id>")
def payment_status_route(transaction_id: str):
    try:
        txn = payment_ledger.require_transaction(transaction_id)

        if txn.status_enum == TransactionStatus.PENDING and _refresh_requested():
            _refresh_from_gateway(transaction_id)
            db.session.expire_all()
            txn = payment_ledger.require_transaction(transaction_id)

        return jsonify(txn.to_dict()), 200

    except StorefrontError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to get payment status")
        return jsonify({"error": "Internal server error"}), 500
