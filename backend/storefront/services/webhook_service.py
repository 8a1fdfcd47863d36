# Overview: Applies gateway payment notifications to the transaction ledger and sales.

"""
Webhook Reconciler

STATE MACHINE (PaymentTransaction.status):
    pending -> approved | rejected   (terminal)
    pending -> pending               (re-notification, no-op)
    terminal -> same terminal        (duplicate, no-op)
    terminal -> anything else        (anomalous, logged, ignored)

Sale side effects, applied in the same transaction:
    approved -> Sale PAID (unless already DELIVERED), completed_at set once
    rejected -> Sale REJECTED while the sale is still PENDING

Concurrent deliveries for one transaction id serialize on the row lock
and the version_id token. A StaleDataError rolls back and re-runs the
whole compare-then-update, which then sees the terminal state and no-ops.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..errors import AuthenticationError, ValidationError
from ..extensions import db
from ..formatting import utcnow
from ..models import TransactionStatus
from ..models.sales import SALE_DELIVERED, SALE_PAID, SALE_PENDING, SALE_REJECTED
from ..validation import first_present, optional_str, parse_money, require_object
from .concurrency import begin_serialized, run_with_retry
from .payment_ledger import require_transaction


SIGNATURE_HEADER = "X-Payway-Signature"


@dataclass(frozen=True)
class PaymentNotification:
    transaction_id: str
    status: TransactionStatus
    raw_status: str
    status_detail: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    payment_id: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True)
class ReconcileOutcome:
    transaction_id: str
    status: str
    changed: bool


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> None:
    """
    HMAC-SHA256 of the raw body, hex encoded, optionally prefixed "sha256=".

    No secret configured means signatures are not checked.
    """
    if not secret:
        return
    if not signature:
        raise AuthenticationError("Missing webhook signature")

    provided = signature.strip().lower()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]

    expected = hmac.new(secret.encode("utf-8"), raw_body or b"", hashlib.sha256).hexdigest()
    if not hmac.compare_digest(provided, expected):
        raise AuthenticationError("Invalid webhook signature")


def parse_notification(raw_body: bytes | str | None) -> PaymentNotification:
    """
    Validate an inbound notification body.

    The status string is closed into TransactionStatus here; vocabulary
    outside pending/approved/rejected, a missing status or a non-string
    status becomes UNKNOWN rather than an error.

    Raises:
        ValidationError: not JSON, not an object, or no transaction id
    """
    if not raw_body:
        raise ValidationError("Empty webhook payload")
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    payload = require_object(payload)

    transaction_id = first_present(
        payload, "siteTransactionId", "site_transaction_id", "transactionId", "transaction_id"
    )
    if isinstance(transaction_id, bool) or not isinstance(transaction_id, (str, int)):
        raise ValidationError("siteTransactionId is required")
    transaction_id = str(transaction_id).strip()
    if not transaction_id:
        raise ValidationError("siteTransactionId is required")

    raw_status = payload.get("status")
    if raw_status is None:
        raw_status = "unknown"
    elif not isinstance(raw_status, str):
        raw_status = str(raw_status)

    amount = payload.get("amount")
    return PaymentNotification(
        transaction_id=transaction_id,
        status=TransactionStatus.parse(raw_status),
        raw_status=raw_status,
        status_detail=optional_str(payload, "statusDetail", max_length=100)
        or optional_str(payload, "status_detail", max_length=100),
        amount=parse_money("amount", amount) if amount is not None else None,
        currency=optional_str(payload, "currency", max_length=10),
        payment_id=optional_str(payload, "paymentId", max_length=100),
        payment_method=optional_str(payload, "paymentMethod", max_length=50),
    )


def _additional_data(notification: PaymentNotification) -> str | None:
    extra = {
        key: value
        for key, value in (
            ("paymentId", notification.payment_id),
            ("paymentMethod", notification.payment_method),
        )
        if value
    }
    if not extra:
        return None
    return json.dumps(extra)[:1000]


def _apply_sale_transition(sale, status: TransactionStatus) -> None:
    if status == TransactionStatus.APPROVED:
        if sale.payment_status != SALE_DELIVERED:
            sale.payment_status = SALE_PAID
    elif status == TransactionStatus.REJECTED:
        if sale.payment_status == SALE_PENDING:
            sale.payment_status = SALE_REJECTED
        else:
            current_app.logger.warning(
                "Rejected payment for sale %s ignored, sale already %s", sale.id, sale.payment_status
            )


def _reconcile_once(notification: PaymentNotification, source: str) -> ReconcileOutcome:
    begin_serialized()
    txn = require_transaction(notification.transaction_id, lock=True)
    current = txn.status_enum
    reported = notification.status

    def unchanged() -> ReconcileOutcome:
        outcome = ReconcileOutcome(transaction_id=txn.transaction_id, status=txn.status, changed=False)
        db.session.rollback()
        return outcome

    if reported == TransactionStatus.UNKNOWN:
        current_app.logger.warning(
            "Unrecognized payment status %r for %s (%s), no state change",
            notification.raw_status, txn.transaction_id, source,
        )
        return unchanged()

    if current.is_terminal:
        if reported != current:
            current_app.logger.warning(
                "Ignoring %s -> %s for terminal transaction %s (%s)",
                current.value, reported.value, txn.transaction_id, source,
            )
        return unchanged()

    if reported == TransactionStatus.PENDING:
        return unchanged()

    if notification.amount is not None and notification.amount != Decimal(txn.amount):
        current_app.logger.warning(
            "Amount mismatch for %s: notified %s, recorded %s",
            txn.transaction_id, notification.amount, txn.amount,
        )

    now = utcnow()
    txn.status = reported.value
    txn.status_detail = notification.status_detail
    txn.updated_at = now
    if reported == TransactionStatus.APPROVED and txn.completed_at is None:
        txn.completed_at = now
    extra = _additional_data(notification)
    if extra:
        txn.additional_data = extra

    _apply_sale_transition(txn.sale, reported)
    db.session.commit()

    current_app.logger.info(
        "Transaction %s %s -> %s (%s), sale %s now %s",
        txn.transaction_id, current.value, reported.value, source, txn.sale_id, txn.sale.payment_status,
    )
    return ReconcileOutcome(transaction_id=txn.transaction_id, status=txn.status, changed=True)


def reconcile(notification: PaymentNotification, *, source: str = "webhook") -> ReconcileOutcome:
    """
    Apply a notification idempotently.

    Raises:
        NotFoundError: unknown transaction id (nothing is created)
    """
    try:
        return run_with_retry(lambda: _reconcile_once(notification, source))
    except Exception:
        db.session.rollback()
        raise
