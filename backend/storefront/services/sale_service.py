"""
Sale Aggregate operations after checkout.

Sales are never edited except for payment_status, and never physically
deleted. Soft-deleted sales behave as missing for every lookup here.
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..formatting import money_str, utcnow
from ..models import Sale
from ..models.sales import SALE_PAYMENT_STATUSES
from .concurrency import lock_for_update, run_with_retry
from .payment_ledger import latest_for_sale


def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id, is_deleted=False)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError("Sale not found", details={"saleId": sale_id})
    return sale


def get_sale_status(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    return {
        "saleId": sale.id,
        "status": sale.payment_status,
        "total": money_str(sale.total),
    }


def get_sale_detail(sale_id: int) -> dict:
    sale = get_sale(sale_id)
    latest = latest_for_sale(sale.id)
    return {
        **sale.to_dict(),
        "items": [item.to_dict() for item in sale.items],
        "payments": [payment.to_dict() for payment in sale.payments],
        "transactions": [txn.to_dict() for txn in sale.payment_transactions],
        "latest_transaction_id": latest.transaction_id if latest else None,
    }


def override_payment_status(sale_id: int, status: str, user_id: int | None = None) -> Sale:
    """Administrative correction of payment_status (any state to any state)."""
    normalized = (status or "").strip().upper() if isinstance(status, str) else ""
    if normalized not in SALE_PAYMENT_STATUSES:
        raise ValidationError(
            "Invalid payment status",
            details={"allowed": list(SALE_PAYMENT_STATUSES)},
        )

    def _op():
        sale = get_sale(sale_id, lock=True)
        previous = sale.payment_status
        sale.payment_status = normalized
        db.session.commit()
        current_app.logger.info(
            "Sale %s payment status overridden %s -> %s by user %s", sale_id, previous, normalized, user_id
        )
        return sale

    return run_with_retry(_op)


def soft_delete_sale(sale_id: int, user_id: int | None = None) -> Sale:
    def _op():
        sale = get_sale(sale_id, lock=True)
        sale.is_deleted = True
        sale.deleted_at = utcnow()
        db.session.commit()
        current_app.logger.info("Sale %s soft-deleted by user %s", sale_id, user_id)
        return sale

    return run_with_retry(_op)
