"""
Payment transaction ledger.

Rows are written once per successful gateway hand-off and afterwards only
touched by the webhook reconciler. Nothing here commits; callers own the
transaction boundary.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..errors import NotFoundError
from ..extensions import db
from ..formatting import utcnow
from ..models import PaymentTransaction, TransactionStatus
from .concurrency import lock_for_update


def next_attempt(sale_id: int) -> int:
    """1-based attempt number for the next hand-off of sale_id."""
    count = db.session.query(func.count(PaymentTransaction.id)).filter_by(sale_id=sale_id).scalar()
    return int(count or 0) + 1


def get_by_transaction_id(transaction_id: str, *, lock: bool = False) -> PaymentTransaction | None:
    query = db.session.query(PaymentTransaction).filter_by(transaction_id=transaction_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def require_transaction(transaction_id: str, *, lock: bool = False) -> PaymentTransaction:
    txn = get_by_transaction_id(transaction_id, lock=lock)
    if txn is None:
        raise NotFoundError("Transaction not found", details={"transactionId": transaction_id})
    return txn


def latest_for_sale(sale_id: int) -> PaymentTransaction | None:
    return (
        db.session.query(PaymentTransaction)
        .filter_by(sale_id=sale_id)
        .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
        .first()
    )


def record_pending_transaction(
    *,
    sale_id: int,
    transaction_id: str,
    checkout_id: str | None,
    amount: Decimal,
    currency: str,
    payment_method: str = "card",
) -> PaymentTransaction:
    txn = PaymentTransaction(
        sale_id=sale_id,
        transaction_id=transaction_id,
        checkout_id=checkout_id,
        status=TransactionStatus.PENDING.value,
        amount=amount,
        currency=currency,
        payment_method=payment_method,
        created_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn
