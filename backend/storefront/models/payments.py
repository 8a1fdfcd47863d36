from __future__ import annotations

import enum

from ..extensions import db
from ..formatting import to_utc_z, money_str


class TransactionStatus(str, enum.Enum):
    """
    Gateway-reported payment status, closed at the system boundary.

    Provider strings are parsed with TransactionStatus.parse; anything
    outside the known vocabulary becomes UNKNOWN and is never persisted.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw) -> "TransactionStatus":
        if not isinstance(raw, str):
            return cls.UNKNOWN
        normalized = raw.strip().lower()
        for status in (cls.PENDING, cls.APPROVED, cls.REJECTED):
            if normalized == status.value:
                return status
        return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.APPROVED, TransactionStatus.REJECTED)


class PaymentTransaction(db.Model):
    """
    One gateway checkout attempt for a sale.

    transaction_id is the correlation key sent to the gateway and echoed
    back in webhooks; it is globally unique and is the idempotency key
    for reconciliation. A sale may have several attempts.

    LIFECYCLE:
    - pending -> approved | rejected (terminal, never overwritten)

    version_id serializes concurrent webhook deliveries for the same row.
    """
    __tablename__ = "payment_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_payment_transactions_transaction_id"),
        db.Index("ix_payment_transactions_sale_created", "sale_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    transaction_id = db.Column(db.String(100), nullable=False)
    checkout_id = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TransactionStatus.PENDING.value, index=True)
    status_detail = db.Column(db.String(100), nullable=True)

    amount = db.Column(db.Numeric(18, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="ARS")
    payment_method = db.Column(db.String(50), nullable=False, default="card")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    additional_data = db.Column(db.String(1000), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("payment_transactions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus.parse(self.status)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "statusDetail": self.status_detail,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "transactionId": self.transaction_id,
            "checkoutId": self.checkout_id,
            "saleId": self.sale_id,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
            "completedAt": to_utc_z(self.completed_at),
        }
