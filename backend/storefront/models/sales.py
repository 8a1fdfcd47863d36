from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..formatting import to_utc_z, money_str, quantity_str


# Sale.payment_status vocabulary
SALE_PENDING = "PENDING"
SALE_PAID = "PAID"
SALE_REJECTED = "REJECTED"
SALE_DELIVERED = "DELIVERED"

SALE_PAYMENT_STATUSES = (SALE_PENDING, SALE_PAID, SALE_REJECTED, SALE_DELIVERED)


class Sale(db.Model):
    """
    Committed commercial sale.

    Created exactly once per successful checkout commit. After that the
    only mutable field is payment_status, written by the webhook
    reconciler or an administrative override. Sales are soft-deleted,
    never physically removed.

    INVARIANT: total == subtotal - discount_total. Money a client paid
    above that (card surcharges) is kept in surcharge_total.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_payment_status_sold", "payment_status", "sold_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    cash_movement_id = db.Column(db.Integer, db.ForeignKey("cash_movements.id"), nullable=False, unique=True)
    seller_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(18, 2), nullable=False)
    discount_total = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    surcharge_total = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(18, 2), nullable=False)

    sold_at = db.Column(db.DateTime(timezone=True), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=SALE_PENDING, index=True)

    # Delivery (optional, web orders)
    delivery_type = db.Column(db.Integer, nullable=True)  # 0 = pickup, 1 = shipping
    delivery_address = db.Column(db.String(255), nullable=True)
    delivery_cost = db.Column(db.Numeric(18, 2), nullable=True)
    delivery_note = db.Column(db.String(255), nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch")
    cash_movement = db.relationship("CashMovement", backref=db.backref("sale", uselist=False))
    client = db.relationship("Client", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_charged(self) -> Decimal:
        return Decimal(self.total) + Decimal(self.surcharge_total or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "cash_movement_id": self.cash_movement_id,
            "seller_user_id": self.seller_user_id,
            "client_id": self.client_id,
            "subtotal": money_str(self.subtotal),
            "discount_total": money_str(self.discount_total),
            "surcharge_total": money_str(self.surcharge_total),
            "total": money_str(self.total),
            "sold_at": to_utc_z(self.sold_at),
            "payment_status": self.payment_status,
            "delivery_type": self.delivery_type,
            "delivery_address": self.delivery_address,
            "delivery_cost": money_str(self.delivery_cost),
            "delivery_note": self.delivery_note,
            "is_deleted": self.is_deleted,
            "deleted_at": to_utc_z(self.deleted_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """Immutable line of a sale. line_total = quantity * unit_price - discount."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 3), nullable=False)
    unit_price = db.Column(db.Numeric(18, 2), nullable=False)
    discount = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.quantity) * Decimal(self.unit_price) - Decimal(self.discount or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": quantity_str(self.quantity),
            "unit_price": money_str(self.unit_price),
            "discount": money_str(self.discount),
            "line_total": money_str(self.line_total),
        }


class SalePayment(db.Model):
    """
    Payment declared by the client at checkout (method + amount).

    Split payments are allowed; their sum always equals the declared total.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.Integer, nullable=False)  # 0 cash, 1 card, 2 transfer, ...
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount": money_str(self.amount),
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
