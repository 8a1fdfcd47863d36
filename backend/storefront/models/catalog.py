from __future__ import annotations

from ..extensions import db
from ..formatting import to_utc_z, money_str, quantity_str


class Branch(db.Model):
    """
    Physical or online location.

    Stock records and cash sessions are scoped to a branch. Web checkouts
    book against the configured ONLINE_BRANCH_ID.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    retail_price is the authoritative checkout price; the price a client
    sends with a cart is informational only.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_active_deleted", "is_active", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    retail_price = db.Column(db.Numeric(18, 2), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_sellable(self) -> bool:
        return bool(self.is_active) and not self.is_deleted

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "retail_price": money_str(self.retail_price),
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductStock(db.Model):
    """
    Stock ledger record: (product, branch) -> available quantity.

    INVARIANT: quantity is never negative. Checkout decrements are
    conditional writes (see stock_service.decrement_stock); the CHECK
    constraint is the last line for any other writer.

    quantity is a 3-place decimal so stock-management flows can move
    fractional units (bulk goods sold by weight); checkout quantities
    are always whole numbers.
    """
    __tablename__ = "product_stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_product_stocks_product_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_product_stocks_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    quantity = db.Column(db.Numeric(18, 3), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stocks", lazy=True))
    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": quantity_str(self.quantity),
        }
