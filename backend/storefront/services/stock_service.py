# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

"""
Stock Ledger Invariants (authoritative)

- One ProductStock row per (product, branch); quantity is a 3-place decimal.
- Quantity is never negative. Every write that could lower it is a
  conditional UPDATE ("... WHERE quantity >= :requested") whose rowcount
  is checked, so a stale pre-check can never oversell.
- A failed conditional write raises InsufficientStockError; the caller's
  unit of work rolls back everything it did.
- Checkout moves whole units; stock management may move fractions.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..formatting import to_stock_quantity
from ..models import Product, ProductStock, Branch


def get_stock_record(product_id: int, branch_id: int) -> ProductStock | None:
    return db.session.query(ProductStock).filter_by(
        product_id=product_id,
        branch_id=branch_id,
    ).first()


def read_quantity(product_id: int, branch_id: int) -> Decimal:
    """
    Current persisted quantity, bypassing the session identity map.

    Conditional updates run with synchronize_session=False, so loaded
    ProductStock objects can be stale inside a unit of work; this reads
    the column straight from the database.
    """
    value = db.session.execute(
        select(ProductStock.quantity).where(
            ProductStock.product_id == product_id,
            ProductStock.branch_id == branch_id,
        )
    ).scalar_one_or_none()
    if value is None:
        return Decimal("0.000")
    return to_stock_quantity(value)


def decrement_stock(product_id: int, branch_id: int, quantity) -> Decimal:
    """
    Conditionally remove quantity units. Does NOT commit.

    Re-validates against the quantity persisted at write time, not the
    caller's earlier read. Returns the quantity left.

    Raises:
        InsufficientStockError: no record, or fewer than quantity units left
    """
    requested = to_stock_quantity(quantity)
    if requested <= 0:
        raise ValidationError("quantity must be > 0")

    result = db.session.execute(
        update(ProductStock)
        .where(
            ProductStock.product_id == product_id,
            ProductStock.branch_id == branch_id,
            ProductStock.quantity >= requested,
        )
        .values(quantity=ProductStock.quantity - requested)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        raise InsufficientStockError(
            "Insufficient stock",
            details={
                "product_id": product_id,
                "branch_id": branch_id,
                "requested_quantity": str(requested),
                "available": str(read_quantity(product_id, branch_id)),
            },
        )

    return read_quantity(product_id, branch_id)


def adjust_stock(product_id: int, branch_id: int, delta: Decimal) -> ProductStock:
    """
    Stock-management adjustment (receiving, counts, shrinkage). Commits.

    Positive deltas create the record when missing. Negative deltas go
    through the same conditional write as checkout.
    """
    product = db.session.get(Product, product_id)
    if product is None or product.is_deleted:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError("Branch not found", details={"branch_id": branch_id})

    delta = to_stock_quantity(delta)
    try:
        if delta < 0:
            decrement_stock(product_id, branch_id, -delta)
        else:
            record = get_stock_record(product_id, branch_id)
            if record is None:
                db.session.add(ProductStock(product_id=product_id, branch_id=branch_id, quantity=delta))
            else:
                db.session.execute(
                    update(ProductStock)
                    .where(ProductStock.id == record.id)
                    .values(quantity=ProductStock.quantity + delta)
                    .execution_options(synchronize_session=False)
                )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    record = get_stock_record(product_id, branch_id)
    db.session.refresh(record)
    return record
