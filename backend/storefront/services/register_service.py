"""
Cash session (register shift) service.

DESIGN PRINCIPLES:
- A branch may have at most one open session at a time
- Closed sessions are immutable
- Sales book one CashMovement against the newest open session
"""

from __future__ import annotations

from decimal import Decimal

from ..errors import BusinessRuleViolation, NotFoundError
from ..extensions import db
from ..formatting import utcnow
from ..models import Branch, CashSession, CashMovement
from .concurrency import lock_for_update


def get_open_cash_session(branch_id: int, *, lock: bool = False) -> CashSession | None:
    query = db.session.query(CashSession).filter_by(
        branch_id=branch_id,
        is_closed=False,
    ).order_by(CashSession.opened_at.desc(), CashSession.id.desc())
    if lock:
        query = lock_for_update(query)
    return query.first()


def open_cash_session(branch_id: int, opening_amount: Decimal, user_id: int | None = None) -> CashSession:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch not found", details={"branch_id": branch_id})
    if not branch.is_active:
        raise BusinessRuleViolation("Branch is inactive", details={"branch_id": branch_id})

    if get_open_cash_session(branch_id) is not None:
        raise BusinessRuleViolation("Branch already has an open cash session", details={"branch_id": branch_id})

    session = CashSession(
        branch_id=branch_id,
        opened_by_user_id=user_id,
        opened_at=utcnow(),
        opening_amount=opening_amount,
        is_closed=False,
    )
    db.session.add(session)
    db.session.commit()
    return session


def close_cash_session(session_id: int, closing_amount: Decimal, user_id: int | None = None) -> CashSession:
    session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
    if session is None:
        raise NotFoundError("Cash session not found", details={"cash_session_id": session_id})
    if session.is_closed:
        raise BusinessRuleViolation("Cash session already closed", details={"cash_session_id": session_id})

    session.is_closed = True
    session.closed_at = utcnow()
    session.closing_amount = closing_amount
    session.closed_by_user_id = user_id
    db.session.commit()
    return session


def record_sale_movement(
    cash_session: CashSession,
    amount: Decimal,
    *,
    description: str,
    type_of_sale: str = "ONLINE",
) -> CashMovement:
    """Append the movement for a sale. Does NOT commit (runs inside checkout)."""
    movement = CashMovement(
        cash_session_id=cash_session.id,
        movement_type="SALE",
        amount=amount,
        description=description,
        type_of_sale=type_of_sale,
    )
    db.session.add(movement)
    db.session.flush()
    return movement
