from __future__ import annotations

from ..extensions import db
from ..formatting import to_utc_z, money_str


class CashSession(db.Model):
    """
    Register shift for a branch.

    LIFECYCLE:
    - open (is_closed=False): sales may book cash movements against it
    - closed: immutable, no further movements

    A checkout needs an open session on its branch; the newest open one wins.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index("ix_cash_sessions_branch_closed_opened", "branch_id", "is_closed", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False)
    opening_amount = db.Column(db.Numeric(18, 2), nullable=False, default=0)

    is_closed = db.Column(db.Boolean, nullable=False, default=False, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closing_amount = db.Column(db.Numeric(18, 2), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    branch = db.relationship("Branch", backref=db.backref("cash_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "opening_amount": money_str(self.opening_amount),
            "is_closed": self.is_closed,
            "closed_at": to_utc_z(self.closed_at),
            "closing_amount": money_str(self.closing_amount),
        }


class CashMovement(db.Model):
    """
    Append-only register ledger row. One per sale, never updated.
    """
    __tablename__ = "cash_movements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, default="SALE")  # SALE
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    type_of_sale = db.Column(db.String(16), nullable=True)  # ONLINE, COUNTER

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cash_session = db.relationship("CashSession", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_session_id": self.cash_session_id,
            "movement_type": self.movement_type,
            "amount": money_str(self.amount),
            "description": self.description,
            "type_of_sale": self.type_of_sale,
            "created_at": to_utc_z(self.created_at),
        }
