from __future__ import annotations

from ..extensions import db
from ..formatting import to_utc_z


class Client(db.Model):
    """Storefront customer, keyed by document (national id / tax id)."""
    __tablename__ = "clients"
    __table_args__ = (
        db.Index("ix_clients_document_deleted", "document", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    document = db.Column(db.String(32), nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "phone": self.phone,
            "document": self.document,
            "created_at": to_utc_z(self.created_at),
        }
