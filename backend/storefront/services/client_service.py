from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Client


@dataclass(frozen=True)
class ClientInfo:
    full_name: str | None
    phone: str | None
    document: str | None


def upsert_client(info: ClientInfo) -> Client | None:
    """
    Resolve a client by document, creating it when unknown.

    Matching clients get their name and phone refreshed. Without a
    document there is no natural key, so nothing is stored. Does NOT commit.
    """
    if not info.document:
        return None

    client = db.session.query(Client).filter_by(document=info.document, is_deleted=False).first()
    if client is not None:
        if info.full_name:
            client.full_name = info.full_name
        if info.phone:
            client.phone = info.phone
        return client

    client = Client(
        full_name=info.full_name or info.document,
        phone=info.phone,
        document=info.document,
        is_deleted=False,
    )
    db.session.add(client)
    db.session.flush()
    return client
