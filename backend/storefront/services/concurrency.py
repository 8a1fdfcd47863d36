# Overview: Locking and retry primitives shared by the checkout and webhook units of work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns and BEGIN IMMEDIATE carry the serialization instead.
    """
    return query.with_for_update()


def begin_serialized() -> None:
    """
    Take the database write lock up front on SQLite.

    Other dialects rely on row locks and conditional writes, so this is
    a no-op there.
    """
    if db.engine.dialect.name != "sqlite":
        return
    if not current_app.config.get("SQLITE_BEGIN_IMMEDIATE", True):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, sleep=time.sleep):
    """
    Execute a unit of work, retrying on concurrency conflicts.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (another writer bumped a version_id first). The session
    is rolled back before every retry so func always starts clean.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrency conflict, retrying unit of work (attempt %s/%s)", attempt + 1, attempts
            )
            sleep(backoff_base * (2 ** attempt))
