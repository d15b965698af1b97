"""Result store operations.

Each function performs a single statement against the ``test_results`` table
inside the caller's SQLAlchemy session.  Driver errors are logged with their
traceback and re-raised as :class:`StoreError`, whose message is safe to show
to clients.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger("uvicorn.error")

# Upper bound on rows returned by a listing
RECENT_LIMIT = 100


class StoreError(Exception):
    """Raised when the database rejects or fails an operation."""

    def __init__(self, message: str = "Database error"):
        super().__init__(message)
        self.message = message


def add_result(
    db: Session, result: schemas.TestResultCreate, owner: str | None
) -> models.TestResult:
    row = models.TestResult(
        **result.model_dump(exclude={"email"}),
        user_email=owner,
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Insert into %s failed", models.TestResult.__tablename__)
        raise StoreError() from exc
    logger.info("Stored result %s", row.id)
    return row


def recent_results(
    db: Session, owners: Iterable[str], limit: int = RECENT_LIMIT
) -> list[models.TestResult]:
    """Return the newest ``limit`` rows owned by any of ``owners``."""

    owners = list(owners)
    if not owners:
        return []
    try:
        return (
            db.query(models.TestResult)
            .filter(models.TestResult.user_email.in_(owners))
            .order_by(models.TestResult.id.desc())
            .limit(min(limit, RECENT_LIMIT))
            .all()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Fetch from %s failed", models.TestResult.__tablename__)
        raise StoreError() from exc
