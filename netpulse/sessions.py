"""Server-side login sessions.

The browser holds a cookie signed by Starlette's ``SessionMiddleware`` that
carries nothing but an opaque session id (and, during login, the OAuth
``state``).  The provider profile lives in the ``user_sessions`` table so it
survives restarts and can be revoked by deleting the row.
"""

from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger("uvicorn.error")

# Key under which the session id is kept in the signed cookie
SESSION_KEY = "sid"


def _utcnow() -> datetime:
    # SQLite DateTime columns are naive; everything is stored in UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionManager:
    def __init__(self, max_age: int):
        self.max_age = max_age

    def create(self, db: Session, profile: schemas.UserProfile) -> str:
        sid = secrets.token_urlsafe(32)
        now = _utcnow()
        db.add(
            models.UserSession(
                id=sid,
                profile=profile.model_dump_json(),
                created_at=now,
                expires_at=now + timedelta(seconds=self.max_age),
            )
        )
        db.commit()
        return sid

    def get(self, db: Session, sid: str | None) -> schemas.UserProfile | None:
        """Return the profile stored under ``sid`` or ``None``.

        Expired rows are deleted when they are found.
        """

        if not sid:
            return None
        row = db.get(models.UserSession, sid)
        if row is None:
            return None
        if row.expires_at <= _utcnow():
            db.delete(row)
            db.commit()
            return None
        return schemas.UserProfile.model_validate(json.loads(row.profile))

    def destroy(self, db: Session, sid: str | None) -> bool:
        if not sid:
            return False
        deleted = (
            db.query(models.UserSession)
            .filter(models.UserSession.id == sid)
            .delete(synchronize_session=False)
        )
        db.commit()
        return bool(deleted)

    def purge_expired(self, db: Session) -> int:
        deleted = (
            db.query(models.UserSession)
            .filter(models.UserSession.expires_at <= _utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
