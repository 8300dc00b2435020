"""Persistence for the session aggregate.

Each device session is stored as one opaque JSON blob keyed by a client
supplied key. The effect ledger is runtime state and is never written.
"""

import asyncio
import logging

import anyio
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Engine, Text
from sqlmodel import Field, SQLModel
from sqlmodel import Session as DbSession

from shield.core.mixins import TimestampMixin, utc_now
from shield.session.models import Session

logger = logging.getLogger(__name__)


class StoredSession(TimestampMixin, SQLModel, table=True):
    __tablename__ = "sessions"

    key: str = Field(primary_key=True, max_length=128)
    payload: str = Field(sa_type=Text)


class SessionStore:
    """Loads and saves Session blobs.

    Usage:
        store = SessionStore(get_engine())
        hydrated = asyncio.Event()
        await store.hydrate("device-1", session, hydrated)
        ...
        store.save("device-1", session)
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    def load(self, key: str) -> Session:
        """Return the persisted session, or a fresh one if none is stored."""
        with DbSession(self._engine) as db:
            row = db.get(StoredSession, key)
        if row is None:
            return Session()
        try:
            return Session.model_validate_json(row.payload)
        except PydanticValidationError:
            logger.warning("Discarding unreadable session blob for %r", key)
            return Session()

    def save(self, key: str, session: Session) -> None:
        payload = session.model_dump_json()
        with DbSession(self._engine) as db:
            row = db.get(StoredSession, key)
            if row is None:
                row = StoredSession(key=key, payload=payload)
            else:
                row.payload = payload
                row.updated_at = utc_now()
            db.add(row)
            db.commit()

    def delete(self, key: str) -> bool:
        with DbSession(self._engine) as db:
            row = db.get(StoredSession, key)
            if row is None:
                return False
            db.delete(row)
            db.commit()
        return True

    async def hydrate(self, key: str, session: Session, hydrated: asyncio.Event) -> None:
        """Load persisted state into session, then set hydrated.

        If loading fails the event stays unset, so the readiness barrier
        never opens over half-loaded state.
        """
        persisted = await anyio.to_thread.run_sync(self.load, key)
        session.is_onboarded = persisted.is_onboarded
        session.is_authenticated = persisted.is_authenticated
        session.user = persisted.user
        session.coverage_plan = persisted.coverage_plan
        session.device = persisted.device
        hydrated.set()
        logger.debug("Session %r hydrated", key)
