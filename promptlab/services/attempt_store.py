"""
Attempt persistence, keyed by (user_id, attempt).

=== REPLACE ON CONFLICT ===

upsert_attempt() overwrites the whole stored record for its key. There is no
version field and no lock: if two submissions for the same key run at the
same time, whichever upsert finishes last is what's stored. The unique
constraint on (user_id, attempt) is the only thing guaranteeing "at most one
record per key".

    AttemptStore (ABC)
        ├── InMemoryAttemptStore   tests, CLI
        └── SqlAttemptStore        SQLAlchemy, SQLite by default

The stores are synchronous. HTTP routes that only read or delete are plain
`def` handlers, so FastAPI runs them in its threadpool; process_attempt()
calls the store from the event loop, which blocks it for one short local
SQLite query per stage.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from promptlab.core.database import AttemptRow
from promptlab.core.errors import ServiceError
from promptlab.models.attempt import AttemptRecord

logger = logging.getLogger(__name__)


class AttemptStore(ABC):
    @abstractmethod
    def get_attempt(self, user_id: str, attempt: int) -> Optional[AttemptRecord]:
        pass

    @abstractmethod
    def upsert_attempt(self, user_id: str, attempt: int, record: AttemptRecord) -> AttemptRecord:
        pass

    @abstractmethod
    def list_attempts(self, user_id: str) -> List[AttemptRecord]:
        """All attempts of a user, ascending by attempt number."""
        pass


def _stamped(user_id: str, attempt: int, record: AttemptRecord) -> AttemptRecord:
    return record.model_copy(
        update={"user_id": user_id, "attempt": attempt, "updated_at": datetime.utcnow()}
    )


class InMemoryAttemptStore(AttemptStore):
    def __init__(self):
        self._records: Dict[Tuple[str, int], AttemptRecord] = {}

    def get_attempt(self, user_id: str, attempt: int) -> Optional[AttemptRecord]:
        return self._records.get((user_id, attempt))

    def upsert_attempt(self, user_id: str, attempt: int, record: AttemptRecord) -> AttemptRecord:
        stored = _stamped(user_id, attempt, record)
        self._records[(user_id, attempt)] = stored
        return stored

    def list_attempts(self, user_id: str) -> List[AttemptRecord]:
        return sorted(
            (r for (uid, _), r in self._records.items() if uid == user_id),
            key=lambda r: r.attempt,
        )


class SqlAttemptStore(AttemptStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_attempt(self, user_id: str, attempt: int) -> Optional[AttemptRecord]:
        try:
            with self.session_factory() as db:
                row = db.execute(
                    select(AttemptRow).where(AttemptRow.user_id == user_id, AttemptRow.attempt == attempt)
                ).scalar_one_or_none()
                return AttemptRecord.model_validate_json(row.payload) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error loading attempt {attempt} for user {user_id}: {e}")
            raise ServiceError(f"Failed to load attempt: {e}") from e

    def upsert_attempt(self, user_id: str, attempt: int, record: AttemptRecord) -> AttemptRecord:
        stored = _stamped(user_id, attempt, record)
        payload = stored.model_dump_json()
        try:
            try:
                self._write(user_id, attempt, payload)
            except IntegrityError:
                # Lost an insert race for the same key; last write wins, so overwrite
                logger.info(f"Concurrent insert for ({user_id}, {attempt}); overwriting")
                self._write(user_id, attempt, payload)
        except SQLAlchemyError as e:
            logger.error(f"Error saving attempt {attempt} for user {user_id}: {e}")
            raise ServiceError(f"Failed to save attempt: {e}") from e
        return stored

    def _write(self, user_id: str, attempt: int, payload: str):
        with self.session_factory() as db:
            row = db.execute(
                select(AttemptRow).where(AttemptRow.user_id == user_id, AttemptRow.attempt == attempt)
            ).scalar_one_or_none()
            if row:
                logger.info(f"Updating existing attempt {attempt} for user {user_id}")
                row.payload = payload
                row.updated_at = datetime.utcnow()
            else:
                logger.info(f"Creating attempt {attempt} for user {user_id}")
                db.add(AttemptRow(user_id=user_id, attempt=attempt, payload=payload))
            db.commit()

    def list_attempts(self, user_id: str) -> List[AttemptRecord]:
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(AttemptRow).where(AttemptRow.user_id == user_id).order_by(AttemptRow.attempt)
                ).scalars().all()
                return [AttemptRecord.model_validate_json(r.payload) for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error listing attempts for user {user_id}: {e}")
            raise ServiceError(f"Failed to get user attempts: {e}") from e
