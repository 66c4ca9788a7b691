from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .domain import SessionRecord, SessionStatus
from .models import LearnStateRow, SessionRecordRow, UserAccount

logger = logging.getLogger(__name__)


def learn_state_key(learner: str) -> str:
    return f"learn_state:{learner}"


class SqlKeyValueStore:
    """String values by key. Reads never raise; writes raise SQLAlchemyError for the caller to report."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def save(self, key: str, value: str) -> None:
        with self.session_factory() as db:
            try:
                row = db.get(LearnStateRow, key)
                if not row:
                    row = LearnStateRow(key=key, value=value)
                    db.add(row)
                else:
                    row.value = value
                    row.updated_at = datetime.utcnow()
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

    def load(self, key: str) -> Optional[str]:
        try:
            with self.session_factory() as db:
                row = db.get(LearnStateRow, key)
                return row.value if row else None
        except SQLAlchemyError:
            logger.warning("Could not read %s", key, exc_info=True)
            return None

    def remove(self, key: str) -> None:
        with self.session_factory() as db:
            try:
                db.execute(delete(LearnStateRow).where(LearnStateRow.key == key))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise


class SqlRecordStore:
    """Completed session records, one row per saved attempt."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def save(self, username: str, record: SessionRecord) -> SessionRecord:
        with self.session_factory() as db:
            try:
                # Upsert the learner account so cleanup can see activity
                ua = db.get(UserAccount, username)
                if not ua:
                    db.add(UserAccount(username=username))
                else:
                    ua.updated_at = datetime.utcnow()
                db.add(SessionRecordRow(
                    id=record.id,
                    username=username,
                    topic_id=record.topic_id,
                    status=record.status.value,
                    total_score=record.total_score,
                    grade=record.grade,
                    payload=record.model_dump_json(by_alias=True),
                    created_at=record.date,
                ))
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
        logger.info("Saved session record %s for %s (%s)", record.id, username, record.status.value)
        return record

    @staticmethod
    def _parse(row: SessionRecordRow) -> Optional[SessionRecord]:
        try:
            return SessionRecord.model_validate_json(row.payload)
        except ValidationError:
            logger.warning("Skipping unreadable session record %s", row.id)
            return None

    def load_all(self, username: str, status: Optional[SessionStatus] = None) -> List[SessionRecord]:
        with self.session_factory() as db:
            q = db.query(SessionRecordRow).filter(SessionRecordRow.username == username)
            if status is not None:
                q = q.filter(SessionRecordRow.status == status.value)
            rows = q.order_by(SessionRecordRow.created_at.desc()).all()
            records = [self._parse(r) for r in rows]
        return [r for r in records if r is not None]

    def get(self, username: str, record_id: str) -> Optional[SessionRecord]:
        with self.session_factory() as db:
            row = db.get(SessionRecordRow, record_id)
            if row is None or row.username != username:
                return None
            return self._parse(row)

    def delete(self, username: str, record_id: str) -> bool:
        with self.session_factory() as db:
            res = db.execute(
                delete(SessionRecordRow).where(SessionRecordRow.id == record_id, SessionRecordRow.username == username)
            )
            db.commit()
            return (res.rowcount or 0) > 0

    def delete_all(self, username: str) -> int:
        with self.session_factory() as db:
            res = db.execute(delete(SessionRecordRow).where(SessionRecordRow.username == username))
            db.commit()
            removed = res.rowcount or 0
        logger.info("Deleted %d session records for %s", removed, username)
        return removed
