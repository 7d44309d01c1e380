"""
Event repository - Data access layer for event/idempotency records.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_, func

from fitquest.models import EventRecord
from fitquest.constants import EVENT_STATUS_COMPLETED, EVENT_STATUS_REVERSED


class EventRepository:
    """Repository for EventRecord data access"""

    @staticmethod
    def get_by_token(db: Session, token: str) -> Optional[EventRecord]:
        """Get event record by token"""
        return db.query(EventRecord).filter(EventRecord.token == token).first()

    @staticmethod
    def find_task_events(
        db: Session,
        user_id: str,
        task_id: str,
        action: str,
        start_time: datetime,
        end_time: datetime,
        limit: int = 100
    ) -> List[EventRecord]:
        """Get completed (not reversed) events for a task in a time window, newest first"""
        return db.query(EventRecord).filter(
            and_(
                EventRecord.user_id == user_id,
                EventRecord.task_id == task_id,
                EventRecord.action == action,
                EventRecord.status == EVENT_STATUS_COMPLETED,
                EventRecord.timestamp >= start_time,
                EventRecord.timestamp <= end_time
            )
        ).order_by(EventRecord.timestamp.desc(), EventRecord.id.desc()).limit(limit).all()

    @staticmethod
    def count_for_user(db: Session, user_id: str, status: Optional[str] = None) -> int:
        """Count a user's events, optionally by status"""
        query = db.query(EventRecord).filter(EventRecord.user_id == user_id)
        if status is not None:
            query = query.filter(EventRecord.status == status)
        return query.count()

    @staticmethod
    def count_reversible(db: Session, user_id: str, excluded_actions: tuple = ()) -> int:
        """Count forward events that can still be reversed"""
        query = db.query(EventRecord).filter(
            and_(
                EventRecord.user_id == user_id,
                EventRecord.status == EVENT_STATUS_COMPLETED,
                EventRecord.original_token.is_(None),
                ~EventRecord.action.like("reverse_%")
            )
        )
        if excluded_actions:
            query = query.filter(EventRecord.action.notin_(excluded_actions))
        return query.count()

    @staticmethod
    def sum_xp(db: Session, user_id: str) -> int:
        """Net XP over all events that are still in effect"""
        total = db.query(func.sum(EventRecord.xp_awarded)).filter(
            and_(
                EventRecord.user_id == user_id,
                EventRecord.status != EVENT_STATUS_REVERSED,
                EventRecord.original_token.is_(None)
            )
        ).scalar()
        return int(total or 0)

    @staticmethod
    def add(db: Session, record: EventRecord) -> EventRecord:
        """Stage a record inside the current transaction (no commit)"""
        db.add(record)
        db.flush()
        return record
