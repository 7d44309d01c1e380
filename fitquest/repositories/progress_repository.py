"""
Progress repository - Data access layer for UserProgress ledgers.
"""
from typing import List, Optional
from sqlalchemy.orm import Session

from fitquest.models import UserProgress


class ProgressRepository:
    """Repository for UserProgress data access"""

    @staticmethod
    def get_by_user(db: Session, user_id: str) -> Optional[UserProgress]:
        """Get a user's ledger"""
        return db.query(UserProgress).filter(UserProgress.user_id == user_id).first()

    @staticmethod
    def get_all(db: Session) -> List[UserProgress]:
        """Get all ledgers (maintenance only)"""
        return db.query(UserProgress).order_by(UserProgress.id).all()

    @staticmethod
    def add(db: Session, progress: UserProgress) -> UserProgress:
        """Stage a ledger inside the current transaction (no commit)"""
        db.add(progress)
        db.flush()
        return progress
