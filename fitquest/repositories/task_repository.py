"""
Task repository - Data access layer for Task model.
Handles all database queries related to tasks.
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import and_

from fitquest.models import Task


class TaskRepository:
    """Repository for Task data access"""

    @staticmethod
    def get_for_user(db: Session, user_id: str, task_id: int) -> Optional[Task]:
        """Get task by ID, only if owned by the user"""
        return db.query(Task).filter(
            and_(
                Task.id == task_id,
                Task.user_id == user_id
            )
        ).first()

    @staticmethod
    def get_all_for_user(db: Session, user_id: str, skip: int = 0, limit: int = 100) -> List[Task]:
        """Get a user's tasks with pagination"""
        return db.query(Task).filter(
            Task.user_id == user_id
        ).order_by(Task.scheduled_time).offset(skip).limit(limit).all()

    @staticmethod
    def add(db: Session, task: Task) -> Task:
        """Stage a task inside the current transaction (no commit)"""
        db.add(task)
        db.flush()
        return task

    @staticmethod
    def create(db: Session, task: Task) -> Task:
        """Create a new task"""
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    @staticmethod
    def delete(db: Session, task: Task) -> None:
        """Delete a task"""
        db.delete(task)
        db.commit()
