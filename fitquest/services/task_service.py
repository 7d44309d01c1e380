"""
Task management service.
Holds the completion state machine (pure transitions on a Task row) and the
trigger layer that turns completions into progress contracts.
"""
import logging
from datetime import date
from typing import List, Optional
from sqlalchemy.orm import Session

from fitquest.models import Task
from fitquest.schemas import TaskCreate, ProgressContract, EventResult, StreakInfo
from fitquest.repositories.task_repository import TaskRepository
from fitquest.services.date_service import DateService, DateLike, utc_now
from fitquest.services.streak_service import StreakService
from fitquest.services.event_coordinator import EventCoordinator
from fitquest.exceptions import TaskNotFoundException, ValidationException
from fitquest.constants import (
    RECURRENCE_CUSTOM,
    RECURRENCE_PATTERNS,
    TASK_PRIORITIES,
    CONTRACT_SOURCE_TASKS,
    PROGRESS_CATEGORIES,
)

logger = logging.getLogger("fitquest.tasks")

ALREADY_COMPLETED_WARNING = "task already completed on that date"


def normalize_history(task: Task) -> List[str]:
    """Make completion_history unique by date key and sorted ascending"""
    keys = sorted({DateService.date_key(d) for d in (task.completion_history or [])})
    task.completion_history = keys
    return keys


def _refresh_derived(task: Task, as_of: DateLike) -> None:
    keys = normalize_history(task)
    task.current_streak = StreakService.streak_for_task(task, as_of)
    task.best_streak = StreakService.update_best_streak(task.best_streak, task.current_streak)
    task.last_completed_date = date.fromisoformat(keys[-1]) if keys else None
    task.completed = bool(keys)


def complete_on(task: Task, day: DateLike, as_of: DateLike) -> bool:
    """
    Mark a task completed on a date.

    Args:
        task: Task row (mutated)
        day: Completion date
        as_of: Date the streak is measured at

    Returns:
        True if the date was added, False if it was already completed
    """
    key = DateService.date_key(day)
    history = list(task.completion_history or [])
    if key in history:
        _refresh_derived(task, as_of)
        return False

    # Reassign so the JSON column change is tracked
    task.completion_history = history + [key]
    _refresh_derived(task, as_of)
    return True


def uncomplete_on(task: Task, day: DateLike, as_of: DateLike) -> bool:
    """Remove a completion date. Returns True if the date was present."""
    key = DateService.date_key(day)
    history = list(task.completion_history or [])
    removed = key in history

    task.completion_history = [d for d in history if d != key]
    _refresh_derived(task, as_of)
    return removed


def refresh_streak(task: Task, as_of: DateLike) -> int:
    """Recompute derived streak fields at a date (e.g. after a missed due day)"""
    _refresh_derived(task, as_of)
    return task.current_streak


class TaskService:
    """Service for task management"""

    def __init__(self, db: Session, coordinator=None):
        self.db = db
        self.task_repo = TaskRepository()
        self.date_service = DateService()
        self.coordinator = coordinator or EventCoordinator(db)

    def get_task(self, user_id: str, task_id: int) -> Task:
        """Get a user's task, raising if it does not exist"""
        task = self.task_repo.get_for_user(self.db, user_id, task_id)
        if not task:
            raise TaskNotFoundException(task_id)
        return task

    def get_tasks(self, user_id: str, skip: int = 0, limit: int = 100) -> List[Task]:
        """Get all tasks for a user with pagination"""
        return self.task_repo.get_all_for_user(self.db, user_id, skip, limit)

    def create_task(self, user_id: str, task_data: TaskCreate) -> Task:
        """Create a new task"""
        self.date_service.parse_time(task_data.scheduled_time)

        if task_data.recurrence_pattern not in RECURRENCE_PATTERNS:
            raise ValidationException(
                "recurrence_pattern", f"Unknown pattern: {task_data.recurrence_pattern}"
            )
        if task_data.priority not in TASK_PRIORITIES:
            raise ValidationException("priority", f"Unknown priority: {task_data.priority}")

        custom_days = sorted(set(task_data.custom_recurrence_days))
        if task_data.recurrence_pattern == RECURRENCE_CUSTOM:
            if not custom_days:
                raise ValidationException(
                    "custom_recurrence_days", "Custom recurrence requires at least one day"
                )
            if any(day < 0 or day > 6 for day in custom_days):
                raise ValidationException(
                    "custom_recurrence_days", "Days must be between 0 (Sunday) and 6 (Saturday)"
                )
        else:
            custom_days = []

        task = Task(**task_data.model_dump(exclude={"start_date", "custom_recurrence_days"}))
        task.user_id = user_id
        task.custom_recurrence_days = custom_days
        task.start_date = task_data.start_date or self.date_service.today_utc()
        task.completion_history = []
        task.completed = False
        task.current_streak = 0
        task.best_streak = 0

        task = self.task_repo.create(self.db, task)
        logger.info(f"Created task {task.id} '{task.name}' for user {user_id}")
        return task

    def delete_task(self, user_id: str, task_id: int) -> None:
        """Delete a task"""
        task = self.get_task(user_id, task_id)
        self.task_repo.delete(self.db, task)

    def is_due(self, task: Task, day: DateLike) -> bool:
        """Check whether a task is due on a date"""
        return self.date_service.is_due(
            task.recurrence_pattern,
            task.start_date,
            day,
            task.custom_recurrence_days or []
        )

    def get_due_tasks(self, user_id: str, day: Optional[DateLike] = None) -> List[Task]:
        """Get the user's tasks due on a date (default today)"""
        check_date = self.date_service.normalize_date(day) if day else self.date_service.today_utc()
        return [
            task for task in self.task_repo.get_all_for_user(self.db, user_id, limit=1000)
            if self.is_due(task, check_date)
        ]

    def get_streak_info(self, user_id: str, task_id: int, today: Optional[date] = None) -> StreakInfo:
        """Get streak information for a task"""
        task = self.get_task(user_id, task_id)
        today = today or self.date_service.today_utc()
        history = task.completion_history or []

        return StreakInfo(
            task_id=task.id,
            current_streak=StreakService.streak_for_task(task, today),
            best_streak=task.best_streak or 0,
            last_completed_date=task.last_completed_date,
            completed_today=today.isoformat() in history,
            total_completions=len(history)
        )

    def _progress_category(self, task: Task) -> Optional[str]:
        return task.category if task.category in PROGRESS_CATEGORIES else None

    def _already_completed(
        self,
        user_id: str,
        task_id: int,
        completion_date: date,
        token: Optional[str]
    ) -> EventResult:
        """
        Result for completing a date that is already completed.

        A retried token replays its recorded result; anything else awards
        nothing and carries a warning.
        """
        if token and self.coordinator.event_repo.get_by_token(self.db, token):
            return self.coordinator.process(ProgressContract(
                token=token,
                user_id=user_id,
                source=CONTRACT_SOURCE_TASKS,
                action="task_completed",
                metadata={"task_id": str(task_id), "completion_date": completion_date.isoformat()}
            ))

        logger.info(f"Task {task_id} already completed on {completion_date.isoformat()} for user {user_id}")
        progress = self.coordinator.progress_service.get_progress(user_id)
        return EventResult(
            success=True,
            token=token or self.coordinator.generate_token(),
            xp_awarded=0,
            current_level=progress.level if progress else 1,
            total_xp=progress.total_xp if progress else 0,
            warning=ALREADY_COMPLETED_WARNING,
        )

    def complete_task(
        self,
        user_id: str,
        task_id: int,
        day: Optional[DateLike] = None,
        token: Optional[str] = None,
        today: Optional[date] = None
    ) -> EventResult:
        """
        Complete a task on a date and award XP for it.

        The task change and the ledger change share one transaction: both are
        committed by the event coordinator, or both are rolled back.

        Raises:
            TaskNotFoundException: If the task does not exist
            ValidationException: If the task is not due on that date
        """
        task = self.get_task(user_id, task_id)
        today = today or self.date_service.today_utc()
        completion_date = self.date_service.normalize_date(day) if day else today

        if not self.is_due(task, completion_date):
            raise ValidationException(
                "completion_date",
                f"Task {task_id} is not due on {completion_date.isoformat()}"
            )

        previous_streak = task.current_streak or 0
        previous_total = len(task.completion_history or [])

        if not complete_on(task, completion_date, today):
            self.db.rollback()
            return self._already_completed(user_id, task_id, completion_date, token)

        self.task_repo.add(self.db, task)

        contract = ProgressContract(
            token=token or self.coordinator.generate_token(),
            user_id=user_id,
            source=CONTRACT_SOURCE_TASKS,
            action="task_completed",
            timestamp=utc_now(),
            metadata={
                "task_id": str(task.id),
                "task_name": task.name,
                "completion_date": completion_date.isoformat(),
                "streak_count": task.current_streak,
                "previous_streak": previous_streak,
                "previous_total_completions": previous_total,
                "category": self._progress_category(task),
            }
        )
        result = self.coordinator.process(contract)
        if result.success:
            self.db.refresh(task)
        return result

    def uncomplete_task(
        self,
        user_id: str,
        task_id: int,
        day: Optional[DateLike] = None,
        token: Optional[str] = None,
        today: Optional[date] = None
    ) -> EventResult:
        """
        Remove a completion and reverse the XP it awarded.

        Without a token the original award is found by task id and
        completion date within the reversal lookback window.
        """
        task = self.get_task(user_id, task_id)
        today = today or self.date_service.today_utc()
        completion_date = self.date_service.normalize_date(day) if day else today

        previous_streak = task.current_streak or 0
        uncomplete_on(task, completion_date, today)
        self.task_repo.add(self.db, task)

        metadata = {
            "task_id": str(task.id),
            "task_name": task.name,
            "completion_date": completion_date.isoformat(),
            "streak_count": task.current_streak,
            "previous_streak": previous_streak,
        }
        if token:
            metadata["original_token"] = token

        contract = ProgressContract(
            token=self.coordinator.generate_token(),
            user_id=user_id,
            source=CONTRACT_SOURCE_TASKS,
            action="reverse_task_completed",
            timestamp=utc_now(),
            metadata=metadata
        )
        result = self.coordinator.process(contract)
        if result.success:
            self.db.refresh(task)
        return result
