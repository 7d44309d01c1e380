"""
Streak calculation over a task's completion history.
"""
from datetime import date, timedelta
from typing import Iterable, Optional

from fitquest.constants import (
    RECURRENCE_ONCE,
    RECURRENCE_DAILY,
    MAX_STREAK_LOOKBACK_DAYS,
)
from fitquest.services.date_service import DateService, DateLike


class StreakService:
    """Service for streak calculation"""

    @staticmethod
    def calculate_streak(
        completion_history: Iterable[DateLike],
        recurrence_pattern: str,
        as_of: DateLike,
        start_date: DateLike,
        custom_days: Optional[Iterable[int]] = None
    ) -> int:
        """
        Count consecutive completed due dates walking backward from as_of.

        - once: 1 if completed at all, else 0
        - daily: every day must be completed, first gap stops the walk
        - other patterns: due days must be completed, non-due days are skipped

        The walk is capped at MAX_STREAK_LOOKBACK_DAYS iterations.

        Args:
            completion_history: Completion dates (any order, duplicates allowed)
            recurrence_pattern: Task recurrence pattern
            as_of: Date the walk starts from
            start_date: Task reference date used for due checks
            custom_days: Weekday indices for the custom pattern

        Returns:
            Current streak
        """
        completed_keys = {DateService.date_key(d) for d in completion_history}
        if not completed_keys:
            return 0

        if recurrence_pattern == RECURRENCE_ONCE:
            return 1

        check_date = DateService.normalize_date(as_of)
        days = list(custom_days or [])
        streak = 0

        for _ in range(MAX_STREAK_LOOKBACK_DAYS):
            is_completed = check_date.isoformat() in completed_keys

            if recurrence_pattern == RECURRENCE_DAILY:
                if not is_completed:
                    break
                streak += 1
            elif DateService.is_due(recurrence_pattern, start_date, check_date, days):
                if not is_completed:
                    break
                streak += 1

            check_date = check_date - timedelta(days=1)

        return streak

    @staticmethod
    def update_best_streak(best_streak: int, current_streak: int) -> int:
        """Best streak never decreases"""
        return max(best_streak or 0, current_streak)

    @staticmethod
    def streak_for_task(task, as_of: date) -> int:
        """Calculate the current streak for a Task row"""
        return StreakService.calculate_streak(
            task.completion_history or [],
            task.recurrence_pattern,
            as_of,
            task.start_date,
            task.custom_recurrence_days or []
        )
