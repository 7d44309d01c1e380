"""
Progress ledger service.
Handles XP awards and reversals, the leveling curves, bodyweight entries and
xp_history maintenance for a user's single progress document.

Mutations only stage changes in the session; committing is left to the caller
so a whole event is applied atomically.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from fitquest.models import UserProgress
from fitquest.schemas import CategoryChange, XpChange, LevelInfo
from fitquest.repositories.progress_repository import ProgressRepository
from fitquest.services.date_service import DateService, DateLike, utc_now
from fitquest.exceptions import ValidationException, BodyweightEntryNotFoundException
from fitquest.constants import (
    LEVEL_BASE_XP,
    CATEGORY_LEVEL_BASE_XP,
    LEVEL_EXPONENT,
    CATEGORY_MILESTONES,
    CATEGORY_RANKS,
    PROGRESS_CATEGORIES,
    SOURCE_ACCOUNT_CREATION,
    WEIGHT_UNITS,
    DEFAULT_HISTORY_KEEP_DAYS,
    MIN_HISTORY_KEEP_DAYS,
    MAX_HISTORY_KEEP_DAYS,
)

logger = logging.getLogger("fitquest.progress")


def next_level_xp(level: int, base: int = LEVEL_BASE_XP) -> int:
    """Cumulative XP needed to leave a level: ceil(base * level ** 1.25)"""
    if level < 1:
        return 0
    return math.ceil(base * level ** LEVEL_EXPONENT)


def level_for_xp(total_xp: int, base: int = LEVEL_BASE_XP) -> int:
    """Smallest level L >= 1 with total_xp < next_level_xp(L)"""
    level = 1
    while total_xp >= next_level_xp(level, base):
        level += 1
    return level


def category_next_level_xp(level: int) -> int:
    return next_level_xp(level, CATEGORY_LEVEL_BASE_XP)


def category_level_for_xp(xp: int) -> int:
    return level_for_xp(xp, CATEGORY_LEVEL_BASE_XP)


def xp_to_next_level(total_xp: int) -> int:
    """XP still missing for the next level, never negative"""
    return max(0, next_level_xp(level_for_xp(total_xp)) - total_xp)


def progress_percent(total_xp: int) -> int:
    """Percent of the way through the current level (0-100)"""
    level = level_for_xp(total_xp)
    floor = next_level_xp(level - 1)
    ceiling = next_level_xp(level)
    return int((total_xp - floor) * 100 / (ceiling - floor))


def category_rank(xp: int) -> str:
    """Rank name for a category's cumulative XP"""
    rank = CATEGORY_RANKS[0][0]
    for name, threshold in CATEGORY_RANKS:
        if xp >= threshold:
            rank = name
    return rank


def crossed_milestone(previous_xp: int, current_xp: int) -> Optional[str]:
    """Highest category milestone crossed going from previous_xp to current_xp"""
    crossed = None
    for name, threshold in sorted(CATEGORY_MILESTONES.items(), key=lambda item: item[1]):
        if previous_xp < threshold <= current_xp:
            crossed = name
    return crossed


def empty_category_progress() -> Dict[str, Dict[str, int]]:
    return {category: {"level": 1, "xp": 0} for category in PROGRESS_CATEGORIES}


class ProgressService:
    """Service for the per-user progress ledger"""

    def __init__(self, db: Session):
        self.db = db
        self.progress_repo = ProgressRepository()
        self.date_service = DateService()

    # Ledger lifecycle

    def get_progress(self, user_id: str) -> Optional[UserProgress]:
        """Get a user's ledger without creating it"""
        return self.progress_repo.get_by_user(self.db, user_id)

    def get_or_create(self, user_id: str) -> UserProgress:
        """
        Get a user's ledger, creating the initial one on first access.

        The initial ledger is level 1 with zero XP and zeroed categories.
        Its history starts with a single zero-amount account_creation entry.
        """
        progress = self.progress_repo.get_by_user(self.db, user_id)
        if progress:
            return progress

        now = utc_now()
        progress = UserProgress(
            user_id=user_id,
            total_xp=0,
            level=1,
            category_progress=empty_category_progress(),
            bodyweight=[],
            xp_history=[{
                "date": now.isoformat(),
                "amount": 0,
                "source": SOURCE_ACCOUNT_CREATION,
                "category": None,
                "description": "Account created",
            }],
            daily_summaries=[],
            achievements=[],
            pending_achievements=[],
            last_updated=now,
            created_at=now,
        )
        self.progress_repo.add(self.db, progress)
        logger.info(f"Created progress ledger for user {user_id}")
        return progress

    def save(self, progress: UserProgress) -> UserProgress:
        """Stage ledger changes (the caller commits)"""
        progress.level = level_for_xp(progress.total_xp or 0)
        progress.last_updated = utc_now()
        return self.progress_repo.add(self.db, progress)

    # XP

    def _validate(self, amount: int, category: Optional[str]) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationException("amount", f"XP amount must be a positive integer, got {amount!r}")
        if category is not None and category not in PROGRESS_CATEGORIES:
            raise ValidationException("category", f"Unknown category: {category}")

    def _append_history(
        self,
        progress: UserProgress,
        amount: int,
        source: str,
        category: Optional[str],
        description: str
    ) -> None:
        entry = {
            "date": utc_now().isoformat(),
            "amount": amount,
            "source": source,
            "category": category,
            "description": description,
        }
        progress.xp_history = list(progress.xp_history or []) + [entry]

    def _apply_category(self, progress: UserProgress, category: str, delta: int) -> CategoryChange:
        categories = dict(progress.category_progress or empty_category_progress())
        current = dict(categories.get(category) or {"level": 1, "xp": 0})

        previous_xp = current.get("xp", 0)
        previous_level = current.get("level", 1)
        new_xp = max(0, previous_xp + delta)
        new_level = category_level_for_xp(new_xp)

        categories[category] = {"level": new_level, "xp": new_xp}
        progress.category_progress = categories

        return CategoryChange(
            name=category,
            previous_xp=previous_xp,
            current_xp=new_xp,
            previous_level=previous_level,
            current_level=new_level,
            leveled_up=new_level > previous_level,
            milestone=crossed_milestone(previous_xp, new_xp) if delta > 0 else None
        )

    def add_xp(
        self,
        progress: UserProgress,
        amount: int,
        source: str,
        category: Optional[str] = None,
        description: str = ""
    ) -> XpChange:
        """
        Award XP to a ledger.

        Args:
            progress: User ledger
            amount: Positive XP amount
            source: History source label
            category: Optional progress category (core, push, pull, legs)
            description: Human-readable history description

        Returns:
            XpChange with previous/new level and the category change

        Raises:
            ValidationException: Non-positive amount or unknown category
        """
        self._validate(amount, category)

        previous_xp = progress.total_xp or 0
        previous_level = level_for_xp(previous_xp)

        progress.total_xp = previous_xp + amount
        self._append_history(progress, amount, source, category, description)

        category_change = None
        if category:
            category_change = self._apply_category(progress, category, amount)
            if category_change.milestone:
                logger.info(
                    f"User {progress.user_id} reached {category_change.milestone} in {category}"
                )

        self.save(progress)
        new_level = progress.level
        if new_level > previous_level:
            logger.info(f"User {progress.user_id} leveled up: {previous_level} -> {new_level}")

        return XpChange(
            amount=amount,
            previous_xp=previous_xp,
            total_xp=progress.total_xp,
            previous_level=previous_level,
            new_level=new_level,
            leveled_up=new_level > previous_level,
            category=category_change
        )

    def reverse_xp(
        self,
        progress: UserProgress,
        amount: int,
        source: str,
        category: Optional[str] = None,
        description: str = ""
    ) -> XpChange:
        """
        Take back previously awarded XP.

        Global and category XP are floored at zero. A clamp is not an error,
        it is logged as a warning and the history records the applied amount.
        """
        self._validate(amount, category)

        previous_xp = progress.total_xp or 0
        previous_level = level_for_xp(previous_xp)

        applied = min(amount, previous_xp)
        clamped = applied < amount
        if clamped:
            logger.warning(
                f"XP reversal clamped for user {progress.user_id}: "
                f"requested {amount}, available {previous_xp}, source {source}"
            )

        progress.total_xp = previous_xp - applied
        self._append_history(progress, -applied, source, category, description)

        category_change = None
        if category:
            category_change = self._apply_category(progress, category, -amount)
            if category_change.previous_xp - category_change.current_xp < amount:
                logger.warning(
                    f"Category XP reversal clamped for user {progress.user_id} in {category}: "
                    f"requested {amount}, available {category_change.previous_xp}"
                )

        self.save(progress)
        new_level = progress.level

        return XpChange(
            amount=-applied,
            previous_xp=previous_xp,
            total_xp=progress.total_xp,
            previous_level=previous_level,
            new_level=new_level,
            leveled_up=False,
            clamped=clamped,
            category=category_change
        )

    def get_next_level_xp(self, progress: UserProgress) -> int:
        return next_level_xp(level_for_xp(progress.total_xp or 0))

    def get_xp_to_next_level(self, progress: UserProgress) -> int:
        return xp_to_next_level(progress.total_xp or 0)

    def get_progress_percent(self, progress: UserProgress) -> int:
        return progress_percent(progress.total_xp or 0)

    def get_level_info(self, progress: UserProgress) -> LevelInfo:
        """Level summary for a ledger"""
        total_xp = progress.total_xp or 0
        categories = progress.category_progress or empty_category_progress()
        return LevelInfo(
            total_xp=total_xp,
            level=level_for_xp(total_xp),
            next_level_xp=next_level_xp(level_for_xp(total_xp)),
            xp_to_next_level=xp_to_next_level(total_xp),
            progress_percent=progress_percent(total_xp),
            category_levels={
                name: (categories.get(name) or {}).get("level", 1)
                for name in PROGRESS_CATEGORIES
            }
        )

    def get_xp_history(self, progress: UserProgress, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent xp_history entries, newest first"""
        history = list(progress.xp_history or [])
        history.reverse()
        return history[:limit]

    # Bodyweight

    def add_bodyweight(
        self,
        progress: UserProgress,
        value: float,
        unit: str = "kg",
        entry_date: Optional[DateLike] = None
    ) -> Dict[str, Any]:
        """
        Append a bodyweight entry.

        Numeric strings are accepted for value; date may be a date, datetime
        or ISO string.

        Raises:
            ValidationException: Non-numeric or non-positive value, unknown
                unit or unparsable date
        """
        if isinstance(value, bool):
            raise ValidationException("value", "Weight must be a positive number")
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValidationException("value", "Weight must be a positive number")
        if not math.isfinite(value) or value <= 0:
            raise ValidationException("value", "Weight must be a positive number")
        if unit not in WEIGHT_UNITS:
            raise ValidationException("unit", f"Unit must be one of {', '.join(WEIGHT_UNITS)}")

        if entry_date is None:
            recorded_at = utc_now()
        elif isinstance(entry_date, datetime):
            recorded_at = entry_date
        else:
            try:
                normalized = self.date_service.normalize_date(entry_date)
                recorded_at = datetime.combine(normalized, datetime.min.time())
            except (TypeError, ValueError):
                raise ValidationException("date", f"Invalid date: {entry_date!r}")

        entry = {
            "id": uuid.uuid4().hex,
            "value": value,
            "unit": unit,
            "date": recorded_at.isoformat(),
        }
        progress.bodyweight = list(progress.bodyweight or []) + [entry]
        self.save(progress)
        return entry

    def remove_bodyweight(self, progress: UserProgress, entry_id: str) -> Dict[str, Any]:
        """
        Remove a bodyweight entry by id.

        Raises:
            BodyweightEntryNotFoundException: If no entry has that id
        """
        entries = list(progress.bodyweight or [])
        match = next((entry for entry in entries if entry.get("id") == entry_id), None)
        if match is None:
            raise BodyweightEntryNotFoundException(entry_id)

        progress.bodyweight = [entry for entry in entries if entry.get("id") != entry_id]
        self.save(progress)
        return match

    def get_bodyweight_history(self, progress: UserProgress) -> List[Dict[str, Any]]:
        """Bodyweight entries, newest first"""
        return sorted(progress.bodyweight or [], key=lambda entry: entry["date"], reverse=True)

    # History maintenance

    def summarize_daily_xp(self, progress: UserProgress) -> int:
        """
        Fold xp_history into per-day summaries.

        A summary for a date already present is replaced.

        Returns:
            Number of daily summaries written
        """
        grouped: Dict[str, Dict[str, Any]] = {}
        for entry in progress.xp_history or []:
            day = DateService.date_key(entry["date"])
            summary = grouped.setdefault(day, {"date": day, "total_xp": 0, "sources": {}, "categories": {}})
            amount = entry.get("amount", 0)
            summary["total_xp"] += amount

            source = entry.get("source") or "unknown"
            summary["sources"][source] = summary["sources"].get(source, 0) + amount

            category = entry.get("category")
            if category:
                summary["categories"][category] = summary["categories"].get(category, 0) + amount

        if not grouped:
            return 0

        kept = [s for s in (progress.daily_summaries or []) if s["date"] not in grouped]
        progress.daily_summaries = sorted(kept + list(grouped.values()), key=lambda s: s["date"])
        self.save(progress)
        return len(grouped)

    def purge_old_history(self, progress: UserProgress, older_than: DateLike) -> int:
        """
        Drop xp_history entries from days before older_than.

        Entries are summarized first so totals survive the purge.

        Returns:
            Number of entries removed
        """
        threshold = DateService.date_key(older_than)
        history = list(progress.xp_history or [])
        kept = [entry for entry in history if DateService.date_key(entry["date"]) >= threshold]
        removed = len(history) - len(kept)
        if removed == 0:
            return 0

        self.summarize_daily_xp(progress)
        progress.xp_history = kept
        self.save(progress)
        logger.info(f"Purged {removed} xp_history entries for user {progress.user_id}")
        return removed

    def manage_history_storage(self, progress: UserProgress, keep_days: Optional[int] = None) -> Dict[str, int]:
        """
        Summarize and purge a ledger's history, keeping keep_days of detail.

        keep_days is clamped into [7, 365] and defaults to 90.
        """
        if keep_days is None:
            keep_days = DEFAULT_HISTORY_KEEP_DAYS
        keep_days = max(MIN_HISTORY_KEEP_DAYS, min(MAX_HISTORY_KEEP_DAYS, keep_days))

        threshold = self.date_service.today_utc() - timedelta(days=keep_days)
        summaries = self.summarize_daily_xp(progress)
        removed = self.purge_old_history(progress, threshold)

        return {"keep_days": keep_days, "summaries": summaries, "removed": removed}

    def run_history_maintenance(self, keep_days: Optional[int] = None) -> int:
        """
        Run history maintenance over every ledger and commit.

        Returns:
            Total number of xp_history entries removed
        """
        total_removed = 0
        for progress in self.progress_repo.get_all(self.db):
            result = self.manage_history_storage(progress, keep_days)
            total_removed += result["removed"]
        self.db.commit()
        return total_removed
