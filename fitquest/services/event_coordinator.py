"""
Event coordinator.
Turns progress contracts into ledger changes and records each one under its
token so retries are idempotent and awards can be reversed later.

process() is the only place failures are shaped into results: component
errors propagate up to it, the session is rolled back and a result carrying
a stable error code is returned.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fitquest.models import EventRecord, UserProgress
from fitquest.schemas import ProgressContract, EventResult
from fitquest.repositories.event_repository import EventRepository
from fitquest.services.date_service import utc_now
from fitquest.services.progress_service import ProgressService
from fitquest.services.achievement_service import AchievementService, CONTEXT_REQUIREMENTS
from fitquest.exceptions import (
    FitQuestException,
    ValidationException,
    EventNotFoundException,
    ReversalFailedException,
    DatabaseException,
)
from fitquest.constants import (
    XP_TASK_COMPLETION,
    XP_STREAK_MILESTONES,
    XP_WORKOUT_COMPLETION,
    XP_EXERCISE_MASTERY,
    XP_NUTRITION_GOAL_MET,
    XP_WEIGHT_LOGGED,
    WORKOUT_DIFFICULTY_MULTIPLIERS,
    WORKOUT_SECONDARY_CATEGORY_SHARE,
    SOURCE_TASK_COMPLETION,
    SOURCE_WORKOUT_COMPLETION,
    SOURCE_EXERCISE_MASTERY,
    SOURCE_NUTRITION,
    SOURCE_WEIGHT_LOG,
    REVERSAL_SOURCE_PREFIX,
    EVENT_STATUS_COMPLETED,
    EVENT_STATUS_REVERSED,
    TOKEN_PREFIX,
    REVERSAL_LOOKBACK_DAYS,
    REVERSAL_LOOKBACK_LIMIT,
    ERR_VALIDATION,
    ERR_INTERNAL,
)

logger = logging.getLogger("fitquest.events")

REVERSE_PREFIX = "reverse_"
NO_ORIGINAL_WARNING = "no original event found"


class ActionType(str, Enum):
    """Closed set of contract actions"""
    TASK_COMPLETED = "task_completed"
    WORKOUT_COMPLETED = "workout_completed"
    EXERCISE_MASTERED = "exercise_mastered"
    NUTRITION_GOAL_MET = "nutrition_goal_met"
    WEIGHT_LOGGED = "weight_logged"
    ACHIEVEMENT_CLAIMED = "achievement_claimed"

    REVERSE_TASK_COMPLETED = "reverse_task_completed"
    REVERSE_WORKOUT_COMPLETED = "reverse_workout_completed"
    REVERSE_EXERCISE_MASTERED = "reverse_exercise_mastered"
    REVERSE_NUTRITION_GOAL_MET = "reverse_nutrition_goal_met"
    REVERSE_WEIGHT_LOGGED = "reverse_weight_logged"
    REVERSE_ACHIEVEMENT_CLAIMED = "reverse_achievement_claimed"

    @property
    def is_reverse(self) -> bool:
        return self.value.startswith(REVERSE_PREFIX)

    @property
    def forward(self) -> "ActionType":
        """Forward action this one undoes (itself for forward actions)"""
        if self.is_reverse:
            return ActionType(self.value[len(REVERSE_PREFIX):])
        return self

    @property
    def reverse(self) -> "ActionType":
        if self.is_reverse:
            return self
        return ActionType(REVERSE_PREFIX + self.value)

    @classmethod
    def resolve(cls, action: str) -> "ActionType":
        """
        Map a contract action string to an ActionType.

        Raises:
            ValidationException: Unknown action
        """
        try:
            return cls(action)
        except ValueError:
            raise ValidationException("action", f"Unknown action: {action}")


def _naive_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return utc_now()
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _award(amount: int, source: str, category: Optional[str], description: str) -> Dict[str, Any]:
    return {"amount": amount, "source": source, "category": category, "description": description}


def _int_field(metadata: Dict[str, Any], key: str) -> int:
    """Read a non-negative integer metadata field; missing means 0"""
    value = metadata.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValidationException(f"metadata.{key}", f"{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationException(f"metadata.{key}", f"{key} must be an integer")
    if number != value and str(number) != str(value).strip():
        raise ValidationException(f"metadata.{key}", f"{key} must be an integer")
    if number < 0:
        raise ValidationException(f"metadata.{key}", f"{key} cannot be negative")
    return number


def _category_list(metadata: Dict[str, Any]) -> List[str]:
    categories = metadata.get("categories")
    if categories is None or categories == []:
        category = metadata.get("category")
        return [category] if category else []
    if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
        raise ValidationException("metadata.categories", "categories must be a list of category names")
    return categories


def task_completion_xp(streak_count: int) -> int:
    """Base task XP plus the bonus for landing exactly on a streak milestone"""
    return XP_TASK_COMPLETION + XP_STREAK_MILESTONES.get(streak_count or 0, 0)


def workout_awards(difficulty: str, categories: List[str], title: str = "") -> List[Dict[str, Any]]:
    """
    Split workout XP across categories.

    The first category gets the full award, every further one a 30% share.

    Raises:
        ValidationException: Unknown difficulty
    """
    multiplier = WORKOUT_DIFFICULTY_MULTIPLIERS.get(difficulty) if isinstance(difficulty, str) else None
    if multiplier is None:
        raise ValidationException("metadata.difficulty", f"Unknown difficulty: {difficulty}")

    amount = math.floor(XP_WORKOUT_COMPLETION * multiplier)
    description = f"Completed workout: {title}" if title else "Completed workout"
    if not categories:
        return [_award(amount, SOURCE_WORKOUT_COMPLETION, None, description)]

    awards = [_award(amount, SOURCE_WORKOUT_COMPLETION, categories[0], description)]
    secondary = math.floor(amount * WORKOUT_SECONDARY_CATEGORY_SHARE)
    if secondary > 0:
        for category in categories[1:]:
            awards.append(_award(secondary, SOURCE_WORKOUT_COMPLETION, category, description))
    return awards


class EventCoordinator:
    """Coordinates contract processing across the ledger, achievements and event records"""

    def __init__(
        self,
        db: Session,
        progress_service: Optional[ProgressService] = None,
        achievement_service: Optional[AchievementService] = None,
        event_repo: Optional[EventRepository] = None
    ):
        self.db = db
        self.progress_service = progress_service or ProgressService(db)
        self.achievement_service = achievement_service or AchievementService(db, self.progress_service)
        self.event_repo = event_repo or EventRepository()

    @staticmethod
    def generate_token() -> str:
        return f"{TOKEN_PREFIX}{uuid.uuid4().hex}"

    # Boundary

    def process(self, contract: Union[ProgressContract, Dict[str, Any]]) -> EventResult:
        """
        Process one contract to completion, atomically.

        Args:
            contract: ProgressContract or its raw (camelCase or snake_case) dict

        Returns:
            EventResult; failures carry success=False and an error code
        """
        token = contract.get("token") if isinstance(contract, dict) else contract.token
        token = token if isinstance(token, str) else ""

        try:
            if isinstance(contract, dict):
                contract = ProgressContract.model_validate(contract)
            action = ActionType.resolve(contract.action)

            existing = self.event_repo.get_by_token(self.db, contract.token)
            if existing:
                result = self._replay(existing, contract)
            elif action.is_reverse:
                result = self._process_reverse(contract, action)
            else:
                result = self._process_forward(contract, action)

            self.db.commit()
            return result

        except FitQuestException as e:
            self.db.rollback()
            logger.warning(f"Event {token} rejected ({e.code}): {e}")
            return self._failure(token, str(e), e.code)
        except ValidationError as e:
            self.db.rollback()
            logger.warning(f"Event {token} has an invalid contract: {e.error_count()} error(s)")
            return self._failure(token, f"Invalid contract: {e.errors()[0]['msg']}", ERR_VALIDATION)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error processing event {token}: {e}", exc_info=True)
            error = DatabaseException("transaction", e.__class__.__name__)
            return self._failure(token, str(error), error.code)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Unexpected error processing event {token}: {e}", exc_info=True)
            return self._failure(token, "Internal error while processing event", ERR_INTERNAL)

    def reverse(
        self,
        user_id: str,
        original_token: str,
        reason: str = "",
        token: Optional[str] = None
    ) -> EventResult:
        """Reverse a recorded event by its token"""
        reverse_token = token or self.generate_token()
        original = self.event_repo.get_by_token(self.db, original_token)
        if not original or original.user_id != user_id:
            error = EventNotFoundException(original_token)
            logger.warning(f"Reverse {reverse_token} rejected ({error.code}): {error}")
            return self._failure(reverse_token, str(error), error.code)

        action = original.action if original.action.startswith(REVERSE_PREFIX) else REVERSE_PREFIX + original.action
        return self.process(ProgressContract(
            token=reverse_token,
            user_id=user_id,
            source=original.source,
            action=action,
            timestamp=utc_now(),
            metadata={"original_token": original_token, "reason": reason}
        ))

    def _failure(self, token: str, message: str, code: str) -> EventResult:
        return EventResult(success=False, token=token or "", error=message, error_code=code)

    def _replay(self, record: EventRecord, contract: ProgressContract) -> EventResult:
        if record.user_id != contract.user_id:
            raise ValidationException("token", "Token already used by another user")

        logger.info(f"Duplicate event token {record.token}, returning recorded result")
        result = EventResult.model_validate(record.result or {"success": True, "token": record.token})
        return result.model_copy(update={"duplicate": True})

    # Forward path

    def _forward_awards(
        self,
        progress: UserProgress,
        contract: ProgressContract,
        action: ActionType
    ) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        """Resolve the XP awards for a forward action. Returns (awards, extra record metadata)."""
        metadata = contract.metadata
        category = metadata.get("category")

        if action == ActionType.TASK_COMPLETED:
            streak_count = _int_field(metadata, "streak_count")
            task_name = metadata.get("task_name", "task")
            description = f"Completed task: {task_name}"
            if streak_count > 0:
                description += f" ({streak_count} day streak)"
            return [_award(task_completion_xp(streak_count), SOURCE_TASK_COMPLETION, category, description)], {}

        if action == ActionType.WORKOUT_COMPLETED:
            difficulty = metadata.get("difficulty", "medium")
            return workout_awards(difficulty, _category_list(metadata), metadata.get("title", "")), {}

        if action == ActionType.EXERCISE_MASTERED:
            if not category:
                raise ValidationException("metadata.category", "Exercise mastery requires a category")
            name = metadata.get("exercise_name", "exercise")
            return [_award(XP_EXERCISE_MASTERY, SOURCE_EXERCISE_MASTERY, category, f"Mastered {name}")], {}

        if action == ActionType.NUTRITION_GOAL_MET:
            return [_award(XP_NUTRITION_GOAL_MET, SOURCE_NUTRITION, None, "Met nutrition goal")], {}

        if action == ActionType.WEIGHT_LOGGED:
            entry = self.progress_service.add_bodyweight(
                progress,
                metadata.get("value"),
                metadata.get("unit", "kg"),
                metadata.get("date")
            )
            description = f"Logged bodyweight: {entry['value']} {entry['unit']}"
            return [_award(XP_WEIGHT_LOGGED, SOURCE_WEIGHT_LOG, None, description)], {"bodyweight_entry_id": entry["id"]}

        raise ValidationException("action", f"No award rule for {action.value}")

    def _process_forward(self, contract: ProgressContract, action: ActionType) -> EventResult:
        for key in CONTEXT_REQUIREMENTS:
            _int_field(contract.metadata, key)

        progress = self.progress_service.get_or_create(contract.user_id)
        previous_level = progress.level or 1
        extra: Dict[str, Any] = {}
        already_unlocked = False

        if action == ActionType.ACHIEVEMENT_CLAIMED:
            achievement_id = contract.metadata.get("achievement_id")
            if not achievement_id or not isinstance(achievement_id, str):
                raise ValidationException("metadata.achievement_id", "Achievement id is required")
            claim = self.achievement_service.claim(progress, achievement_id, contract.metadata)
            awards: List[Dict[str, Any]] = []
            xp_awarded = claim.total_xp_awarded
            unlocked = list(claim.awarded)
            already_unlocked = bool(claim.already_unlocked)
        else:
            awards, extra = self._forward_awards(progress, contract, action)
            for award in awards:
                self.progress_service.add_xp(
                    progress, award["amount"], award["source"], award["category"], award["description"]
                )
            xp_awarded = sum(award["amount"] for award in awards)
            unlocked = []

        evaluation, pending = self.achievement_service.evaluate(progress, contract.metadata)
        unlocked.extend(evaluation.awarded)

        result = EventResult(
            success=True,
            token=contract.token,
            xp_awarded=xp_awarded,
            leveled_up=progress.level > previous_level,
            current_level=progress.level,
            total_xp=progress.total_xp,
            achievements_unlocked=unlocked,
            pending_achievements=pending,
            already_unlocked=already_unlocked,
        )
        self._record(contract, action, xp_awarded, awards, result, extra=extra)

        logger.info(
            f"Processed {action.value} {contract.token} for user {contract.user_id}: "
            f"+{xp_awarded} XP, level {progress.level}"
        )
        return result

    # Reverse path

    def _locate_original(self, contract: ProgressContract, action: ActionType) -> Optional[EventRecord]:
        """
        Find the forward event a reverse contract undoes.

        An explicit original_token must exist. Without one, task completions
        are matched by task id (and completion date) within the lookback
        window, most recent first; None means nothing matched.
        """
        metadata = contract.metadata
        original_token = metadata.get("original_token")

        if original_token:
            if not isinstance(original_token, str):
                raise ValidationException("metadata.original_token", "original_token must be a string")
            original = self.event_repo.get_by_token(self.db, original_token)
            if not original or original.user_id != contract.user_id:
                raise EventNotFoundException(original_token)
            if original.original_token:
                raise ReversalFailedException(original_token, "reverse events cannot be reversed")
            if original.action != action.forward.value:
                raise ReversalFailedException(
                    original_token, f"event is {original.action}, not {action.forward.value}"
                )
            task_id = metadata.get("task_id")
            if task_id is not None and original.task_id is not None and str(task_id) != original.task_id:
                raise ReversalFailedException(
                    original_token, f"event belongs to task {original.task_id}, not {task_id}"
                )
            return original

        task_id = metadata.get("task_id")
        if action.forward == ActionType.TASK_COMPLETED and task_id is not None:
            end_time = _naive_utc(contract.timestamp)
            candidates = self.event_repo.find_task_events(
                self.db,
                contract.user_id,
                str(task_id),
                ActionType.TASK_COMPLETED.value,
                end_time - timedelta(days=REVERSAL_LOOKBACK_DAYS),
                end_time,
                REVERSAL_LOOKBACK_LIMIT
            )
            completion_date = metadata.get("completion_date")
            if completion_date:
                candidates = [
                    record for record in candidates
                    if (record.event_metadata or {}).get("completion_date") == completion_date
                ]
            return candidates[0] if candidates else None

        raise ValidationException(
            "metadata.original_token", f"An original token is required to reverse {action.forward.value}"
        )

    def _process_reverse(self, contract: ProgressContract, action: ActionType) -> EventResult:
        original = self._locate_original(contract, action)
        progress = self.progress_service.get_or_create(contract.user_id)

        if original is None:
            logger.warning(
                f"Reverse {contract.token} for user {contract.user_id}: {NO_ORIGINAL_WARNING} "
                f"(task {contract.metadata.get('task_id')}), applying state change only"
            )
            result = EventResult(
                success=True,
                token=contract.token,
                xp_awarded=0,
                current_level=progress.level,
                total_xp=progress.total_xp,
                reverse_token=contract.token,
                warning=NO_ORIGINAL_WARNING,
            )
            self._record(contract, action, 0, [], result)
            return result

        if original.status == EVENT_STATUS_REVERSED:
            raise ReversalFailedException(original.token, "event already reversed")
        if original.action == ActionType.ACHIEVEMENT_CLAIMED.value:
            raise ReversalFailedException(original.token, "achievement claims cannot be reversed")

        try:
            reversed_awards = self._reverse_awards(progress, original)
        except SQLAlchemyError as e:
            raise ReversalFailedException(original.token, f"ledger update failed: {e}") from e

        applied = sum(award["amount"] for award in reversed_awards)
        original.status = EVENT_STATUS_REVERSED
        original.reversed_at = utc_now()
        original.reversed_by_token = contract.token
        self.event_repo.add(self.db, original)

        result = EventResult(
            success=True,
            token=contract.token,
            xp_awarded=applied,
            leveled_up=False,
            current_level=progress.level,
            total_xp=progress.total_xp,
            original_token=original.token,
            reverse_token=contract.token,
        )
        self._record(contract, action, applied, reversed_awards, result, original=original)

        logger.info(
            f"Reversed {original.action} {original.token} with {contract.token} "
            f"for user {contract.user_id}: {applied} XP"
        )
        return result

    def _reverse_awards(self, progress: UserProgress, original: EventRecord) -> List[Dict[str, Any]]:
        """
        Undo the awards recorded on the original event.

        Only the event's own awards are reversed. XP from achievements the
        event unlocked, and the achievements themselves, stay on the ledger,
        so total_xp returns to its pre-event value only when the event
        unlocked nothing. A recorded bodyweight entry is removed as well.
        """
        reversed_awards = []
        for award in original.awards or []:
            source = REVERSAL_SOURCE_PREFIX + award["source"]
            description = f"Reversed: {award.get('description', '')}".strip()
            change = self.progress_service.reverse_xp(
                progress, award["amount"], source, award.get("category"), description
            )
            reversed_awards.append(_award(change.amount, source, award.get("category"), description))

        entry_id = (original.event_metadata or {}).get("bodyweight_entry_id")
        if entry_id:
            if any(entry.get("id") == entry_id for entry in progress.bodyweight or []):
                self.progress_service.remove_bodyweight(progress, entry_id)
            else:
                logger.warning(f"Bodyweight entry {entry_id} of {original.token} already removed")

        return reversed_awards

    # Records

    def _record(
        self,
        contract: ProgressContract,
        action: ActionType,
        xp_awarded: int,
        awards: List[Dict[str, Any]],
        result: EventResult,
        extra: Optional[Dict[str, Any]] = None,
        original: Optional[EventRecord] = None
    ) -> EventRecord:
        metadata = dict(contract.metadata)
        metadata.update(extra or {})

        task_id = metadata.get("task_id")
        if task_id is None and original is not None:
            task_id = original.task_id

        record = EventRecord(
            token=contract.token,
            user_id=contract.user_id,
            source=contract.source,
            action=action.value,
            timestamp=_naive_utc(contract.timestamp),
            event_metadata=metadata,
            task_id=str(task_id) if task_id is not None else None,
            xp_awarded=xp_awarded,
            awards=awards,
            result=result.model_dump(mode="json"),
            status=EVENT_STATUS_COMPLETED,
            original_token=original.token if original is not None else None,
        )
        return self.event_repo.add(self.db, record)

    # Queries

    def can_reverse(self, token: str, user_id: str) -> Dict[str, Any]:
        """Check whether a recorded event can still be reversed"""
        record = self.event_repo.get_by_token(self.db, token)
        if not record or record.user_id != user_id:
            return {"can_reverse": False, "reason": "Event not found"}
        if record.original_token:
            return {"can_reverse": False, "reason": "Reverse events cannot be reversed"}
        if record.action == ActionType.ACHIEVEMENT_CLAIMED.value:
            return {"can_reverse": False, "reason": "Achievement claims cannot be reversed"}
        if record.status == EVENT_STATUS_REVERSED:
            return {"can_reverse": False, "reason": "Event already reversed"}
        return {"can_reverse": True}

    def get_event_stats(self, user_id: str) -> Dict[str, int]:
        """Event counts and net XP for a user"""
        return {
            "total_events": self.event_repo.count_for_user(self.db, user_id),
            "reversed_events": self.event_repo.count_for_user(self.db, user_id, EVENT_STATUS_REVERSED),
            "reversible_events": self.event_repo.count_reversible(
                self.db, user_id, (ActionType.ACHIEVEMENT_CLAIMED.value,)
            ),
            "net_xp": self.event_repo.sum_xp(self.db, user_id),
        }
