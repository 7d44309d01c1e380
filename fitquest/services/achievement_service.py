"""
Achievement evaluation service.
Eligibility is a pure threshold check over the ledger (plus counters carried
by the triggering event); awarding goes through the progress ledger.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session

from fitquest.models import UserProgress
from fitquest.schemas import (
    AchievementDefinition,
    AchievementAwardResult,
    AchievementStatus,
    EligibilityResult,
)
from fitquest.achievement_catalog import get_catalog, get_catalog_index
from fitquest.services.progress_service import ProgressService, level_for_xp
from fitquest.exceptions import AchievementNotFoundException, ValidationException
from fitquest.constants import SOURCE_ACHIEVEMENT

logger = logging.getLogger("fitquest.achievements")

# Requirements whose current value comes from the event context, not the ledger
CONTEXT_REQUIREMENTS = ("streak_count", "nutrition_streak", "completed_workouts")


def _category_level(progress: UserProgress, category: str) -> int:
    return ((progress.category_progress or {}).get(category) or {}).get("level", 1)


def requirement_checks(
    definition: AchievementDefinition,
    progress: UserProgress,
    context: Optional[Dict[str, Any]] = None
) -> List[Tuple[str, int, int]]:
    """
    List (label, current, required) for every requirement a definition sets.

    Context counters that are absent count as 0.
    """
    req = definition.requirements
    context = context or {}
    checks = []

    if req.level is not None:
        checks.append(("Level", level_for_xp(progress.total_xp or 0), req.level))
    if req.total_xp is not None:
        checks.append(("XP", progress.total_xp or 0, req.total_xp))
    if req.category_level is not None:
        category = req.category_level.category
        checks.append((
            f"{category.capitalize()} level",
            _category_level(progress, category),
            req.category_level.level
        ))
    for name in CONTEXT_REQUIREMENTS:
        required = getattr(req, name)
        if required is not None:
            current = context.get(name)
            checks.append((name.replace("_", " ").capitalize(), int(current or 0), required))

    return checks


def meets_requirements(
    definition: AchievementDefinition,
    progress: UserProgress,
    context: Optional[Dict[str, Any]] = None
) -> bool:
    """True if every requirement the definition sets is met"""
    return all(current >= required for _, current, required in requirement_checks(definition, progress, context))


def requirement_progress(
    definition: AchievementDefinition,
    progress: UserProgress,
    context: Optional[Dict[str, Any]] = None
) -> int:
    """Percent towards the least-advanced requirement (0-100)"""
    checks = requirement_checks(definition, progress, context)
    if not checks:
        return 100
    return min(
        100 if required <= 0 else min(100, int(current * 100 / required))
        for _, current, required in checks
    )


class AchievementService:
    """Service for achievement eligibility, awarding and claiming"""

    def __init__(
        self,
        db: Session,
        progress_service: Optional[ProgressService] = None,
        catalog: Optional[List[AchievementDefinition]] = None
    ):
        self.db = db
        self.progress_service = progress_service or ProgressService(db)
        self.catalog = catalog if catalog is not None else get_catalog()

    def get_definition(self, achievement_id: str) -> AchievementDefinition:
        """
        Look up a definition by id.

        Raises:
            AchievementNotFoundException: If the id is not in the catalog
        """
        definition = get_catalog_index(self.catalog).get(achievement_id)
        if definition is None:
            raise AchievementNotFoundException(achievement_id)
        return definition

    def check_eligibility(
        self,
        user_id: str,
        definition: AchievementDefinition,
        context: Optional[Dict[str, Any]] = None
    ) -> EligibilityResult:
        """Check whether a user can be awarded an achievement right now"""
        progress = self.progress_service.get_or_create(user_id)

        if definition.id in (progress.achievements or []):
            return EligibilityResult(eligible=False, reason="Achievement already unlocked")

        for label, current, required in requirement_checks(definition, progress, context):
            if current < required:
                return EligibilityResult(
                    eligible=False,
                    reason=f"{label} requirement not met: {current}/{required}"
                )
        return EligibilityResult(eligible=True)

    def is_unlocked(self, user_id: str, achievement_id: str) -> bool:
        progress = self.progress_service.get_progress(user_id)
        if not progress:
            return False
        return achievement_id in (progress.achievements or [])

    def find_newly_eligible(
        self,
        progress: UserProgress,
        context: Optional[Dict[str, Any]] = None
    ) -> List[AchievementDefinition]:
        """Definitions neither claimed nor pending whose requirements are met"""
        claimed = set(progress.achievements or [])
        pending = set(progress.pending_achievements or [])
        return [
            definition for definition in self.catalog
            if definition.id not in claimed
            and definition.id not in pending
            and meets_requirements(definition, progress, context)
        ]

    def award_achievements(
        self,
        progress: UserProgress,
        definitions: List[AchievementDefinition]
    ) -> AchievementAwardResult:
        """
        Claim achievements and grant their XP rewards.

        Already-claimed ids are reported as already unlocked and grant nothing.
        """
        result = AchievementAwardResult()

        for definition in definitions:
            claimed = list(progress.achievements or [])
            if definition.id in claimed:
                result.already_unlocked.append(definition.id)
                continue

            progress.achievements = claimed + [definition.id]
            progress.pending_achievements = [
                pending_id for pending_id in (progress.pending_achievements or [])
                if pending_id != definition.id
            ]

            if definition.xp_reward > 0:
                change = self.progress_service.add_xp(
                    progress,
                    definition.xp_reward,
                    SOURCE_ACHIEVEMENT,
                    description=f"Achievement unlocked: {definition.title}"
                )
                result.total_xp_awarded += definition.xp_reward
                result.leveled_up = result.leveled_up or change.leveled_up
            else:
                self.progress_service.save(progress)

            result.awarded.append(definition.to_summary())
            logger.info(f"User {progress.user_id} unlocked achievement {definition.id}")

        return result

    def mark_pending(self, progress: UserProgress, definitions: List[AchievementDefinition]) -> List[str]:
        """Queue achievements that must be claimed explicitly. Returns newly pending ids."""
        claimed = set(progress.achievements or [])
        pending = list(progress.pending_achievements or [])
        added = []

        for definition in definitions:
            if definition.id in claimed or definition.id in pending:
                continue
            pending.append(definition.id)
            added.append(definition.id)

        if added:
            progress.pending_achievements = pending
            self.progress_service.save(progress)
        return added

    def evaluate(
        self,
        progress: UserProgress,
        context: Optional[Dict[str, Any]] = None
    ) -> Tuple[AchievementAwardResult, List[str]]:
        """
        Award everything the ledger now qualifies for.

        Rewards can raise the level and unlock further achievements, so
        evaluation repeats until nothing new qualifies.

        Returns:
            Tuple of (award result, newly pending ids)
        """
        total = AchievementAwardResult()
        newly_pending: List[str] = []

        while True:
            eligible = self.find_newly_eligible(progress, context)
            if not eligible:
                break

            newly_pending.extend(self.mark_pending(progress, [d for d in eligible if d.requires_claim]))

            automatic = [d for d in eligible if not d.requires_claim]
            if not automatic:
                break

            result = self.award_achievements(progress, automatic)
            total.awarded.extend(result.awarded)
            total.total_xp_awarded += result.total_xp_awarded
            total.leveled_up = total.leveled_up or result.leveled_up

        return total, newly_pending

    def claim(
        self,
        progress: UserProgress,
        achievement_id: str,
        context: Optional[Dict[str, Any]] = None
    ) -> AchievementAwardResult:
        """
        Claim a pending (or currently eligible) achievement.

        Raises:
            AchievementNotFoundException: Unknown achievement id
            ValidationException: Achievement is neither pending nor eligible
        """
        definition = self.get_definition(achievement_id)

        if achievement_id in (progress.achievements or []):
            return AchievementAwardResult(already_unlocked=[achievement_id])

        is_pending = achievement_id in (progress.pending_achievements or [])
        if not is_pending and not meets_requirements(definition, progress, context):
            eligibility = self.check_eligibility(progress.user_id, definition, context)
            raise ValidationException("achievement_id", eligibility.reason or "Requirements not met")

        return self.award_achievements(progress, [definition])

    def get_all_with_status(
        self,
        progress: UserProgress,
        context: Optional[Dict[str, Any]] = None
    ) -> List[AchievementStatus]:
        """Catalog annotated with the user's unlocked/pending state and progress"""
        claimed = set(progress.achievements or [])
        pending = set(progress.pending_achievements or [])

        statuses = []
        for definition in self.catalog:
            unlocked = definition.id in claimed
            statuses.append(AchievementStatus(
                id=definition.id,
                title=definition.title,
                description=definition.description,
                type=definition.type,
                xp_reward=definition.xp_reward,
                requires_claim=definition.requires_claim,
                unlocked=unlocked,
                pending=definition.id in pending,
                progress=100 if unlocked else requirement_progress(definition, progress, context)
            ))
        return statuses
