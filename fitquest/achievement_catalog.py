"""
Achievement catalog.
The built-in definitions can be replaced by a JSON file named in
FITQUEST_ACHIEVEMENTS_FILE. The catalog is loaded once per process and is
read-only afterwards.
"""
import json
import logging
from typing import Dict, List, Optional

from fitquest import config
from fitquest.schemas import AchievementDefinition
from fitquest.exceptions import ValidationException

logger = logging.getLogger("fitquest.achievements")

DEFAULT_ACHIEVEMENTS = [
    # Task consistency
    {
        "id": "streak_7",
        "title": "Week Warrior",
        "description": "Maintain a 7-day task streak",
        "type": "consistency",
        "xp_reward": 70,
        "requires_claim": True,
        "requirements": {"streak_count": 7},
    },
    {
        "id": "streak_30",
        "title": "Monthly Devotion",
        "description": "Maintain a 30-day task streak",
        "type": "consistency",
        "xp_reward": 300,
        "requires_claim": True,
        "requirements": {"streak_count": 30},
    },
    {
        "id": "workouts_10",
        "title": "Workout Beginner",
        "description": "Complete 10 workouts",
        "type": "consistency",
        "xp_reward": 50,
        "requirements": {"completed_workouts": 10},
    },
    {
        "id": "workouts_50",
        "title": "Workout Regular",
        "description": "Complete 50 workouts",
        "type": "consistency",
        "xp_reward": 100,
        "requirements": {"completed_workouts": 50},
    },
    {
        "id": "workouts_100",
        "title": "Workout Expert",
        "description": "Complete 100 workouts",
        "type": "consistency",
        "xp_reward": 200,
        "requirements": {"completed_workouts": 100},
    },
    # Nutrition
    {
        "id": "nutrition_streak_7",
        "title": "Nutrition Aware",
        "description": "Meet your nutrition goal 7 days in a row",
        "type": "nutrition",
        "xp_reward": 70,
        "requirements": {"nutrition_streak": 7},
    },
    {
        "id": "nutrition_streak_30",
        "title": "Nutrition Master",
        "description": "Meet your nutrition goal 30 days in a row",
        "type": "nutrition",
        "xp_reward": 150,
        "requirements": {"nutrition_streak": 30},
    },
    # Strength
    {
        "id": "core_level_5",
        "title": "Core Strength",
        "description": "Reach level 5 in core exercises",
        "type": "strength",
        "xp_reward": 50,
        "requirements": {"category_level": {"category": "core", "level": 5}},
    },
    {
        "id": "push_level_5",
        "title": "Push Power",
        "description": "Reach level 5 in pushing exercises",
        "type": "strength",
        "xp_reward": 50,
        "requirements": {"category_level": {"category": "push", "level": 5}},
    },
    {
        "id": "pull_level_5",
        "title": "Pull Proficiency",
        "description": "Reach level 5 in pulling exercises",
        "type": "strength",
        "xp_reward": 50,
        "requirements": {"category_level": {"category": "pull", "level": 5}},
    },
    {
        "id": "legs_level_5",
        "title": "Leg Legend",
        "description": "Reach level 5 in leg exercises",
        "type": "strength",
        "xp_reward": 50,
        "requirements": {"category_level": {"category": "legs", "level": 5}},
    },
    # Milestones
    {
        "id": "global_level_5",
        "title": "Fitness Enthusiast",
        "description": "Reach level 5 in your fitness journey",
        "type": "milestone",
        "xp_reward": 50,
        "requirements": {"level": 5},
    },
    {
        "id": "global_level_10",
        "title": "Fitness Devotee",
        "description": "Reach level 10 in your fitness journey",
        "type": "milestone",
        "xp_reward": 100,
        "requirements": {"level": 10},
    },
    {
        "id": "global_level_25",
        "title": "Fitness Master",
        "description": "Reach level 25 in your fitness journey",
        "type": "milestone",
        "xp_reward": 250,
        "requirements": {"level": 25},
    },
    {
        "id": "xp_1000",
        "title": "Dedicated Athlete",
        "description": "Accumulate 1,000 XP in your fitness journey",
        "type": "milestone",
        "xp_reward": 100,
        "requirements": {"total_xp": 1000},
    },
    {
        "id": "xp_5000",
        "title": "Fitness Veteran",
        "description": "Accumulate 5,000 XP in your fitness journey",
        "type": "milestone",
        "xp_reward": 250,
        "requirements": {"total_xp": 5000},
    },
]

_catalog: Optional[List[AchievementDefinition]] = None


def parse_catalog(raw: List[dict]) -> List[AchievementDefinition]:
    """
    Validate raw achievement definitions.

    Raises:
        ValidationException: On duplicate ids
    """
    definitions = [AchievementDefinition.model_validate(item) for item in raw]
    seen = set()
    for definition in definitions:
        if definition.id in seen:
            raise ValidationException("achievements", f"Duplicate achievement id: {definition.id}")
        seen.add(definition.id)
    return definitions


def load_catalog(path: Optional[str] = None) -> List[AchievementDefinition]:
    """Load definitions from a JSON file, or the built-in list when no path is set"""
    if not path:
        return parse_catalog(DEFAULT_ACHIEVEMENTS)

    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    definitions = parse_catalog(raw)
    logger.info(f"Loaded {len(definitions)} achievements from {path}")
    return definitions


def get_catalog() -> List[AchievementDefinition]:
    """Process-wide achievement catalog"""
    global _catalog
    if _catalog is None:
        _catalog = load_catalog(config.ACHIEVEMENTS_FILE)
    return _catalog


def get_catalog_index(catalog: Optional[List[AchievementDefinition]] = None) -> Dict[str, AchievementDefinition]:
    return {definition.id: definition for definition in (catalog or get_catalog())}
