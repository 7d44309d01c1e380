from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime, date
from typing import Optional, List, Dict, Any


# Task schemas
class TaskBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    scheduled_time: str = Field(default="09:00")  # HH:MM
    recurrence_pattern: str = Field(default="once")  # once, daily, weekdays, weekends, weekly, custom
    custom_recurrence_days: List[int] = Field(default_factory=list)  # 0 = Sunday ... 6 = Saturday
    category: str = Field(default="general", max_length=50)
    priority: str = Field(default="medium")  # low, medium, high


class TaskCreate(TaskBase):
    start_date: Optional[date] = None  # Defaults to today (UTC)


class TaskResponse(TaskBase):
    id: int
    user_id: str
    start_date: date
    completed: bool
    completion_history: List[str] = []
    current_streak: int = 0
    best_streak: int = 0
    last_completed_date: Optional[date] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TaskCompletionRequest(BaseModel):
    completion_date: Optional[date] = None  # Defaults to today (UTC)
    token: Optional[str] = None


class StreakInfo(BaseModel):
    task_id: int
    current_streak: int
    best_streak: int
    last_completed_date: Optional[date]
    completed_today: bool
    total_completions: int


# Event contract schemas
class ProgressContract(BaseModel):
    """Normalized inbound event payload"""
    token: str = Field(..., min_length=1, max_length=200)
    user_id: str = Field(..., min_length=1)
    source: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class AchievementSummary(BaseModel):
    id: str
    title: str
    description: str = ""
    xp_reward: int
    type: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class EventResult(BaseModel):
    """Outbound result of a forward or reverse contract"""
    success: bool
    token: str
    xp_awarded: int = 0
    leveled_up: bool = False
    current_level: int = 1
    total_xp: int = 0
    achievements_unlocked: List[AchievementSummary] = []
    pending_achievements: List[str] = []
    original_token: Optional[str] = None
    reverse_token: Optional[str] = None
    duplicate: bool = False
    already_unlocked: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# Ledger schemas
class CategoryChange(BaseModel):
    name: str
    previous_xp: int
    current_xp: int
    previous_level: int
    current_level: int
    leveled_up: bool
    milestone: Optional[str] = None


class XpChange(BaseModel):
    """Outcome of a single add_xp / reverse_xp call"""
    amount: int
    previous_xp: int
    total_xp: int
    previous_level: int
    new_level: int
    leveled_up: bool
    clamped: bool = False
    category: Optional[CategoryChange] = None


class LevelInfo(BaseModel):
    total_xp: int
    level: int
    next_level_xp: int
    xp_to_next_level: int
    progress_percent: int
    category_levels: Dict[str, int]


class BodyweightCreate(BaseModel):
    value: float = Field(..., gt=0, le=1000)
    unit: str = Field(default="kg")
    date: Optional[datetime] = None


class XpHistoryEntry(BaseModel):
    date: datetime
    amount: int
    source: str
    category: Optional[str] = None
    description: str = ""


# Achievement schemas
class CategoryLevelRequirement(BaseModel):
    category: str
    level: int = Field(..., ge=1)


class AchievementRequirement(BaseModel):
    level: Optional[int] = None
    total_xp: Optional[int] = None
    category_level: Optional[CategoryLevelRequirement] = None
    streak_count: Optional[int] = None
    nutrition_streak: Optional[int] = None
    completed_workouts: Optional[int] = None


class AchievementDefinition(BaseModel):
    id: str
    title: str
    description: str = ""
    type: str = "milestone"  # strength, consistency, nutrition, milestone
    xp_reward: int = Field(..., ge=0)
    requires_claim: bool = False
    requirements: AchievementRequirement

    def to_summary(self) -> AchievementSummary:
        return AchievementSummary(
            id=self.id,
            title=self.title,
            description=self.description,
            xp_reward=self.xp_reward,
            type=self.type,
        )


class EligibilityResult(BaseModel):
    eligible: bool
    reason: Optional[str] = None


class AchievementAwardResult(BaseModel):
    awarded: List[AchievementSummary] = []
    already_unlocked: List[str] = []
    total_xp_awarded: int = 0
    leveled_up: bool = False


class AchievementStatus(BaseModel):
    id: str
    title: str
    description: str
    type: str
    xp_reward: int
    requires_claim: bool
    unlocked: bool
    pending: bool
    progress: int


class ReverseRequest(BaseModel):
    reason: str = Field(default="User requested reversal", max_length=200)
    token: Optional[str] = None
