"""
Application constants: recurrence patterns, XP reward table, leveling scales
and history limits.
"""

# Infrastructure defaults
DEFAULT_DATABASE_URL = "sqlite:///./fitquest.db"
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/fitquest"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"

# Recurrence patterns
RECURRENCE_ONCE = "once"
RECURRENCE_DAILY = "daily"
RECURRENCE_WEEKDAYS = "weekdays"
RECURRENCE_WEEKENDS = "weekends"
RECURRENCE_WEEKLY = "weekly"
RECURRENCE_CUSTOM = "custom"

RECURRENCE_PATTERNS = (
    RECURRENCE_ONCE,
    RECURRENCE_DAILY,
    RECURRENCE_WEEKDAYS,
    RECURRENCE_WEEKENDS,
    RECURRENCE_WEEKLY,
    RECURRENCE_CUSTOM,
)

# Weekday indices used by custom recurrence: 0 = Sunday ... 6 = Saturday
SUNDAY = 0
SATURDAY = 6

TASK_PRIORITIES = ("low", "medium", "high")
DEFAULT_TASK_CATEGORY = "general"

# Streak walk is bounded
MAX_STREAK_LOOKBACK_DAYS = 365

# Progress categories
CATEGORY_CORE = "core"
CATEGORY_PUSH = "push"
CATEGORY_PULL = "pull"
CATEGORY_LEGS = "legs"
PROGRESS_CATEGORIES = (CATEGORY_CORE, CATEGORY_PUSH, CATEGORY_PULL, CATEGORY_LEGS)

# Leveling: xp needed to leave level L is ceil(base * L ** exponent)
LEVEL_BASE_XP = 100
CATEGORY_LEVEL_BASE_XP = 50
LEVEL_EXPONENT = 1.25

# Category XP milestones (crossing one is reported with the category update)
CATEGORY_MILESTONES = {
    "beginner": 500,
    "intermediate": 1500,
    "advanced": 3000,
    "expert": 6000,
    "master": 10000,
    "grandmaster": 20000,
}

CATEGORY_RANKS = (
    ("Novice", 0),
    ("Beginner", 500),
    ("Intermediate", 1500),
    ("Advanced", 3000),
    ("Expert", 6000),
    ("Master", 10000),
    ("Grandmaster", 20000),
)

# XP rewards
XP_TASK_COMPLETION = 10
XP_STREAK_MILESTONES = {7: 25, 30: 100, 100: 500}
XP_WORKOUT_COMPLETION = 50
XP_EXERCISE_MASTERY = 100
XP_NUTRITION_GOAL_MET = 20
XP_WEIGHT_LOGGED = 5

WORKOUT_DIFFICULTY_MULTIPLIERS = {"easy": 0.75, "medium": 1.0, "hard": 1.5}
WORKOUT_SECONDARY_CATEGORY_SHARE = 0.3

# XP history sources
SOURCE_ACCOUNT_CREATION = "account_creation"
SOURCE_ACHIEVEMENT = "achievement"
SOURCE_TASK_COMPLETION = "task_completion"
SOURCE_WORKOUT_COMPLETION = "workout_completion"
SOURCE_EXERCISE_MASTERY = "exercise_mastery"
SOURCE_NUTRITION = "nutrition_goal"
SOURCE_WEIGHT_LOG = "weight_log"
REVERSAL_SOURCE_PREFIX = "reversal:"

# Contract sources (subsystem that fired the event)
CONTRACT_SOURCE_TASKS = "ethos"
CONTRACT_SOURCE_NUTRITION = "trophe"
CONTRACT_SOURCE_WORKOUTS = "soma"
CONTRACT_SOURCE_WEIGHT = "arete"
CONTRACT_SOURCE_SYSTEM = "system"

# Event record lifecycle
EVENT_STATUS_COMPLETED = "completed"
EVENT_STATUS_REVERSED = "reversed"

TOKEN_PREFIX = "evt_"

# Un-tokened reversal discovery
REVERSAL_LOOKBACK_DAYS = 7
REVERSAL_LOOKBACK_LIMIT = 100

# Bodyweight
WEIGHT_UNITS = ("kg", "lb")

# History maintenance
DEFAULT_HISTORY_KEEP_DAYS = 90
MIN_HISTORY_KEEP_DAYS = 7
MAX_HISTORY_KEEP_DAYS = 365

# Error codes
ERR_VALIDATION = "ERR_VALIDATION"
ERR_NOT_FOUND = "ERR_NOT_FOUND"
ERR_REVERSAL_FAILED = "ERR_REVERSAL_FAILED"
ERR_DATABASE = "ERR_DATABASE"
ERR_INTERNAL = "ERR_INTERNAL"
