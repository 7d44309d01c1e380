from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, JSON, UniqueConstraint

from fitquest.database import Base
from fitquest.services.date_service import utc_now


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, default="")
    scheduled_time = Column(String, nullable=False)  # HH:MM
    category = Column(String, default="general")
    priority = Column(String, default="medium")  # low, medium, high

    # Recurrence
    recurrence_pattern = Column(String, default="once")  # once, daily, weekdays, weekends, weekly, custom
    custom_recurrence_days = Column(JSON, default=list)  # 0 = Sunday ... 6 = Saturday
    start_date = Column(Date, nullable=False)  # Reference date for due checks

    # Completion state (history holds YYYY-MM-DD keys, sorted ascending)
    completed = Column(Boolean, default=False)
    completion_history = Column(JSON, default=list)
    current_streak = Column(Integer, default=0)
    best_streak = Column(Integer, default=0)
    last_completed_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class UserProgress(Base):
    __tablename__ = "user_progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, unique=True, index=True)

    total_xp = Column(Integer, default=0)
    level = Column(Integer, default=1)

    # {"core": {"level": 1, "xp": 0}, ...}
    category_progress = Column(JSON, default=dict)

    # Document-shaped collections, always reassigned (never mutated in place)
    bodyweight = Column(JSON, default=list)        # [{id, value, unit, date}]
    xp_history = Column(JSON, default=list)        # [{date, amount, source, category, description}]
    daily_summaries = Column(JSON, default=list)   # [{date, total_xp, sources, categories}]
    achievements = Column(JSON, default=list)      # Claimed achievement ids
    pending_achievements = Column(JSON, default=list)

    last_updated = Column(DateTime, default=utc_now)
    created_at = Column(DateTime, default=utc_now)


class EventRecord(Base):
    __tablename__ = "event_records"
    __table_args__ = (UniqueConstraint("token", name="uq_event_records_token"),)

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    action = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now, index=True)

    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, default=dict)
    task_id = Column(String, nullable=True, index=True)

    # What was applied, for reversal: [{amount, category, source, description}]
    xp_awarded = Column(Integer, default=0)
    awards = Column(JSON, default=list)
    result = Column(JSON, default=dict)  # Recorded outbound result for idempotent replay

    status = Column(String, default="completed")  # completed, reversed
    reversed_at = Column(DateTime, nullable=True)
    reversed_by_token = Column(String, nullable=True)
    original_token = Column(String, nullable=True)  # Set on reverse records

    created_at = Column(DateTime, default=utc_now)
