"""
Shared fixtures: a fresh in-memory SQLite database per test and task factories.
"""
import os
import tempfile

# Configure before any fitquest module reads its settings
os.environ.setdefault("FITQUEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("FITQUEST_LOG_DIR", os.path.join(tempfile.gettempdir(), "fitquest-test-logs"))
os.environ.setdefault("FITQUEST_MAINTENANCE_ENABLED", "false")
os.environ.setdefault("FITQUEST_API_KEY", "test-key")

import pytest
from datetime import date, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fitquest.database import Base
from fitquest.models import Task
from fitquest.services.date_service import DateService


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def today():
    return DateService.today_utc()


@pytest.fixture
def yesterday(today):
    return today - timedelta(days=1)


@pytest.fixture
def make_task(db_session):
    """Factory for persisted tasks"""
    def _make_task(
        name="Daily Pushups",
        recurrence_pattern="daily",
        start_date=date(2024, 1, 1),
        user_id="user-1",
        category="general",
        custom_recurrence_days=None,
    ):
        task = Task(
            user_id=user_id,
            name=name,
            scheduled_time="09:00",
            category=category,
            priority="medium",
            recurrence_pattern=recurrence_pattern,
            custom_recurrence_days=custom_recurrence_days or [],
            start_date=start_date,
            completion_history=[],
            completed=False,
            current_streak=0,
            best_streak=0,
        )
        db_session.add(task)
        db_session.commit()
        db_session.refresh(task)
        return task

    return _make_task
