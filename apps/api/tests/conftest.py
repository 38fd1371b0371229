"""
Pytest configuration and fixtures

IMPORTANT: All tests use transactional rollback isolation.
Nothing created during tests persists to the database.
Service code may commit freely; each commit only releases a savepoint
inside the outer per-test transaction.
"""
import pytest
import sys
import os
from uuid import uuid4
from datetime import datetime, date, time, timezone

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TIMEZONE", "UTC")

from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from core.clock import FixedClock, set_clock
from core.database import Base, configure_sqlite
from models import Activity, ActivityCompletion, CompletionSource, SubCategory
from services.habitanimal_service import provision_companions


@pytest.fixture(scope="session")
def engine():
    """Single in-memory database shared by the whole run."""
    test_engine = configure_sqlite(
        create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    """
    Create a database session with transactional rollback.

    All changes made during the test are rolled back after the test completes.
    This guarantees zero test data pollution - nothing persists.
    """
    connection = engine.connect()
    transaction = connection.begin()

    session = Session(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )

    yield session

    # Rollback everything - nothing persists
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def fixed_clock():
    """Pinned to noon UTC on 2026-03-15; also installed as the default clock."""
    clock = FixedClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc), tz="UTC")
    set_clock(clock)
    yield clock
    set_clock(None)


@pytest.fixture
def today(fixed_clock) -> date:
    return fixed_clock.today()


@pytest.fixture
def user_id() -> str:
    return f"user_{uuid4()}"


@pytest.fixture
def companions(db_session, user_id, fixed_clock):
    """One companion per sub-category, as created at signup."""
    return {c.category: c for c in provision_companions(db_session, user_id, clock=fixed_clock)}


@pytest.fixture
def make_activity(db_session, user_id):
    """Factory for committed activities owned by the test user."""
    def _make(
        sub_category=SubCategory.TRAINING,
        name=None,
        points=10,
        is_habit=True,
        archived=False,
        owner=None,
    ) -> Activity:
        activity = Activity(
            user_id=owner or user_id,
            name=name or f"{SubCategory(sub_category).value.title()} habit",
            sub_category=sub_category,
            points=points,
            is_habit=is_habit,
            archived=archived,
        )
        db_session.add(activity)
        db_session.commit()
        return activity

    return _make


@pytest.fixture
def add_completion(db_session):
    """Insert a completion row directly, bypassing the completion service."""
    def _add(activity: Activity, day: date, details=None, points=None) -> ActivityCompletion:
        completion = ActivityCompletion(
            activity_id=activity.id,
            completed_at=datetime.combine(day, time(9, 0), tzinfo=timezone.utc),
            completed_on=day,
            habit_day=day if activity.is_habit else None,
            points_earned=activity.points if points is None else points,
            xp_earned=10,
            details=details,
            source=CompletionSource.MANUAL.value,
        )
        db_session.add(completion)
        db_session.commit()
        return completion

    return _add
