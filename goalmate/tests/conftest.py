"""
Shared fixtures: in-memory database, users, goal factory, recording notifier.
"""
import os
import tempfile

os.environ.setdefault("GOALMATE_DATABASE_URL", "sqlite://")
os.environ.setdefault("GOALMATE_REMINDERS_ENABLED", "false")
os.environ.setdefault("GOALMATE_LOG_DIR", os.path.join(tempfile.gettempdir(), "goalmate-test-logs"))

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from goalmate.database import Base
from goalmate.models import User, Goal, SubTask, IndividualProgress
from goalmate.services.notification_service import NotificationSink


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification in memory"""

    def __init__(self):
        self.events = []

    def notify(self, user_id: int, event_type: str, payload: dict) -> None:
        self.events.append((user_id, event_type, payload))

    def recipients(self, event_type: str):
        return sorted(user_id for user_id, kind, _ in self.events if kind == event_type)


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
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(name: str = None, is_premium: bool = False) -> User:
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user = User(name=name, email=f"{name.lower()}@example.com", is_premium=is_premium)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def creator(make_user):
    return make_user("Creator")


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def make_goal(db_session, creator):
    def _make_goal(participants=(), sub_tasks=(), seed_individual=False, **fields) -> Goal:
        values = {
            "title": "Test goal",
            "description": "Test description",
            "goal_category": "Custom",
            "end_date": datetime.now() + timedelta(days=30),
            "created_by": creator.id,
        }
        values.update(fields)
        goal = Goal(**values)
        goal.participants = list(participants)
        goal.sub_tasks = [SubTask(**data) for data in sub_tasks]
        if seed_individual:
            goal.individual_progress = [
                IndividualProgress(user_id=user_id) for user_id in goal.roster_ids()
            ]
        db_session.add(goal)
        db_session.commit()
        db_session.refresh(goal)
        return goal

    return _make_goal
