"""
Tests for GoalProgressService.

Tests cover:
1. Progress recorded through the database for each aggregation rule
2. Authorization and lookup failures leave the goal untouched
3. Version checks and retries on concurrent writes
4. Roster notifications
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from goalmate.database import Base
from goalmate.models import User, Goal
from goalmate.schemas import ProgressUpdate
from goalmate.repositories.goal_repository import GoalRepository
from goalmate.services.goal_progress_service import GoalProgressService
from goalmate.exceptions import (
    GoalNotFoundException,
    SubTaskNotFoundException,
    NotAuthorizedException,
    DatabaseException,
    ConcurrentUpdateException,
)


class FailingNotificationSink:
    def notify(self, user_id, event_type, payload):
        raise RuntimeError("push gateway unavailable")


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file database so two sessions see each other's commits"""
    engine = create_engine(f"sqlite:///{tmp_path / 'goalmate.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


class TestRecordProgress:
    """Tests for record_progress against the database"""

    def test_compete_goal(self, db_session, notifier, make_goal, creator, alice):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="compete",
            goal_category="Fitness",
            distance=100,
            participants=[alice],
            seed_individual=True,
        )
        service = GoalProgressService(db_session, notifier)

        service.record_progress(goal.id, creator.id, ProgressUpdate(value=60))
        goal = service.record_progress(goal.id, alice.id, ProgressUpdate(value=60))

        percentages = {e.user_id: e.completion_percentage for e in goal.individual_progress}
        assert percentages == {creator.id: 60.0, alice.id: 60.0}
        assert goal.completion_percentage == 60.0
        assert goal.status == "In Progress"
        assert len(goal.progress_history) == 2

    def test_compete_goal_creates_missing_entries(self, db_session, notifier, make_goal, alice):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="compete",
            goal_category="Fitness",
            distance=100,
            participants=[alice],
        )
        goal = GoalProgressService(db_session, notifier).record_progress(
            goal.id, alice.id, ProgressUpdate(value=50)
        )

        assert [e.user_id for e in goal.individual_progress] == goal.roster_ids()
        assert goal.completion_percentage == 25.0

    def test_achieve_together_unit_value(self, db_session, notifier, make_goal, alice):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="achieve-together",
            participants=[alice],
            sub_tasks=[{"title": "Read", "assigned_to": alice.id, "start_value": 50, "end_value": 100}],
        )
        sub_task_id = goal.sub_tasks[0].id

        goal = GoalProgressService(db_session, notifier).record_progress(
            goal.id, alice.id,
            ProgressUpdate(value=75, sub_task_id=sub_task_id, is_unit_value=True, notes="halfway")
        )

        assert goal.sub_tasks[0].completion_percentage == 50.0
        assert goal.sub_tasks[0].status == "In Progress"
        assert goal.completion_percentage == 50.0
        entry = goal.progress_history[-1]
        assert entry.sub_task_id == sub_task_id
        assert entry.updated_by == alice.id
        assert entry.notes == "halfway"

    def test_individual_goal_against_target(self, db_session, notifier, make_goal, creator):
        goal = make_goal(goal_category="Education", education_type="Book Reading", pages=200)
        service = GoalProgressService(db_session, notifier)

        service.record_progress(goal.id, creator.id, ProgressUpdate(value=50))
        goal = service.record_progress(goal.id, creator.id, ProgressUpdate(value=150))

        assert goal.completion_percentage == 100.0
        assert goal.status == "Completed"

    def test_each_write_bumps_version(self, db_session, notifier, make_goal, creator):
        goal = make_goal()
        initial_version = goal.version
        service = GoalProgressService(db_session, notifier)

        service.record_progress(goal.id, creator.id, ProgressUpdate(value=10))
        goal = service.record_progress(goal.id, creator.id, ProgressUpdate(value=10))

        assert goal.version == initial_version + 2

    def test_missing_goal(self, db_session, notifier, creator):
        with pytest.raises(GoalNotFoundException):
            GoalProgressService(db_session, notifier).record_progress(999, creator.id, ProgressUpdate(value=10))

    def test_outsider_is_rejected_without_changes(self, db_session, notifier, make_goal, bob):
        goal = make_goal()
        initial_version = goal.version

        with pytest.raises(NotAuthorizedException):
            GoalProgressService(db_session, notifier).record_progress(goal.id, bob.id, ProgressUpdate(value=10))

        db_session.rollback()
        assert goal.progress_history == []
        assert goal.completion_percentage == 0.0
        assert goal.version == initial_version
        assert notifier.events == []

    def test_non_assignee_is_rejected(self, db_session, notifier, make_goal, creator, alice, bob):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="achieve-together",
            participants=[alice, bob],
            sub_tasks=[{"title": "Read", "assigned_to": alice.id}],
        )
        service = GoalProgressService(db_session, notifier)

        for user in (bob, creator):
            with pytest.raises(NotAuthorizedException):
                service.record_progress(
                    goal.id, user.id, ProgressUpdate(value=10, sub_task_id=goal.sub_tasks[0].id)
                )

        db_session.rollback()
        assert goal.sub_tasks[0].completion_percentage == 0.0
        assert goal.progress_history == []

    def test_unknown_sub_task(self, db_session, notifier, make_goal, alice):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="achieve-together",
            participants=[alice],
            sub_tasks=[{"title": "Read", "assigned_to": alice.id}],
        )
        with pytest.raises(SubTaskNotFoundException):
            GoalProgressService(db_session, notifier).record_progress(
                goal.id, alice.id, ProgressUpdate(value=10, sub_task_id=12345)
            )


class TestSetSubTaskStatus:
    """Tests for set_subtask_status against the database"""

    def make_shared_goal(self, make_goal, alice, bob):
        return make_goal(
            goal_type="Group",
            collaborative_type="achieve-together",
            participants=[alice, bob],
            sub_tasks=[
                {"title": "Chapter 1", "assigned_to": alice.id},
                {"title": "Chapter 2", "assigned_to": bob.id},
            ],
        )

    def test_assignee_completes_sub_task(self, db_session, notifier, make_goal, alice, bob):
        goal = self.make_shared_goal(make_goal, alice, bob)

        goal = GoalProgressService(db_session, notifier).set_subtask_status(
            goal.id, goal.sub_tasks[0].id, alice.id, "Completed"
        )

        assert goal.sub_tasks[0].status == "Completed"
        assert goal.sub_tasks[0].completion_percentage == 100.0
        assert goal.completion_percentage == 50.0
        assert goal.status == "In Progress"

    def test_creator_completes_last_sub_task(self, db_session, notifier, make_goal, creator, alice, bob):
        goal = self.make_shared_goal(make_goal, alice, bob)
        service = GoalProgressService(db_session, notifier)

        service.set_subtask_status(goal.id, goal.sub_tasks[0].id, alice.id, "Completed")
        goal = service.set_subtask_status(goal.id, goal.sub_tasks[1].id, creator.id, "Completed")

        assert goal.completion_percentage == 100.0
        assert goal.status == "Completed"
        assert notifier.recipients("goal_completed") == sorted([creator.id, alice.id, bob.id])

    def test_other_participant_is_rejected(self, db_session, notifier, make_goal, alice, bob):
        goal = self.make_shared_goal(make_goal, alice, bob)

        with pytest.raises(NotAuthorizedException):
            GoalProgressService(db_session, notifier).set_subtask_status(
                goal.id, goal.sub_tasks[0].id, bob.id, "Completed"
            )

    def test_status_change_is_not_logged_as_contribution(self, db_session, notifier, make_goal, alice, bob):
        goal = self.make_shared_goal(make_goal, alice, bob)

        goal = GoalProgressService(db_session, notifier).set_subtask_status(
            goal.id, goal.sub_tasks[0].id, alice.id, "In Progress"
        )

        assert goal.sub_tasks[0].status == "In Progress"
        assert goal.progress_history == []


class TestConcurrentUpdates:
    """Tests for version checks and retries"""

    def test_retries_after_stale_write(self, db_session, notifier, make_goal, creator):
        goal = make_goal()
        real_save = GoalRepository.save
        calls = []

        def flaky_save(db, goal):
            calls.append(goal.id)
            if len(calls) == 1:
                raise StaleDataError("goal row was updated by someone else")
            return real_save(db, goal)

        with patch.object(GoalRepository, "save", side_effect=flaky_save):
            goal = GoalProgressService(db_session, notifier).record_progress(
                goal.id, creator.id, ProgressUpdate(value=30)
            )

        assert len(calls) == 2
        assert len(goal.progress_history) == 1
        assert goal.completion_percentage == 30.0

    def test_gives_up_after_max_retries(self, db_session, notifier, make_goal, creator):
        goal = make_goal()

        with patch.object(GoalRepository, "save", side_effect=StaleDataError("always stale")) as mock_save:
            with pytest.raises(ConcurrentUpdateException) as exc_info:
                GoalProgressService(db_session, notifier, max_retries=2).record_progress(
                    goal.id, creator.id, ProgressUpdate(value=30)
                )

        assert mock_save.call_count == 2
        assert exc_info.value.attempts == 2
        assert goal.progress_history == []
        assert notifier.events == []

    def test_database_error_is_wrapped(self, db_session, notifier, make_goal, creator):
        goal = make_goal()

        with patch.object(GoalRepository, "save", side_effect=SQLAlchemyError("disk I/O error")) as mock_save:
            with pytest.raises(DatabaseException):
                GoalProgressService(db_session, notifier).record_progress(
                    goal.id, creator.id, ProgressUpdate(value=30)
                )

        assert mock_save.call_count == 1
        assert goal.progress_history == []

    def test_stale_commit_is_detected(self, file_session_factory):
        setup = file_session_factory()
        owner = User(name="Owner", email="owner@example.com")
        setup.add(owner)
        setup.commit()
        goal = Goal(
            title="Read more",
            description="Two books",
            goal_category="Custom",
            end_date=datetime.now() + timedelta(days=10),
            created_by=owner.id,
        )
        setup.add(goal)
        setup.commit()
        goal_id = goal.id
        setup.close()

        first, second = file_session_factory(), file_session_factory()
        goal_a = first.get(Goal, goal_id)
        goal_b = second.get(Goal, goal_id)

        goal_a.completion_percentage = 10.0
        first.commit()

        goal_b.completion_percentage = 20.0
        with pytest.raises(StaleDataError):
            second.commit()

        second.rollback()
        first.close()
        second.close()

    def test_concurrent_writer_is_not_lost(self, file_session_factory, notifier):
        setup = file_session_factory()
        owner = User(name="Owner", email="owner@example.com")
        setup.add(owner)
        setup.commit()
        goal = Goal(
            title="Read more",
            description="Two books",
            goal_category="Custom",
            end_date=datetime.now() + timedelta(days=10),
            created_by=owner.id,
        )
        setup.add(goal)
        setup.commit()
        goal_id, owner_id = goal.id, owner.id
        setup.close()

        real_save = GoalRepository.save
        calls = []

        def save_after_competing_write(db, goal):
            calls.append(goal.id)
            if len(calls) == 1:
                other = file_session_factory()
                competing = other.get(Goal, goal_id)
                competing.title = "Read even more"
                other.commit()
                other.close()
            return real_save(db, goal)

        session = file_session_factory()
        with patch.object(GoalRepository, "save", side_effect=save_after_competing_write):
            goal = GoalProgressService(session, notifier).record_progress(
                goal_id, owner_id, ProgressUpdate(value=40)
            )

        assert len(calls) == 2
        assert goal.title == "Read even more"
        assert goal.completion_percentage == 40.0
        assert len(goal.progress_history) == 1
        session.close()


class TestNotifications:
    """Tests for roster notifications"""

    def test_other_members_are_notified(self, db_session, notifier, make_goal, creator, alice, bob):
        goal = make_goal(
            goal_type="Group",
            collaborative_type="compete",
            goal_category="Fitness",
            distance=100,
            participants=[alice, bob],
            seed_individual=True,
        )

        GoalProgressService(db_session, notifier).record_progress(goal.id, alice.id, ProgressUpdate(value=10))

        assert notifier.recipients("goal_progress_updated") == sorted([creator.id, bob.id])
        assert notifier.recipients("goal_completed") == []
        payload = notifier.events[0][2]
        assert payload["goal_id"] == goal.id
        assert payload["updated_by"] == alice.id

    def test_completion_is_announced_once(self, db_session, notifier, make_goal, creator, alice):
        goal = make_goal(goal_type="Group", participants=[alice])
        service = GoalProgressService(db_session, notifier)

        service.record_progress(goal.id, creator.id, ProgressUpdate(value=100))
        service.record_progress(goal.id, alice.id, ProgressUpdate(value=5))

        assert notifier.recipients("goal_completed") == sorted([creator.id, alice.id])

    def test_failed_delivery_does_not_fail_update(self, db_session, make_goal, creator, alice):
        goal = make_goal(goal_type="Group", participants=[alice])

        goal = GoalProgressService(db_session, FailingNotificationSink()).record_progress(
            goal.id, creator.id, ProgressUpdate(value=100)
        )

        assert goal.status == "Completed"
        assert len(goal.progress_history) == 1
