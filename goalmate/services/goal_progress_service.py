"""
Goal progress service.
Loads the goal aggregate, runs the progress engine on a snapshot of it,
writes the result back in one versioned transaction and notifies the roster.
"""
import logging
from datetime import datetime
from typing import Callable, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from goalmate.models import Goal, IndividualProgress, ProgressEntry
from goalmate.schemas import ProgressUpdate
from goalmate.repositories.goal_repository import GoalRepository
from goalmate.services import progress_engine
from goalmate.services.progress_engine import (
    Contribution,
    GoalMetrics,
    GoalSnapshot,
    HistoryEntryState,
    IndividualProgressState,
    SubTaskState,
)
from goalmate.services.notification_service import (
    NotificationSink, LoggingNotificationSink, notify_users
)
from goalmate.exceptions import (
    GoalNotFoundException, DatabaseException, ConcurrentUpdateException
)
from goalmate.constants import (
    PROGRESS_MAX_RETRIES,
    STATUS_NOT_STARTED,
    STATUS_COMPLETED,
    EVENT_GOAL_PROGRESS_UPDATED,
    EVENT_GOAL_COMPLETED,
)

logger = logging.getLogger("goalmate.progress")


def snapshot_from_goal(goal: Goal) -> GoalSnapshot:
    """Copy the persisted aggregate into an immutable snapshot"""
    return GoalSnapshot(
        id=goal.id,
        created_by=goal.created_by,
        metrics=GoalMetrics(
            category=goal.goal_category,
            fitness_type=goal.fitness_type,
            education_type=goal.education_type,
            distance=goal.distance,
            duration=goal.duration,
            sets=goal.sets,
            pages=goal.pages,
            modules=goal.modules,
            study_hours=goal.study_hours,
        ),
        collaborative_type=goal.collaborative_type,
        participants=tuple(participant.id for participant in goal.participants),
        status=goal.status or STATUS_NOT_STARTED,
        completion_percentage=goal.completion_percentage or 0.0,
        sub_tasks=tuple(
            SubTaskState(
                id=sub_task.id,
                assigned_to=sub_task.assigned_to,
                status=sub_task.status or STATUS_NOT_STARTED,
                start_value=sub_task.start_value,
                end_value=sub_task.end_value,
                completion_percentage=sub_task.completion_percentage or 0.0,
            )
            for sub_task in goal.sub_tasks
        ),
        individual_progress=tuple(
            IndividualProgressState(
                user_id=entry.user_id,
                completion_percentage=entry.completion_percentage or 0.0,
                total_progress=entry.total_progress or 0.0,
                last_updated=entry.last_updated,
            )
            for entry in goal.individual_progress
        ),
        history=tuple(
            HistoryEntryState(
                date=entry.date,
                value=entry.value or 0.0,
                updated_by=entry.updated_by,
                notes=entry.notes or "",
                sub_task_id=entry.sub_task_id,
            )
            for entry in goal.progress_history
        ),
    )


def apply_snapshot(goal: Goal, snapshot: GoalSnapshot, timestamp: datetime) -> None:
    """Copy a computed snapshot back onto the ORM aggregate (no commit)"""
    goal.completion_percentage = snapshot.completion_percentage
    goal.status = snapshot.status
    # Always dirty the goal row so the version check runs on every write
    goal.updated_at = timestamp

    sub_task_states = {state.id: state for state in snapshot.sub_tasks}
    for sub_task in goal.sub_tasks:
        state = sub_task_states.get(sub_task.id)
        if state is not None:
            sub_task.status = state.status
            sub_task.completion_percentage = state.completion_percentage

    entries_by_user = {entry.user_id: entry for entry in goal.individual_progress}
    wanted_users = set()
    for state in snapshot.individual_progress:
        wanted_users.add(state.user_id)
        entry = entries_by_user.get(state.user_id)
        if entry is None:
            goal.individual_progress.append(IndividualProgress(
                user_id=state.user_id,
                completion_percentage=state.completion_percentage,
                total_progress=state.total_progress,
                last_updated=state.last_updated or timestamp,
            ))
        else:
            entry.completion_percentage = state.completion_percentage
            entry.total_progress = state.total_progress
            entry.last_updated = state.last_updated or entry.last_updated
    for entry in list(goal.individual_progress):
        if entry.user_id not in wanted_users:
            goal.individual_progress.remove(entry)

    # History is append-only: only entries beyond what is stored are new
    for state in snapshot.history[len(goal.progress_history):]:
        goal.progress_history.append(ProgressEntry(
            date=state.date,
            value=state.value,
            notes=state.notes,
            updated_by=state.updated_by,
            sub_task_id=state.sub_task_id,
        ))


class GoalProgressService:
    """Service for recording progress on goals"""

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationSink] = None,
        max_retries: int = PROGRESS_MAX_RETRIES
    ):
        self.db = db
        self.goal_repo = GoalRepository()
        self.notifier = notifier or LoggingNotificationSink()
        self.max_retries = max(1, max_retries)

    def record_progress(self, goal_id: int, contributor_id: int, progress: ProgressUpdate) -> Goal:
        """
        Record a contribution and recompute the goal's completion.

        Raises:
            GoalNotFoundException: goal does not exist
            SubTaskNotFoundException: sub-task is not part of the goal
            NotAuthorizedException: contributor is not on the roster, or not
                the sub-task's assignee
            DatabaseException: the write failed
        """
        def compute(goal: Goal, now: datetime) -> GoalSnapshot:
            contribution = Contribution(
                contributor_id=contributor_id,
                value=float(progress.value),
                timestamp=now,
                notes=progress.notes,
                sub_task_id=progress.sub_task_id,
                is_unit_value=progress.is_unit_value,
            )
            return progress_engine.record_progress(snapshot_from_goal(goal), contribution)

        goal, previous_status = self._update_with_retry(goal_id, compute, "progress update")
        logger.info(
            f"Progress recorded on goal {goal_id} by user {contributor_id}: "
            f"value={progress.value}, mode={goal.collaborative_type or 'cumulative'}, "
            f"completion={goal.completion_percentage:.1f}%"
        )
        self._notify(goal, contributor_id, previous_status)
        return goal

    def set_subtask_status(self, goal_id: int, sub_task_id: int, actor_id: int, status: str) -> Goal:
        """Set a sub-task's status (assignee or goal creator)"""
        def compute(goal: Goal, now: datetime) -> GoalSnapshot:
            return progress_engine.set_subtask_status(
                snapshot_from_goal(goal), actor_id, sub_task_id, status
            )

        goal, previous_status = self._update_with_retry(goal_id, compute, "sub-task status update")
        logger.info(
            f"Sub-task {sub_task_id} of goal {goal_id} set to '{status}' by user {actor_id}; "
            f"completion={goal.completion_percentage:.1f}%"
        )
        self._notify(goal, actor_id, previous_status)
        return goal

    def _update_with_retry(
        self,
        goal_id: int,
        compute: Callable[[Goal, datetime], GoalSnapshot],
        operation: str
    ) -> Tuple[Goal, str]:
        """
        Load, compute and save, retrying when another writer got there first.

        Each attempt recomputes from freshly loaded state; validation errors
        raised by compute() abort before anything is written.
        """
        for attempt in range(1, self.max_retries + 1):
            goal = self.goal_repo.get_by_id(self.db, goal_id)
            if not goal:
                raise GoalNotFoundException(goal_id)

            previous_status = goal.status
            now = datetime.now()
            updated = compute(goal, now)
            apply_snapshot(goal, updated, now)

            try:
                goal = self.goal_repo.save(self.db, goal)
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    f"Goal {goal_id} changed during {operation} "
                    f"(attempt {attempt}/{self.max_retries}), retrying"
                )
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to save goal {goal_id} during {operation}: {e}")
                raise DatabaseException(operation, str(e))

            return goal, previous_status

        logger.error(f"Giving up {operation} on goal {goal_id} after {self.max_retries} conflicts")
        raise ConcurrentUpdateException(goal_id, self.max_retries)

    def _notify(self, goal: Goal, actor_id: int, previous_status: str) -> None:
        payload = {
            "goal_id": goal.id,
            "title": goal.title,
            "status": goal.status,
            "completion_percentage": goal.completion_percentage,
            "updated_by": actor_id,
        }
        roster = goal.roster_ids()
        notify_users(
            self.notifier,
            [user_id for user_id in roster if user_id != actor_id],
            EVENT_GOAL_PROGRESS_UPDATED,
            payload
        )
        if goal.status == STATUS_COMPLETED and previous_status != STATUS_COMPLETED:
            logger.info(f"Goal {goal.id} completed")
            notify_users(self.notifier, roster, EVENT_GOAL_COMPLETED, payload)
