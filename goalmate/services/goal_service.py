"""
Goal management service.
Handles goal creation, editing, sharing and leaving. Progress itself is
recorded through GoalProgressService.
"""
import logging
from datetime import datetime
from typing import List
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from goalmate.models import Goal, SubTask, User, IndividualProgress
from goalmate.schemas import (
    GoalCreate, GoalUpdate, GoalShareRequest, ShareResult, SubTaskCreate
)
from goalmate.repositories.goal_repository import GoalRepository
from goalmate.repositories.user_repository import UserRepository
from goalmate.services import progress_engine
from goalmate.services.goal_progress_service import snapshot_from_goal, apply_snapshot
from goalmate.exceptions import (
    GoalNotFoundException,
    UserNotFoundException,
    NotAuthorizedException,
    GoalLimitReachedException,
    ValidationException,
    DatabaseException,
    ConcurrentUpdateException,
)
from goalmate.constants import (
    FREE_GOAL_LIMIT,
    GOAL_TYPE_INDIVIDUAL,
    GOAL_TYPE_GROUP,
    GOAL_TYPE_COLLABORATIVE,
    COLLABORATIVE_COMPETE,
    COLLABORATIVE_ACHIEVE_TOGETHER,
    CATEGORY_FITNESS,
    CATEGORY_EDUCATION,
    BUILTIN_CATEGORIES,
    STATUS_NOT_STARTED,
    STATUS_ARCHIVED,
)

logger = logging.getLogger("goalmate.goals")

FITNESS_FIELDS = ("fitness_type", "duration", "distance", "sets", "reps", "weight")
EDUCATION_FIELDS = ("education_type", "study_hours", "pages", "modules", "test_score")
# Editable fields that may not be cleared
REQUIRED_FIELDS = (
    "title", "description", "goal_category", "priority", "frequency", "progress_frequency", "end_date"
)


class GoalService:
    """Service for managing goals"""

    def __init__(self, db: Session):
        self.db = db
        self.goal_repo = GoalRepository()
        self.user_repo = UserRepository()

    def get_goals(self, user_id: int) -> List[Goal]:
        """Get goals the user created or participates in"""
        return self.goal_repo.get_for_user(self.db, user_id)

    def get_goal(self, goal_id: int, user_id: int) -> Goal:
        """Get a goal visible to the user"""
        goal = self._get_or_raise(goal_id)
        if not goal.is_member(user_id):
            raise NotAuthorizedException(user_id, f"view goal {goal_id}")
        return goal

    def create_goal(self, creator_id: int, goal_data: GoalCreate) -> Goal:
        """Create a new goal"""
        creator = self.user_repo.get_by_id(self.db, creator_id)
        if not creator:
            raise UserNotFoundException(creator_id)

        if not creator.is_premium:
            if self.goal_repo.count_created_by(self.db, creator_id) >= FREE_GOAL_LIMIT:
                raise GoalLimitReachedException(creator_id, FREE_GOAL_LIMIT)

        is_shared = goal_data.goal_type in (GOAL_TYPE_GROUP, GOAL_TYPE_COLLABORATIVE)
        if goal_data.participant_ids and not is_shared:
            raise ValidationException("participant_ids", "individual goals cannot have participants")

        goal = Goal(
            title=goal_data.title,
            description=goal_data.description,
            goal_type=goal_data.goal_type,
            collaborative_type=goal_data.collaborative_type if is_shared else None,
            goal_category=goal_data.goal_category,
            is_custom_category=goal_data.goal_category not in BUILTIN_CATEGORIES,
            priority=goal_data.priority,
            frequency=goal_data.frequency,
            progress_frequency=goal_data.progress_frequency,
            start_date=goal_data.start_date or datetime.now(),
            end_date=goal_data.end_date,
            status=STATUS_NOT_STARTED,
            completion_percentage=0.0,
            created_by=creator_id,
        )
        self._apply_category_fields(goal, goal_data.model_dump())
        goal.participants = self._resolve_participants(creator_id, goal_data.participant_ids)

        if goal_data.sub_tasks:
            if goal.collaborative_type != COLLABORATIVE_ACHIEVE_TOGETHER:
                raise ValidationException("sub_tasks", "sub-tasks are only used by achieve-together goals")
            goal.sub_tasks = self._build_sub_tasks(goal, goal_data.sub_tasks)

        if goal.collaborative_type == COLLABORATIVE_COMPETE:
            self._seed_compete_progress(goal)

        goal = self.goal_repo.create(self.db, goal)
        logger.info(f"Goal {goal.id} created by user {creator_id} ({goal.goal_type})")
        return goal

    def update_goal(self, goal_id: int, user_id: int, goal_update: GoalUpdate) -> Goal:
        """Update an existing goal (creator only)"""
        goal = self._get_or_raise(goal_id)
        if goal.created_by != user_id:
            raise NotAuthorizedException(user_id, f"update goal {goal_id}")

        update_data = goal_update.model_dump(exclude_unset=True)
        archived = update_data.pop("archived", None)
        for key in REQUIRED_FIELDS:
            if key in update_data and update_data[key] is None:
                raise ValidationException(key, "cannot be null")

        category_data = {
            key: update_data.pop(key)
            for key in FITNESS_FIELDS + EDUCATION_FIELDS
            if key in update_data
        }
        for key, value in update_data.items():
            setattr(goal, key, value)
        if "goal_category" in update_data:
            goal.is_custom_category = goal.goal_category not in BUILTIN_CATEGORIES
        self._apply_category_fields(goal, category_data, only_present=True)

        if archived is True:
            goal.status = STATUS_ARCHIVED
        elif archived is False and goal.status == STATUS_ARCHIVED:
            goal.status = progress_engine.derive_status(STATUS_NOT_STARTED, goal.completion_percentage or 0.0)

        goal.updated_at = datetime.now()
        return self._save(goal, "goal update")

    def delete_goal(self, goal_id: int, user_id: int) -> None:
        """Delete a goal (creator only)"""
        goal = self._get_or_raise(goal_id)
        if goal.created_by != user_id:
            raise NotAuthorizedException(user_id, f"delete goal {goal_id}")
        self.goal_repo.delete(self.db, goal)
        logger.info(f"Goal {goal_id} deleted by user {user_id}")

    def share_goal(self, goal_id: int, user_id: int, share: GoalShareRequest) -> List[ShareResult]:
        """
        Add friends to a goal as participants.

        An individual goal becomes a Group goal with the requested collaborative
        type. Unknown users are reported as failed and existing members as
        skipped; the rest are added.
        """
        goal = self._get_or_raise(goal_id)
        if goal.created_by != user_id:
            raise NotAuthorizedException(user_id, f"share goal {goal_id}")

        if goal.goal_type == GOAL_TYPE_INDIVIDUAL:
            goal.goal_type = GOAL_TYPE_GROUP
            goal.collaborative_type = share.collaborative_type

        results = []
        for friend_id in share.friend_ids:
            if goal.is_member(friend_id):
                results.append(ShareResult(friend_id=friend_id, status="skipped", reason="Already a member of this goal"))
                continue
            friend = self.user_repo.get_by_id(self.db, friend_id)
            if not friend:
                results.append(ShareResult(friend_id=friend_id, status="failed", reason="User not found"))
                continue
            goal.participants.append(friend)
            results.append(ShareResult(friend_id=friend_id, status="success"))

        if share.sub_tasks:
            try:
                if goal.collaborative_type != COLLABORATIVE_ACHIEVE_TOGETHER:
                    raise ValidationException("sub_tasks", "sub-tasks are only used by achieve-together goals")
                new_sub_tasks = self._build_sub_tasks(goal, share.sub_tasks)
            except ValidationException:
                # Discard the participants added above
                self.db.rollback()
                raise
            goal.sub_tasks.extend(new_sub_tasks)
            self._refresh_subtask_rollup(goal)

        if goal.collaborative_type == COLLABORATIVE_COMPETE:
            self._refresh_compete_rollup(goal)

        goal.updated_at = datetime.now()
        self._save(goal, "goal share")
        added = sum(1 for result in results if result.status == "success")
        logger.info(f"Goal {goal_id} shared by user {user_id}: {added} participant(s) added")
        return results

    def leave_goal(self, goal_id: int, user_id: int) -> Goal:
        """Remove the user from a goal's participants"""
        goal = self._get_or_raise(goal_id)
        participant = next((p for p in goal.participants if p.id == user_id), None)
        if participant is None:
            raise ValidationException("user_id", "you are not a participant in this goal")

        goal.participants.remove(participant)
        if goal.collaborative_type == COLLABORATIVE_COMPETE:
            self._refresh_compete_rollup(goal)

        goal.updated_at = datetime.now()
        goal = self._save(goal, "goal leave")
        logger.info(f"User {user_id} left goal {goal_id}")
        return goal

    def _get_or_raise(self, goal_id: int) -> Goal:
        goal = self.goal_repo.get_by_id(self.db, goal_id)
        if not goal:
            raise GoalNotFoundException(goal_id)
        return goal

    def _save(self, goal: Goal, operation: str) -> Goal:
        try:
            return self.goal_repo.save(self.db, goal)
        except StaleDataError:
            self.db.rollback()
            raise ConcurrentUpdateException(goal.id, 1)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save goal {goal.id} during {operation}: {e}")
            raise DatabaseException(operation, str(e))

    def _resolve_participants(self, creator_id: int, participant_ids: List[int]) -> List[User]:
        wanted = []
        for participant_id in participant_ids:
            if participant_id != creator_id and participant_id not in wanted:
                wanted.append(participant_id)
        users = self.user_repo.get_many(self.db, wanted)
        found = {user.id for user in users}
        missing = [participant_id for participant_id in wanted if participant_id not in found]
        if missing:
            raise ValidationException("participant_ids", f"unknown users {missing}")
        return sorted(users, key=lambda user: wanted.index(user.id))

    def _build_sub_tasks(self, goal: Goal, sub_tasks: List[SubTaskCreate]) -> List[SubTask]:
        roster = goal.roster_ids()
        built = []
        for data in sub_tasks:
            if data.assigned_to not in roster:
                raise ValidationException("assigned_to", f"user {data.assigned_to} is not a member of this goal")
            if (data.start_value is None) != (data.end_value is None):
                raise ValidationException("sub_tasks", "start_value and end_value must be given together")
            if data.start_value is not None and data.end_value <= data.start_value:
                raise ValidationException("sub_tasks", "end_value must be greater than start_value")
            built.append(SubTask(
                title=data.title,
                description=data.description,
                assigned_to=data.assigned_to,
                status=STATUS_NOT_STARTED,
                start_value=data.start_value,
                end_value=data.end_value,
                completion_percentage=0.0,
            ))
        return built

    @staticmethod
    def _apply_category_fields(goal: Goal, data: dict, only_present: bool = False) -> None:
        """Keep category-specific metrics only for their own category"""
        if goal.goal_category == CATEGORY_FITNESS:
            fields = FITNESS_FIELDS
        elif goal.goal_category == CATEGORY_EDUCATION:
            fields = EDUCATION_FIELDS
        else:
            return
        for key in fields:
            if only_present and key not in data:
                continue
            setattr(goal, key, data.get(key))

    @staticmethod
    def _seed_compete_progress(goal: Goal) -> None:
        now = datetime.now()
        goal.individual_progress = [
            IndividualProgress(user_id=user_id, completion_percentage=0.0, total_progress=0.0, last_updated=now)
            for user_id in goal.roster_ids()
        ]

    @staticmethod
    def _refresh_compete_rollup(goal: Goal) -> None:
        now = datetime.now()
        snapshot = progress_engine.recompute_compete(snapshot_from_goal(goal), now)
        apply_snapshot(goal, snapshot, now)

    @staticmethod
    def _refresh_subtask_rollup(goal: Goal) -> None:
        """New sub-tasks dilute the weighted mean; refresh it"""
        if not goal.sub_tasks:
            return
        now = datetime.now()
        snapshot = snapshot_from_goal(goal)
        overall = progress_engine.aggregate_subtasks(snapshot.sub_tasks)
        if overall is not None:
            goal.completion_percentage = overall
            goal.status = progress_engine.derive_status(goal.status, overall)
        goal.updated_at = now
