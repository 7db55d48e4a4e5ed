"""
Goal progress engine.

Pure computation over immutable goal snapshots: no database access, no clock
reads. Callers load a GoalSnapshot, pass it through record_progress() or
set_subtask_status(), and persist the snapshot they get back.

Three aggregation rules, selected by collaborative_type:
- compete: each roster member has an IndividualProgressState; the goal
  percentage is the mean of their percentages.
- achieve-together (with a sub-task): the goal percentage is the
  range-weighted mean of all sub-task percentages.
- anything else: the sum of all contributions mapped against the goal's
  category target (or taken as a raw percentage if no target exists).
"""
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from goalmate.constants import (
    COLLABORATIVE_COMPETE,
    COLLABORATIVE_ACHIEVE_TOGETHER,
    CATEGORY_FITNESS,
    CATEGORY_EDUCATION,
    STATUS_NOT_STARTED,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_ARCHIVED,
    PERCENT_MIN,
    PERCENT_MAX,
    PERCENT_PRECISION,
)
from goalmate.exceptions import (
    NotAuthorizedException, SubTaskNotFoundException, ValidationException
)


@dataclass(frozen=True)
class GoalMetrics:
    """Category-specific numeric attributes a target can be read from"""
    category: str
    fitness_type: Optional[str] = None
    education_type: Optional[str] = None
    distance: Optional[float] = None
    duration: Optional[float] = None
    sets: Optional[float] = None
    pages: Optional[float] = None
    modules: Optional[float] = None
    study_hours: Optional[float] = None


@dataclass(frozen=True)
class SubTaskState:
    id: int
    assigned_to: int
    status: str = STATUS_NOT_STARTED
    start_value: Optional[float] = None
    end_value: Optional[float] = None
    completion_percentage: float = 0.0

    @property
    def range_size(self) -> Optional[float]:
        """Width of the value range, or None when no usable range is defined"""
        if self.start_value is None or self.end_value is None:
            return None
        size = self.end_value - self.start_value
        return size if size > 0 else None

    @property
    def weight(self) -> float:
        if self.start_value is None or self.end_value is None:
            return 1.0
        return max(1.0, self.end_value - self.start_value)


@dataclass(frozen=True)
class IndividualProgressState:
    user_id: int
    completion_percentage: float = 0.0
    total_progress: float = 0.0
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class HistoryEntryState:
    date: datetime
    value: float
    updated_by: int
    notes: str = ""
    sub_task_id: Optional[int] = None


@dataclass(frozen=True)
class Contribution:
    contributor_id: int
    value: float
    timestamp: datetime
    notes: Optional[str] = None
    sub_task_id: Optional[int] = None
    is_unit_value: bool = False


@dataclass(frozen=True)
class GoalSnapshot:
    id: int
    created_by: int
    metrics: GoalMetrics
    collaborative_type: Optional[str] = None
    participants: Tuple[int, ...] = ()
    status: str = STATUS_NOT_STARTED
    completion_percentage: float = 0.0
    sub_tasks: Tuple[SubTaskState, ...] = ()
    individual_progress: Tuple[IndividualProgressState, ...] = ()
    history: Tuple[HistoryEntryState, ...] = field(default_factory=tuple)

    @property
    def roster(self) -> Tuple[int, ...]:
        """The creator plus every explicit participant, creator first"""
        members = [self.created_by]
        for user_id in self.participants:
            if user_id not in members:
                members.append(user_id)
        return tuple(members)

    def find_sub_task(self, sub_task_id: int) -> Optional[SubTaskState]:
        for sub_task in self.sub_tasks:
            if sub_task.id == sub_task_id:
                return sub_task
        return None


_DISTANCE_FIRST = ("distance", "duration", "sets")
_TIME_FIRST = ("duration", "sets")
_PAGES_FIRST = ("pages", "modules", "study_hours")
_MODULES_FIRST = ("modules", "study_hours")

# Attribute priority per (category, subtype). (category, None) covers a
# missing or unlisted subtype. Categories absent from the table never
# derive a target.
TARGET_METRICS: Dict[Tuple[str, Optional[str]], Tuple[str, ...]] = {
    (CATEGORY_FITNESS, "Running"): _DISTANCE_FIRST,
    (CATEGORY_FITNESS, "Cycling"): _DISTANCE_FIRST,
    (CATEGORY_FITNESS, "Swimming"): _DISTANCE_FIRST,
    (CATEGORY_FITNESS, "Weight Training"): _TIME_FIRST,
    (CATEGORY_FITNESS, "Tennis"): _TIME_FIRST,
    (CATEGORY_FITNESS, "Yoga"): _TIME_FIRST,
    (CATEGORY_FITNESS, "Squash"): _TIME_FIRST,
    (CATEGORY_FITNESS, "Basketball"): _TIME_FIRST,
    (CATEGORY_FITNESS, None): _DISTANCE_FIRST,
    (CATEGORY_EDUCATION, "Book Reading"): _PAGES_FIRST,
    (CATEGORY_EDUCATION, "Course Completion"): _MODULES_FIRST,
    (CATEGORY_EDUCATION, "Skill Development"): _MODULES_FIRST,
    (CATEGORY_EDUCATION, "Certification"): _MODULES_FIRST,
    (CATEGORY_EDUCATION, "Language Learning"): _MODULES_FIRST,
    (CATEGORY_EDUCATION, None): _PAGES_FIRST,
}


def target_metric_order(category: str, subtype: Optional[str]) -> Tuple[str, ...]:
    """Attribute names to try, in priority order, for a category and subtype"""
    order = TARGET_METRICS.get((category, subtype))
    if order is None:
        order = TARGET_METRICS.get((category, None), ())
    return order


def resolve_target_value(metrics: GoalMetrics) -> Optional[float]:
    """
    Look up the numeric target progress is measured against.

    Returns None when no percentage can be derived for this goal.
    """
    if metrics.category == CATEGORY_FITNESS:
        subtype = metrics.fitness_type
    elif metrics.category == CATEGORY_EDUCATION:
        subtype = metrics.education_type
    else:
        subtype = None

    for name in target_metric_order(metrics.category, subtype):
        value = getattr(metrics, name)
        if value:
            return float(value)
    return None


def clamp_percentage(value: float) -> float:
    """Round to PERCENT_PRECISION places and bound to 0..100; NaN and inf are rejected"""
    if not math.isfinite(value):
        raise ValidationException("value", "must be a finite number")
    return max(PERCENT_MIN, min(PERCENT_MAX, round(value, PERCENT_PRECISION)))


def derive_status(current_status: str, percentage: float) -> str:
    """
    Status from percentage thresholds.

    Archived is terminal. A zero percentage keeps whatever status the goal
    already had.
    """
    if current_status == STATUS_ARCHIVED:
        return STATUS_ARCHIVED
    if percentage >= PERCENT_MAX:
        return STATUS_COMPLETED
    if percentage > PERCENT_MIN:
        return STATUS_IN_PROGRESS
    return current_status


def _map_onto_range(value: float, sub_task: SubTaskState) -> float:
    range_size = sub_task.range_size
    progress_in_range = min(max(value - sub_task.start_value, 0.0), range_size)
    return progress_in_range / range_size * PERCENT_MAX


def subtask_percentage_for_value(
    sub_task: SubTaskState,
    value: float,
    is_unit_value: bool
) -> float:
    """
    Interpret a submitted value for a sub-task.

    - unit value with a range: linear position of value within the range
    - 0..100: a direct percentage
    - above 100 but within the range end: a raw unit value (older clients
      send these without the flag)
    - anything else: clamped into 0..100
    """
    has_range = sub_task.range_size is not None

    if has_range and is_unit_value:
        percentage = _map_onto_range(value, sub_task)
    elif PERCENT_MIN <= value <= PERCENT_MAX:
        percentage = value
    elif has_range and PERCENT_MAX < value <= sub_task.end_value:
        percentage = _map_onto_range(value, sub_task)
    else:
        percentage = value

    return clamp_percentage(percentage)


def subtask_status_for_percentage(current_status: str, percentage: float) -> str:
    if percentage >= PERCENT_MAX:
        return STATUS_COMPLETED
    if percentage > PERCENT_MIN:
        return STATUS_IN_PROGRESS
    return current_status


def aggregate_subtasks(sub_tasks: Tuple[SubTaskState, ...]) -> Optional[float]:
    """Range-weighted mean of sub-task percentages"""
    total_weight = sum(sub_task.weight for sub_task in sub_tasks)
    if total_weight <= 0:
        return None
    weighted = sum(sub_task.completion_percentage * sub_task.weight for sub_task in sub_tasks)
    return clamp_percentage(weighted / total_weight)


def aggregate_individual(entries: Tuple[IndividualProgressState, ...]) -> Optional[float]:
    """Arithmetic mean of individual percentages"""
    if not entries:
        return None
    return clamp_percentage(sum(entry.completion_percentage for entry in entries) / len(entries))


def seed_individual_progress(
    snapshot: GoalSnapshot,
    timestamp: Optional[datetime] = None
) -> Tuple[IndividualProgressState, ...]:
    """
    One entry per roster member, in roster order.

    Existing entries are kept; missing members start at zero; entries of
    users who are no longer on the roster are dropped.
    """
    existing = {entry.user_id: entry for entry in snapshot.individual_progress}
    return tuple(
        existing.get(user_id) or IndividualProgressState(user_id=user_id, last_updated=timestamp)
        for user_id in snapshot.roster
    )


def ensure_can_record(snapshot: GoalSnapshot, contribution: Contribution) -> None:
    """Raise if the contributor may not record this contribution"""
    contributor_id = contribution.contributor_id
    if contributor_id not in snapshot.roster:
        raise NotAuthorizedException(contributor_id, f"update goal {snapshot.id}")

    if snapshot.collaborative_type == COLLABORATIVE_ACHIEVE_TOGETHER and contribution.sub_task_id is not None:
        sub_task = snapshot.find_sub_task(contribution.sub_task_id)
        if sub_task is None:
            raise SubTaskNotFoundException(snapshot.id, contribution.sub_task_id)
        # The creator gets no bypass here
        if sub_task.assigned_to != contributor_id:
            raise NotAuthorizedException(
                contributor_id, f"record progress on sub-task {sub_task.id}"
            )


def _apply_compete(snapshot: GoalSnapshot, contribution: Contribution) -> GoalSnapshot:
    entries = list(seed_individual_progress(snapshot, contribution.timestamp))
    target = resolve_target_value(snapshot.metrics)

    for index, entry in enumerate(entries):
        if entry.user_id != contribution.contributor_id:
            continue
        total = entry.total_progress + max(contribution.value, 0.0)
        percentage = entry.completion_percentage
        if target:
            percentage = clamp_percentage(total / target * PERCENT_MAX)
        entries[index] = replace(
            entry,
            total_progress=total,
            completion_percentage=percentage,
            last_updated=contribution.timestamp,
        )

    entries = tuple(entries)
    overall = aggregate_individual(entries)
    return replace(
        snapshot,
        individual_progress=entries,
        completion_percentage=snapshot.completion_percentage if overall is None else overall,
    )


def _apply_achieve_together(snapshot: GoalSnapshot, contribution: Contribution) -> GoalSnapshot:
    sub_tasks = []
    for sub_task in snapshot.sub_tasks:
        if sub_task.id == contribution.sub_task_id:
            percentage = subtask_percentage_for_value(
                sub_task, contribution.value, contribution.is_unit_value
            )
            sub_task = replace(
                sub_task,
                completion_percentage=percentage,
                status=subtask_status_for_percentage(sub_task.status, percentage),
            )
        sub_tasks.append(sub_task)

    sub_tasks = tuple(sub_tasks)
    overall = aggregate_subtasks(sub_tasks)
    return replace(
        snapshot,
        sub_tasks=sub_tasks,
        completion_percentage=snapshot.completion_percentage if overall is None else overall,
    )


def _apply_cumulative(snapshot: GoalSnapshot, contribution: Contribution) -> GoalSnapshot:
    total = sum(entry.value for entry in snapshot.history) + contribution.value
    target = resolve_target_value(snapshot.metrics)
    if target:
        percentage = total / target * PERCENT_MAX
    else:
        percentage = total
    return replace(snapshot, completion_percentage=clamp_percentage(percentage))


def record_progress(snapshot: GoalSnapshot, contribution: Contribution) -> GoalSnapshot:
    """
    Apply one contribution and return the updated snapshot.

    Raises NotAuthorizedException or SubTaskNotFoundException before any
    computation when the contribution is not allowed, and
    ValidationException for a NaN or infinite value.
    """
    if not math.isfinite(contribution.value):
        raise ValidationException("value", "must be a finite number")
    ensure_can_record(snapshot, contribution)

    history_sub_task_id = None
    if snapshot.collaborative_type == COLLABORATIVE_COMPETE:
        updated = _apply_compete(snapshot, contribution)
    elif snapshot.collaborative_type == COLLABORATIVE_ACHIEVE_TOGETHER and contribution.sub_task_id is not None:
        updated = _apply_achieve_together(snapshot, contribution)
        history_sub_task_id = contribution.sub_task_id
    else:
        updated = _apply_cumulative(snapshot, contribution)

    entry = HistoryEntryState(
        date=contribution.timestamp,
        value=contribution.value,
        updated_by=contribution.contributor_id,
        notes=contribution.notes or "",
        sub_task_id=history_sub_task_id,
    )
    return replace(
        updated,
        history=snapshot.history + (entry,),
        status=derive_status(snapshot.status, updated.completion_percentage),
    )


def set_subtask_status(
    snapshot: GoalSnapshot,
    actor_id: int,
    sub_task_id: int,
    status: str
) -> GoalSnapshot:
    """
    Set a sub-task's status directly.

    Allowed for the assignee and for the goal creator. Completed forces the
    sub-task to 100%. The goal percentage is recomputed with the same
    range-weighted rule record_progress uses.
    """
    sub_task = snapshot.find_sub_task(sub_task_id)
    if sub_task is None:
        raise SubTaskNotFoundException(snapshot.id, sub_task_id)
    if actor_id != sub_task.assigned_to and actor_id != snapshot.created_by:
        raise NotAuthorizedException(actor_id, f"update sub-task {sub_task_id}")

    sub_tasks = []
    for current in snapshot.sub_tasks:
        if current.id == sub_task_id:
            percentage = PERCENT_MAX if status == STATUS_COMPLETED else current.completion_percentage
            current = replace(current, status=status, completion_percentage=percentage)
        sub_tasks.append(current)

    sub_tasks = tuple(sub_tasks)
    overall = aggregate_subtasks(sub_tasks)
    if overall is None:
        overall = snapshot.completion_percentage
    return replace(
        snapshot,
        sub_tasks=sub_tasks,
        completion_percentage=overall,
        status=derive_status(snapshot.status, overall),
    )


def recompute_compete(snapshot: GoalSnapshot, timestamp: Optional[datetime] = None) -> GoalSnapshot:
    """Re-seed compete entries against the current roster and refresh the mean"""
    entries = seed_individual_progress(snapshot, timestamp)
    overall = aggregate_individual(entries)
    percentage = snapshot.completion_percentage if overall is None else overall
    return replace(
        snapshot,
        individual_progress=entries,
        completion_percentage=percentage,
        status=derive_status(snapshot.status, percentage),
    )
