from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Float, ForeignKey, Table, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime

from goalmate.database import Base
from goalmate.constants import STATUS_NOT_STARTED, GOAL_TYPE_INDIVIDUAL


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    profile_picture = Column(String, default="")
    is_premium = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.now)


# Explicit participant set; the creator is tracked separately on Goal.created_by
goal_participants = Table(
    "goal_participants",
    Base.metadata,
    Column("goal_id", Integer, ForeignKey("goals.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    goal_type = Column(String, default=GOAL_TYPE_INDIVIDUAL)  # Individual, Group, Collaborative
    collaborative_type = Column(String, nullable=True, index=True)  # compete, achieve-together
    goal_category = Column(String, nullable=False, index=True)
    is_custom_category = Column(Boolean, default=False)
    priority = Column(String, default="Medium")

    # Dates
    start_date = Column(DateTime, default=datetime.now)
    end_date = Column(DateTime, nullable=False)

    # Tracking preferences
    frequency = Column(String, default="Daily")
    progress_frequency = Column(String, default="Daily")

    # Derived from completion_percentage, except Archived
    status = Column(String, default=STATUS_NOT_STARTED, index=True)
    completion_percentage = Column(Float, default=0.0)

    # Fitness specific fields
    fitness_type = Column(String, nullable=True)
    duration = Column(Float, nullable=True)
    distance = Column(Float, nullable=True)
    sets = Column(Float, nullable=True)
    reps = Column(Float, nullable=True)
    weight = Column(Float, nullable=True)

    # Education specific fields
    education_type = Column(String, nullable=True)
    study_hours = Column(Float, nullable=True)
    pages = Column(Float, nullable=True)
    modules = Column(Float, nullable=True)
    test_score = Column(String, nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Optimistic concurrency token, bumped on every UPDATE of the row
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship("User", secondary=goal_participants, order_by="User.id")
    sub_tasks = relationship(
        "SubTask", back_populates="goal", order_by="SubTask.id",
        cascade="all, delete-orphan"
    )
    individual_progress = relationship(
        "IndividualProgress", back_populates="goal", order_by="IndividualProgress.id",
        cascade="all, delete-orphan"
    )
    progress_history = relationship(
        "ProgressEntry", back_populates="goal", order_by="ProgressEntry.id",
        cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    def roster_ids(self):
        """Creator first, then explicit participants (deduplicated)"""
        roster = [self.created_by]
        for participant in self.participants:
            if participant.id not in roster:
                roster.append(participant.id)
        return roster

    def is_member(self, user_id: int) -> bool:
        return user_id in self.roster_ids()


class SubTask(Base):
    __tablename__ = "sub_tasks"

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String, default=STATUS_NOT_STARTED)

    # Numeric range mapped onto 0-100%; both NULL means "no range"
    start_value = Column(Float, nullable=True)
    end_value = Column(Float, nullable=True)
    completion_percentage = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.now)

    goal = relationship("Goal", back_populates="sub_tasks")
    assignee = relationship("User", foreign_keys=[assigned_to])


class IndividualProgress(Base):
    __tablename__ = "individual_progress"
    __table_args__ = (UniqueConstraint("goal_id", "user_id", name="uq_individual_progress_goal_user"),)

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    completion_percentage = Column(Float, default=0.0)
    total_progress = Column(Float, default=0.0)  # Cumulative raw contribution
    last_updated = Column(DateTime, default=datetime.now)

    goal = relationship("Goal", back_populates="individual_progress")
    user = relationship("User")


class ProgressEntry(Base):
    """Append-only audit log of contributions"""
    __tablename__ = "progress_history"

    id = Column(Integer, primary_key=True, index=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(DateTime, default=datetime.now)
    value = Column(Float, default=0.0)
    notes = Column(String, default="")
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    sub_task_id = Column(Integer, ForeignKey("sub_tasks.id", ondelete="SET NULL"), nullable=True)

    goal = relationship("Goal", back_populates="progress_history")
