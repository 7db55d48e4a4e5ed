"""
Goal repository - Data access layer for the Goal aggregate.
Sub-tasks, individual progress and history are loaded and written through
the Goal relationships.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import or_

from goalmate.models import Goal, User
from goalmate.constants import STATUS_COMPLETED, STATUS_ARCHIVED


class GoalRepository:
    """Repository for Goal data access"""

    @staticmethod
    def get_by_id(db: Session, goal_id: int) -> Optional[Goal]:
        """Get goal by ID"""
        return db.query(Goal).filter(Goal.id == goal_id).first()

    @staticmethod
    def get_for_user(db: Session, user_id: int) -> List[Goal]:
        """Get goals the user created or participates in"""
        return db.query(Goal).filter(
            or_(
                Goal.created_by == user_id,
                Goal.participants.any(User.id == user_id)
            )
        ).order_by(Goal.created_at.desc(), Goal.id.desc()).all()

    @staticmethod
    def count_created_by(db: Session, user_id: int) -> int:
        """Count goals created by a user"""
        return db.query(Goal).filter(Goal.created_by == user_id).count()

    @staticmethod
    def get_ending_between(db: Session, start: datetime, end: datetime) -> List[Goal]:
        """Get open goals whose end date falls within [start, end]"""
        return db.query(Goal).filter(
            Goal.end_date >= start,
            Goal.end_date <= end,
            Goal.status.notin_([STATUS_COMPLETED, STATUS_ARCHIVED])
        ).order_by(Goal.end_date).all()

    @staticmethod
    def create(db: Session, goal: Goal) -> Goal:
        """Create new goal"""
        db.add(goal)
        db.commit()
        db.refresh(goal)
        return goal

    @staticmethod
    def save(db: Session, goal: Goal) -> Goal:
        """
        Write the aggregate in one transaction.

        Raises StaleDataError if the goal's version changed since it was read.
        """
        db.commit()
        db.refresh(goal)
        return goal

    @staticmethod
    def delete(db: Session, goal: Goal) -> None:
        """Delete a goal with its sub-tasks, progress and history"""
        db.delete(goal)
        db.commit()
