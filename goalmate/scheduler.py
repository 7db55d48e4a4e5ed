"""
Background scheduler for goal reminders
Handles:
- Daily reminders for goals ending within the next 24 hours
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from goalmate.database import SessionLocal
from goalmate.repositories.goal_repository import GoalRepository
from goalmate.services.notification_service import (
    NotificationSink, LoggingNotificationSink, notify_users
)
from goalmate.constants import REMINDER_HOUR, REMINDER_WINDOW_HOURS, EVENT_GOAL_REMINDER

logger = logging.getLogger("goalmate.scheduler")


def send_goal_reminders(
    db: Session,
    notifier: NotificationSink,
    now: Optional[datetime] = None
) -> int:
    """
    Remind creators and participants of open goals ending soon.

    Returns the number of notifications handed to the sink.
    """
    now = now or datetime.now()
    window_end = now + timedelta(hours=REMINDER_WINDOW_HOURS)
    goals = GoalRepository.get_ending_between(db, now, window_end)

    sent = 0
    for goal in goals:
        payload = {
            "goal_id": goal.id,
            "title": goal.title,
            "end_date": goal.end_date.isoformat(),
        }
        sent += notify_users(
            notifier,
            [goal.created_by],
            EVENT_GOAL_REMINDER,
            {**payload, "message": f'Your goal "{goal.title}" is ending soon!'}
        )
        participant_ids = [user_id for user_id in goal.roster_ids() if user_id != goal.created_by]
        sent += notify_users(
            notifier,
            participant_ids,
            EVENT_GOAL_REMINDER,
            {**payload, "message": f'The goal "{goal.title}" you are part of is ending soon!'}
        )

    logger.info(f"Goal reminders: {len(goals)} goal(s) ending soon, {sent} notification(s) sent")
    return sent


def check_goal_reminders():
    """Scheduled job: send reminders using a fresh session"""
    db: Session = SessionLocal()
    try:
        send_goal_reminders(db, LoggingNotificationSink())
    except Exception as e:
        logger.error(f"Error in check_goal_reminders: {e}")
    finally:
        db.close()


# Create scheduler instance
scheduler = BackgroundScheduler()


def start_scheduler():
    """Start the background scheduler"""
    logger.info("Starting GoalMate background scheduler")

    scheduler.add_job(
        check_goal_reminders,
        CronTrigger(hour=REMINDER_HOUR, minute=0),
        id='check_goal_reminders',
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background scheduler started successfully")


def stop_scheduler():
    """Stop the background scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Background scheduler stopped")
