"""
Notification sink.
Delivery to clients (sockets, push, email) happens outside this service;
events are handed to a sink on a best-effort, at-most-once basis.
"""
import logging
from typing import Iterable

logger = logging.getLogger("goalmate.notifications")


class NotificationSink:
    """Interface for outgoing user notifications"""

    def notify(self, user_id: int, event_type: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Default sink: writes events to the notifications log"""

    def notify(self, user_id: int, event_type: str, payload: dict) -> None:
        logger.info(f"Notify user {user_id}: {event_type} {payload}")


def notify_users(
    sink: NotificationSink,
    user_ids: Iterable[int],
    event_type: str,
    payload: dict
) -> int:
    """
    Fan an event out to several users.

    A failing delivery is logged and skipped; returns how many were handed
    to the sink successfully.
    """
    delivered = 0
    for user_id in user_ids:
        try:
            sink.notify(user_id, event_type, payload)
            delivered += 1
        except Exception as e:
            logger.warning(f"Failed to deliver {event_type} to user {user_id}: {e}")
    return delivered
