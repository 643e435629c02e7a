"""Notification sink for sync/rollback progress events"""

import abc
import enum
import logging
import threading
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List

from tasksync.config import settings
from tasksync.models.base import utcnow

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    SYNC_START = "sync_start"
    SYNC_PROGRESS = "sync_progress"
    SYNC_COMPLETE = "sync_complete"
    SYNC_ERROR = "sync_error"
    ROLLBACK_COMPLETE = "rollback_complete"


class Notifier(abc.ABC):
    """Fire-and-forget event sink. Implementations may drop events."""

    @abc.abstractmethod
    def notify(self, user_id: int, event_type: EventType, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier(Notifier):
    def notify(self, user_id, event_type, payload):
        logger.info(f"[user {user_id}] {EventType(event_type).value}: {payload}")


class BufferedNotifier(Notifier):
    """Keeps the latest events per user until the client drains them."""

    def __init__(self, max_events: int = 200):
        self._lock = threading.Lock()
        self._events: Dict[int, Deque[Dict[str, Any]]] = defaultdict(lambda: deque(maxlen=max_events))

    def notify(self, user_id, event_type, payload):
        message = {
            "type": EventType(event_type).value,
            "user_id": user_id,
            "data": payload,
            "timestamp": utcnow().isoformat(),
        }
        with self._lock:
            self._events[user_id].append(message)

    def drain(self, user_id: int) -> List[Dict[str, Any]]:
        with self._lock:
            events = self._events.pop(user_id, None)
        return list(events or [])


def safe_notify(sink: Notifier, user_id: int, event_type: EventType, payload: Dict[str, Any]) -> None:
    """Deliver an event, logging instead of raising if the sink fails"""
    if sink is None:
        return
    try:
        sink.notify(user_id, event_type, payload)
    except Exception as e:
        logger.warning(f"Failed to deliver {EventType(event_type).value} event to user {user_id}: {e}")


# Global notifier instance; the API drains it per user.
notifier = BufferedNotifier(settings.notification_buffer_size)
