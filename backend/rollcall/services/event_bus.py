"""Best-effort fan-out of lifecycle and attendance events.

Topics are plain strings:

* ``session:<id>:token``       new current token for the instructor screen
* ``session:<id>:attendance``  a student was recorded
* ``session:<id>:status``      lifecycle transition
* ``dashboard:<instructor>``   aggregate counts changed

Delivery is at-most-once from the engine's point of view. A subscriber that
misses an event resynchronises from the session endpoint.
"""
import fnmatch
import itertools
import json
import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)

TOKEN = 'token'
ATTENDANCE = 'attendance'
STATUS = 'status'


def session_topic(session_id: int, kind: str) -> str:
    return f'session:{session_id}:{kind}'


def dashboard_topic(instructor_id: Optional[int]) -> str:
    return f"dashboard:{instructor_id if instructor_id is not None else 'unassigned'}"


@dataclass(frozen=True)
class Event:
    topic: str
    payload: Dict[str, Any]
    sequence: int
    published_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'topic': self.topic,
            'payload': self.payload,
            'sequence': self.sequence,
            'published_at': self.published_at.isoformat()
        }


class EventBus:
    """Publisher side of the fan-out."""

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class InMemoryEventBus(EventBus):
    """In-process fan-out with glob topic subscriptions and a bounded history."""

    def __init__(self, history_size: int = 500):
        self._subscribers: Dict[str, List[Callable[[Event], None]]] = defaultdict(list)
        self._history = deque(maxlen=history_size)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, pattern: str, callback: Callable[[Event], None]) -> Callable[[], None]:
        """Register ``callback`` for topics matching ``pattern``; returns an unsubscribe function."""
        with self._lock:
            self._subscribers[pattern].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers.get(pattern, []):
                    self._subscribers[pattern].remove(callback)

        return unsubscribe

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            event = Event(topic=topic, payload=payload, sequence=next(self._sequence))
            self._history.append(event)
            callbacks = [
                callback
                for pattern, registered in self._subscribers.items()
                if fnmatch.fnmatchcase(topic, pattern)
                for callback in registered
            ]

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception('Subscriber failed while handling %s', topic)

    def history(self, pattern: str = '*', since: int = 0) -> List[Event]:
        """Retained events matching ``pattern`` with a sequence above ``since``."""
        with self._lock:
            return [
                event for event in self._history
                if event.sequence > since and fnmatch.fnmatchcase(event.topic, pattern)
            ]


class RedisEventBus(EventBus):
    """Fan-out through Redis pub/sub channels named after the topics."""

    def __init__(self, url: str = None, client: redis.Redis = None):
        if client is None and not url:
            raise ValueError('RedisEventBus needs a url or a client')
        self._client = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        message = json.dumps(payload, separators=(',', ':'), default=str)
        try:
            self._client.publish(topic, message)
        except redis.RedisError as exc:
            logger.warning('Dropped event on %s: %s', topic, exc)


def build_event_bus(config) -> EventBus:
    url = config.get('EVENT_BUS_URL')
    if url:
        logger.info('Publishing engine events through Redis')
        return RedisEventBus(url)
    return InMemoryEventBus(history_size=config.get('EVENT_HISTORY_SIZE', 500))


def counts_payload(session) -> Dict[str, Any]:
    """Aggregate counters of a session as sent to dashboards."""
    enrolled = session.total_enrolled or 0
    attended = session.attendance_count or 0
    return {
        'session_id': session.id,
        'attendance_count': attended,
        'total_enrolled': enrolled,
        'attendance_rate': round(attended * 100 / enrolled) if enrolled else 0
    }
