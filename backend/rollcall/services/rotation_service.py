"""Periodic token rotation for active sessions."""
import functools
import itertools
import logging
import threading
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from rollcall.exceptions import StoreUnavailable
from rollcall.services.clock import Clock, TimerHandle
from rollcall.services.event_bus import EventBus, TOKEN, session_topic
from rollcall.services.session_store import SessionStore
from rollcall.services.token_service import Token, TokenCodec, build_scan_url

logger = logging.getLogger(__name__)


def _call_directly(fn: Callable[[], None]) -> None:
    fn()


class RotationScheduler:
    """Keeps exactly one rotation timer per active session.

    ``start`` and ``stop`` are the only mutators of the registry. Ticks write
    through ``SessionStore.replace_token``, which refuses once the session
    has left ``active``, so a tick racing a pause cannot leave a live token
    behind. Each ``start`` gets its own generation number; a refused tick
    only retires the rotation of its own generation, never one registered
    by a later ``start``.
    """

    def __init__(
        self,
        clock: Clock,
        codec: TokenCodec,
        store: SessionStore,
        events: EventBus,
        interval: timedelta,
        scan_base_url: str = '',
        run_in_context: Callable[[Callable[[], None]], None] = None
    ):
        self._clock = clock
        self._codec = codec
        self._store = store
        self._events = events
        self._interval = interval
        self.scan_base_url = scan_base_url
        self._run = run_in_context or _call_directly
        self._registry: Dict[int, Tuple[int, TimerHandle]] = {}
        self._generations = itertools.count(1)
        self._lock = threading.Lock()

    def start(self, session_id: int) -> bool:
        """Begin rotating; returns False if the session already rotates."""
        with self._lock:
            if session_id in self._registry:
                return False
            generation = next(self._generations)
            tick = functools.partial(self._run, functools.partial(self._tick, session_id, generation))
            self._registry[session_id] = (generation, self._clock.every_until_cancelled(self._interval, tick))
        logger.info('Token rotation started for session %s', session_id)
        return True

    def stop(self, session_id: int) -> bool:
        """Cancel rotation before returning; returns False if none was running."""
        return self._stop(session_id)

    def _stop(self, session_id: int, generation: Optional[int] = None) -> bool:
        with self._lock:
            entry = self._registry.get(session_id)
            if entry is None or (generation is not None and entry[0] != generation):
                return False
            del self._registry[session_id]
        entry[1].cancel()
        logger.info('Token rotation stopped for session %s', session_id)
        return True

    def stop_all(self) -> None:
        for session_id in self.active_sessions():
            self.stop(session_id)

    def is_rotating(self, session_id: int) -> bool:
        with self._lock:
            return session_id in self._registry

    def active_sessions(self) -> List[int]:
        with self._lock:
            return list(self._registry)

    def rotate(self, session_id: int, generation: Optional[int] = None) -> Optional[Token]:
        """Issue and store a fresh token; stops rotation if the session closed.

        With ``generation`` set, only that generation's timer is stopped.
        """
        token = self._codec.issue(session_id, self._clock.now())
        if not self._store.replace_token(session_id, token):
            logger.info('Session %s is no longer active, ending rotation', session_id)
            self._stop(session_id, generation)
            return None
        self.announce(session_id, token)
        return token

    def announce(self, session_id: int, token: Token) -> None:
        """Publish ``token`` as the session's current one."""
        self._events.publish(session_topic(session_id, TOKEN), {
            'session_id': session_id,
            'token': token.to_string(),
            'scan_url': build_scan_url(token, self.scan_base_url),
            'expires_at': token.expires_at_datetime.isoformat(),
            'time_remaining': token.seconds_remaining(self._clock.now())
        })

    def _tick(self, session_id: int, generation: int) -> None:
        try:
            self.rotate(session_id, generation)
        except StoreUnavailable:
            logger.warning('Token rotation for session %s skipped, store unavailable', session_id)
