"""Session state machine: activate, pause, resume, complete, cancel.

    scheduled -> active <-> paused -> completed
    scheduled | active | paused -> cancelled

The session row is the source of truth. Every transition is one
compare-and-set on its status; a transition whose CAS fails raises
``PreconditionFailed`` and leaves the row untouched.
"""
import functools
import logging
from datetime import timedelta
from typing import Callable

from rollcall.exceptions import PreconditionFailed, SessionNotFound, StoreUnavailable
from rollcall.models.class_session import (
    CANCELLABLE_STATUSES, OPEN_STATUSES, ClassSession, SessionStatus
)
from rollcall.services.clock import Clock
from rollcall.services.enrollment_service import EnrollmentLookup
from rollcall.services.event_bus import STATUS, EventBus, counts_payload, dashboard_topic, session_topic
from rollcall.services.reconciliation_service import Reconciler
from rollcall.services.rotation_service import RotationScheduler
from rollcall.services.session_store import SessionStore
from rollcall.services.token_service import TokenCodec, from_millis
from rollcall.utils.validators import (
    ActivateRequest, CancelRequest, CompleteRequest, PauseRequest, ResumeRequest
)

logger = logging.getLogger(__name__)


def _call_directly(fn: Callable[[], None]) -> None:
    fn()


class SessionLifecycleController:
    """Drives one class session through its fixed lifecycle."""

    def __init__(
        self,
        store: SessionStore,
        codec: TokenCodec,
        rotation: RotationScheduler,
        reconciler: Reconciler,
        enrollment: EnrollmentLookup,
        events: EventBus,
        clock: Clock,
        hard_timeout: timedelta = timedelta(hours=1),
        run_in_context: Callable[[Callable[[], None]], None] = None
    ):
        self._store = store
        self._codec = codec
        self._rotation = rotation
        self._reconciler = reconciler
        self._enrollment = enrollment
        self._events = events
        self._clock = clock
        self.hard_timeout = hard_timeout
        self._run = run_in_context or _call_directly
        self._handlers = {
            ActivateRequest: lambda r: self.activate(r.session_id, notes=r.notes),
            PauseRequest: lambda r: self.pause(r.session_id),
            ResumeRequest: lambda r: self.resume(r.session_id),
            CompleteRequest: lambda r: self.complete(r.session_id),
            CancelRequest: lambda r: self.cancel(r.session_id, notes=r.notes),
        }

    def apply(self, request) -> ClassSession:
        """Dispatch a lifecycle request variant."""
        handler = self._handlers.get(type(request))
        if handler is None:
            raise TypeError(f'Unsupported lifecycle request: {type(request).__name__}')
        return handler(request)

    def activate(self, session_id: int, notes: str = None) -> ClassSession:
        session = self._require(session_id)
        now = self._clock.now()
        token = self._codec.issue(session_id, now)
        fields = {
            'qr_token': token.to_string(),
            'qr_secret': token.signature,
            'qr_expires_at': from_millis(token.expires_at),
            'activated_at': now,
            'total_enrolled': len(self._enrollment.list_active_students(session.class_id))
        }
        if notes is not None:
            fields['notes'] = notes

        if not self._store.compare_and_set_status(session_id, SessionStatus.SCHEDULED, SessionStatus.ACTIVE, fields):
            raise self._illegal('activate', session_id)

        self._rotation.start(session_id)
        # Not cancelled on pause/complete: the callback re-checks state when it fires.
        self._clock.after(
            self.hard_timeout,
            functools.partial(self._run, functools.partial(self._on_hard_timeout, session_id))
        )
        logger.info('Session %s activated, auto-completes in %s', session_id, self.hard_timeout)

        self._rotation.announce(session_id, token)
        return self._announce_status(session_id)

    def pause(self, session_id: int) -> ClassSession:
        self._require(session_id)
        self._rotation.stop(session_id)
        if not self._store.compare_and_set_status(session_id, SessionStatus.ACTIVE, SessionStatus.PAUSED):
            raise self._illegal('pause', session_id)

        logger.info('Session %s paused', session_id)
        return self._announce_status(session_id)

    def resume(self, session_id: int) -> ClassSession:
        self._require(session_id)
        token = self._codec.issue(session_id, self._clock.now())
        fields = {
            'qr_token': token.to_string(),
            'qr_secret': token.signature,
            'qr_expires_at': from_millis(token.expires_at)
        }
        if not self._store.compare_and_set_status(session_id, SessionStatus.PAUSED, SessionStatus.ACTIVE, fields):
            raise self._illegal('resume', session_id)

        self._rotation.start(session_id)
        logger.info('Session %s resumed', session_id)

        self._rotation.announce(session_id, token)
        return self._announce_status(session_id)

    def complete(self, session_id: int, automatic: bool = False) -> ClassSession:
        self._require(session_id)
        self._rotation.stop(session_id)
        now = self._clock.now()
        if not self._store.compare_and_set_status(session_id, OPEN_STATUSES, SessionStatus.COMPLETED,
                                                  {'completed_at': now}):
            raise self._illegal('complete', session_id)

        session = self._store.get(session_id)
        absent = self._reconciler.reconcile(session, now)
        logger.info('Session %s completed (%s), %d marked absent',
                    session_id, 'timeout' if automatic else 'manual', len(absent))

        return self._announce_status(
            session_id,
            reason='timeout' if automatic else 'manual',
            absent_marked=len(absent)
        )

    def cancel(self, session_id: int, notes: str = None) -> ClassSession:
        self._require(session_id)
        self._rotation.stop(session_id)
        fields = {'notes': notes} if notes is not None else {}
        if not self._store.compare_and_set_status(session_id, CANCELLABLE_STATUSES, SessionStatus.CANCELLED, fields):
            raise self._illegal('cancel', session_id)

        logger.info('Session %s cancelled', session_id)
        return self._announce_status(session_id)

    def _on_hard_timeout(self, session_id: int) -> None:
        try:
            self.complete(session_id, automatic=True)
        except PreconditionFailed:
            logger.debug('Hard timeout for session %s ignored, already closed', session_id)
        except StoreUnavailable:
            logger.error('Hard timeout for session %s could not complete it, store unavailable', session_id)

    def _require(self, session_id: int) -> ClassSession:
        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFound(f'Session {session_id} not found')
        return session

    def _illegal(self, action: str, session_id: int) -> PreconditionFailed:
        session = self._store.get(session_id)
        if session is None:
            return SessionNotFound(f'Session {session_id} not found')
        return PreconditionFailed(f'Cannot {action} session {session_id} while it is {session.status.value}')

    def _announce_status(self, session_id: int, **extra) -> ClassSession:
        session = self._store.get(session_id)
        payload = {
            'session_id': session_id,
            'status': session.status.value,
            'is_active': session.is_active,
            'timestamp': self._clock.now().isoformat()
        }
        payload.update(extra)
        self._events.publish(session_topic(session_id, STATUS), payload)
        self._events.publish(dashboard_topic(session.instructor_id), dict(
            counts_payload(session),
            status=session.status.value
        ))
        return session
