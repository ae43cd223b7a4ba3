"""Wires the attendance engine's collaborators onto a Flask app."""
import atexit
import logging
from datetime import timedelta
from typing import Callable

from flask import Flask, current_app, has_app_context

from rollcall.services.attendance_service import AttendanceRecorder
from rollcall.services.attendance_store import AttendanceStore
from rollcall.services.clock import Clock, SchedulerClock, build_clock
from rollcall.services.enrollment_service import EnrollmentLookup
from rollcall.services.event_bus import build_event_bus
from rollcall.services.lifecycle_service import SessionLifecycleController
from rollcall.services.reconciliation_service import Reconciler
from rollcall.services.rotation_service import RotationScheduler
from rollcall.services.session_planner import SessionPlanner
from rollcall.services.session_store import SessionStore
from rollcall.services.token_service import TokenCodec

logger = logging.getLogger(__name__)


class AttendanceEngine:
    """Flask extension owning one instance of every engine collaborator.

    Usage::

        engine = AttendanceEngine()
        engine.init_app(app)

    After ``init_app`` the engine is available as
    ``app.extensions['rollcall']``.
    """

    def __init__(self, app: Flask = None, clock: Clock = None):
        self._clock_override = clock
        self.app = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        config = app.config
        self.app = app

        self.clock = self._clock_override or build_clock(config)
        self.codec = TokenCodec(
            config['QR_SECRET_KEY'],
            window_seconds=config.get('QR_TOKEN_WINDOW_SECONDS', 30)
        )
        self.events = build_event_bus(config)

        self.sessions = SessionStore()
        self.records = AttendanceStore()
        self.enrollment = EnrollmentLookup()

        self.rotation = RotationScheduler(
            clock=self.clock,
            codec=self.codec,
            store=self.sessions,
            events=self.events,
            interval=self.codec.window,
            scan_base_url=config.get('SCAN_BASE_URL', ''),
            run_in_context=self.run_in_context
        )
        self.reconciler = Reconciler(self.enrollment, self.records, self.sessions)
        self.lifecycle = SessionLifecycleController(
            store=self.sessions,
            codec=self.codec,
            rotation=self.rotation,
            reconciler=self.reconciler,
            enrollment=self.enrollment,
            events=self.events,
            clock=self.clock,
            hard_timeout=timedelta(seconds=config.get('SESSION_HARD_TIMEOUT_SECONDS', 3600)),
            run_in_context=self.run_in_context
        )
        self.recorder = AttendanceRecorder(
            codec=self.codec,
            store=self.sessions,
            enrollment=self.enrollment,
            records=self.records,
            events=self.events,
            clock=self.clock,
            grace_minutes=config.get('ATTENDANCE_GRACE_MINUTES', 5)
        )
        self.planner = SessionPlanner()

        app.extensions['rollcall'] = self
        if isinstance(self.clock, SchedulerClock):
            atexit.register(self.shutdown)
        logger.debug('Attendance engine ready (%s)', type(self.clock).__name__)

    def run_in_context(self, fn: Callable[[], None]) -> None:
        """Run a timer callback inside this app's context."""
        if has_app_context() and current_app._get_current_object() is self.app:
            fn()
            return
        with self.app.app_context():
            fn()

    def shutdown(self) -> None:
        """Stop all rotation timers and the clock."""
        self.rotation.stop_all()
        self.clock.shutdown()


def get_engine() -> AttendanceEngine:
    return current_app.extensions['rollcall']
