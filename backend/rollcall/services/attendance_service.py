"""Token redemption and instructor overrides."""
import logging
from datetime import datetime, timedelta
from typing import List, Tuple

from rollcall.exceptions import (
    AlreadyRecorded, InvalidToken, MalformedToken, NotEnrolled,
    PreconditionFailed, RecordNotFound, SessionNotOpen
)
from rollcall.models.attendance import AttendanceRecord, AttendanceStatus
from rollcall.models.class_session import ClassSession, SessionStatus
from rollcall.services.attendance_store import AttendanceStore
from rollcall.services.clock import Clock
from rollcall.services.enrollment_service import EnrollmentLookup
from rollcall.services.event_bus import ATTENDANCE, EventBus, counts_payload, dashboard_topic, session_topic
from rollcall.services.session_store import SessionStore
from rollcall.services.token_service import TokenCodec, TokenMalformed, TokenRejected, parse_token
from rollcall.utils.validators import RedeemRequest, StatusOverrideRequest

logger = logging.getLogger(__name__)


def assess_lateness(scanned_at: datetime, scheduled_start: datetime, grace_minutes: int) -> Tuple[AttendanceStatus, int]:
    """Status and recorded minutes late for a scan.

    Lateness is measured from the scheduled start, not from activation.
    Scans inside the grace period are ``present`` with zero minutes late.
    """
    minutes = max(0, (scanned_at - scheduled_start) // timedelta(minutes=1))
    if minutes > grace_minutes:
        return AttendanceStatus.LATE, minutes
    return AttendanceStatus.PRESENT, 0


class AttendanceRecorder:
    """Turns a scanned token into exactly one attendance record."""

    def __init__(
        self,
        codec: TokenCodec,
        store: SessionStore,
        enrollment: EnrollmentLookup,
        records: AttendanceStore,
        events: EventBus,
        clock: Clock,
        grace_minutes: int = 5
    ):
        self._codec = codec
        self._store = store
        self._enrollment = enrollment
        self._records = records
        self._events = events
        self._clock = clock
        self.grace_minutes = grace_minutes

    def redeem(self, request: RedeemRequest) -> AttendanceRecord:
        now = self._clock.now()

        try:
            token = parse_token(request.token)
        except TokenMalformed as e:
            logger.info('Rejected scan by student %s: %s', request.student_id, e)
            raise MalformedToken()

        try:
            session_id = self._codec.verify(token, now)
        except TokenRejected as e:
            # Reason stays in the log; the client only learns the token was refused.
            logger.info('Rejected token for session %s from student %s (%s)',
                        token.session_id, request.student_id, e.reason)
            raise InvalidToken()

        session = self._store.get(session_id)
        if session is None or session.status is not SessionStatus.ACTIVE:
            raise SessionNotOpen()

        if not self._enrollment.is_actively_enrolled(request.student_id, session.class_id):
            raise NotEnrolled()

        status, minutes_late = assess_lateness(now, session.scheduled_start, self.grace_minutes)
        record, inserted = self._records.insert_if_absent(session.id, request.student_id, {
            'status': status,
            'minutes_late': minutes_late,
            'scanned_at': now,
            'device_fingerprint': request.device_fingerprint,
            'ip_address': request.ip_address,
            'qr_secret_used': token.signature
        })
        if not inserted:
            raise AlreadyRecorded(record)

        self._store.increment_attendance_count(session.id)
        logger.info('Recorded student %s as %s for session %s', request.student_id, status.value, session.id)
        self._publish(session.id, record)
        return record

    def override_status(self, request: StatusOverrideRequest) -> AttendanceRecord:
        """Instructor correction of a record, allowed once per record."""
        record = self._records.get(request.record_id)
        if record is None:
            raise RecordNotFound()
        previous = record.status

        changed = self._records.apply_override(
            request.record_id,
            request.status,
            changed_by=request.changed_by,
            changed_at=self._clock.now(),
            reason=request.reason
        )
        if not changed:
            raise PreconditionFailed('Attendance status has already been changed for this record')

        delta = int(request.status.counts_as_attended) - int(previous.counts_as_attended)
        if delta:
            self._store.increment_attendance_count(record.session_id, by=delta)

        record = self._records.get(request.record_id)
        logger.info('Record %s changed from %s to %s by %s',
                    record.id, previous.value, record.status.value, request.changed_by)
        self._publish(record.session_id, record)
        return record

    def history_for_student(self, student_id: int, limit: int = 50) -> List[AttendanceRecord]:
        return self._records.list_for_student(student_id, limit=limit)

    def _publish(self, session_id: int, record: AttendanceRecord) -> None:
        session: ClassSession = self._store.get(session_id)
        counts = counts_payload(session)
        self._events.publish(session_topic(session_id, ATTENDANCE), dict(
            counts,
            student_id=record.student_id,
            status=record.status.value,
            minutes_late=record.minutes_late,
            scanned_at=record.scanned_at.isoformat()
        ))
        self._events.publish(dashboard_topic(session.instructor_id), dict(
            counts,
            timestamp=self._clock.now().isoformat()
        ))
