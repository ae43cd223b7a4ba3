"""Absent records for enrolled students who never redeemed a token."""
import logging
from datetime import datetime
from typing import Dict, List

from rollcall.models.attendance import AttendanceRecord, AttendanceStatus
from rollcall.models.class_session import ClassSession, SessionStatus
from rollcall.services.attendance_store import AttendanceStore
from rollcall.services.enrollment_service import EnrollmentLookup
from rollcall.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Fills in ``absent`` records when a session completes.

    Running it twice is harmless: it only inserts for students it found
    without a record, and ``insert_if_absent`` backs that up if a late scan
    lands in between.
    """

    def __init__(self, enrollment: EnrollmentLookup, records: AttendanceStore, store: SessionStore):
        self._enrollment = enrollment
        self._records = records
        self._store = store

    def reconcile(self, session: ClassSession, completed_at: datetime) -> List[AttendanceRecord]:
        enrolled = self._enrollment.list_active_students(session.class_id)
        existing = self._records.student_ids_for_session(session.id)

        created = []
        for student_id in enrolled:
            if student_id in existing:
                continue
            record, inserted = self._records.insert_if_absent(session.id, student_id, {
                'status': AttendanceStatus.ABSENT,
                'minutes_late': 0,
                'scanned_at': completed_at
            })
            if inserted:
                created.append(record)

        logger.info(
            'Reconciled session %s: %d enrolled, %d already recorded, %d marked absent',
            session.id, len(enrolled), len(existing), len(created)
        )
        return created

    def backfill_class(self, class_id: int, now: datetime) -> Dict[str, int]:
        """Reconcile every completed session of a class."""
        sessions = self._store.list_for_class(class_id, status=SessionStatus.COMPLETED)
        total_created = 0
        for session in sessions:
            completed_at = session.completed_at or now
            total_created += len(self.reconcile(session, completed_at))
        return {
            'records_created': total_created,
            'sessions_processed': len(sessions)
        }
