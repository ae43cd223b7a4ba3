"""Persistence for attendance records."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from rollcall import db
from rollcall.models.attendance import AttendanceRecord, AttendanceStatus
from rollcall.services.session_store import store_call

logger = logging.getLogger(__name__)


class AttendanceStore:
    """Insert-if-absent writes backed by the (session, student) unique constraint."""

    @store_call
    def get(self, record_id: int) -> Optional[AttendanceRecord]:
        return AttendanceRecord.get_by_id(record_id)

    @store_call
    def find(self, session_id: int, student_id: int) -> Optional[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(
            session_id=session_id,
            student_id=student_id
        ).populate_existing().first()

    @store_call
    def insert_if_absent(
        self,
        session_id: int,
        student_id: int,
        fields: Dict[str, Any]
    ) -> Tuple[AttendanceRecord, bool]:
        """Insert a record, or return the existing one when the pair is taken.

        The database constraint decides the winner, so two concurrent
        attempts can never both insert.
        """
        record = AttendanceRecord(session_id=session_id, student_id=student_id, **fields)
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.find(session_id, student_id)
            if existing is None:
                raise
            logger.debug('Record for session %s student %s already exists', session_id, student_id)
            return existing, False
        return record, True

    @store_call
    def student_ids_for_session(self, session_id: int) -> Set[int]:
        rows = db.session.query(AttendanceRecord.student_id).filter_by(session_id=session_id).all()
        return {row.student_id for row in rows}

    @store_call
    def list_for_session(self, session_id: int) -> List[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(session_id=session_id).order_by(
            AttendanceRecord.scanned_at.desc()
        ).all()

    @store_call
    def list_for_student(self, student_id: int, limit: int = 50) -> List[AttendanceRecord]:
        return AttendanceRecord.query.filter_by(student_id=student_id).order_by(
            AttendanceRecord.scanned_at.desc()
        ).limit(limit).all()

    @store_call
    def apply_override(
        self,
        record_id: int,
        status: AttendanceStatus,
        changed_by: int,
        changed_at: datetime,
        reason: Optional[str] = None
    ) -> bool:
        """Change a record's status once; a second override matches no row."""
        stmt = (
            update(AttendanceRecord)
            .where(AttendanceRecord.id == record_id, AttendanceRecord.status_changed_at.is_(None))
            .values(
                status=status,
                minutes_late=0 if status is not AttendanceStatus.LATE else AttendanceRecord.minutes_late,
                status_changed_by=changed_by,
                status_changed_at=changed_at,
                status_change_reason=reason
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1
