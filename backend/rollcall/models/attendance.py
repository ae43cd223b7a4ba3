"""Attendance outcome of one student for one session."""
from enum import Enum

from rollcall import db
from rollcall.models.base import BaseModel


class AttendanceStatus(Enum):
    PRESENT = 'present'
    LATE = 'late'
    ABSENT = 'absent'
    EXCUSED = 'excused'

    @property
    def counts_as_attended(self) -> bool:
        return self in ATTENDED_STATUSES


ATTENDED_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.EXCUSED)


class AttendanceRecord(BaseModel):
    """Attendance record model.

    At most one row exists per (session, student); the unique constraint is
    what stops concurrent scans, not an application-level check.
    """

    __tablename__ = 'attendance_records'
    __table_args__ = (
        db.UniqueConstraint('session_id', 'student_id', name='uq_attendance_session_student'),
    )

    session_id = db.Column(
        db.Integer,
        db.ForeignKey('class_sessions.id', ondelete='CASCADE'),
        nullable=False,
        index=True
    )
    student_id = db.Column(db.Integer, nullable=False, index=True)
    status = db.Column(db.Enum(AttendanceStatus), nullable=False, default=AttendanceStatus.PRESENT)
    minutes_late = db.Column(db.Integer, nullable=False, default=0)
    scanned_at = db.Column(db.DateTime, nullable=False)

    # Anti-abuse context, stored but not evaluated
    device_fingerprint = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    qr_secret_used = db.Column(db.String(64), nullable=True)

    # Instructor override audit
    status_changed_by = db.Column(db.Integer, nullable=True)
    status_changed_at = db.Column(db.DateTime, nullable=True)
    status_change_reason = db.Column(db.Text, nullable=True)

    def to_dict(self, exclude: list = None) -> dict:
        exclude = (exclude or []) + ['qr_secret_used']
        return super().to_dict(exclude=exclude)

    def __repr__(self):
        return f'<AttendanceRecord {self.session_id}-{self.student_id} {self.status.value}>'
