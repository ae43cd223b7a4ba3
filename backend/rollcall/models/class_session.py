"""Scheduled class meeting whose attendance window is managed by the engine."""
from datetime import datetime
from enum import Enum

from rollcall import db
from rollcall.models.base import BaseModel


class SessionStatus(Enum):
    """Lifecycle states of a class session."""
    SCHEDULED = 'scheduled'
    ACTIVE = 'active'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)


# The superstate in which a session can still be completed.
OPEN_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED)
CANCELLABLE_STATUSES = (SessionStatus.SCHEDULED, SessionStatus.ACTIVE, SessionStatus.PAUSED)


class ClassSession(BaseModel):
    """One meeting of a class, batch-generated from a recurring template."""

    __tablename__ = 'class_sessions'
    __table_args__ = (
        db.UniqueConstraint('class_id', 'session_number', name='uq_class_session_number'),
    )

    class_id = db.Column(db.Integer, nullable=False, index=True)
    instructor_id = db.Column(db.Integer, nullable=True, index=True)
    session_number = db.Column(db.Integer, nullable=False)

    # Schedule
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    room_location = db.Column(db.String(100), nullable=True)

    # Lifecycle
    status = db.Column(db.Enum(SessionStatus), nullable=False, default=SessionStatus.SCHEDULED, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    # Current token (one live token per session)
    qr_token = db.Column(db.Text, nullable=True)
    qr_secret = db.Column(db.String(64), nullable=True)
    qr_expires_at = db.Column(db.DateTime, nullable=True)

    # Denormalized counters
    attendance_count = db.Column(db.Integer, nullable=False, default=0)
    total_enrolled = db.Column(db.Integer, nullable=False, default=0)

    records = db.relationship(
        'AttendanceRecord',
        backref='session',
        lazy='dynamic',
        passive_deletes=True
    )

    @property
    def scheduled_start(self) -> datetime:
        """Official start of the meeting, used to judge lateness."""
        return datetime.combine(self.date, self.start_time)

    @property
    def scheduled_end(self) -> datetime:
        return datetime.combine(self.date, self.end_time)

    def to_dict(self, exclude: list = None) -> dict:
        """Convert to dictionary without the token signature."""
        exclude = (exclude or []) + ['qr_secret', 'qr_token']
        return super().to_dict(exclude=exclude)

    def __repr__(self) -> str:
        return f'<ClassSession {self.id} class={self.class_id} #{self.session_number} {self.status.value}>'
