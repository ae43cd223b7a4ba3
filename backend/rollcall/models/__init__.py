"""Models package with all models."""
from .base import BaseModel
from .user import User, UserRole
from .class_session import ClassSession, SessionStatus, OPEN_STATUSES, CANCELLABLE_STATUSES
from .attendance import AttendanceRecord, AttendanceStatus, ATTENDED_STATUSES
from .enrollment import Enrollment, EnrollmentStatus

__all__ = [
    'BaseModel', 'User', 'UserRole',
    'ClassSession', 'SessionStatus', 'OPEN_STATUSES', 'CANCELLABLE_STATUSES',
    'AttendanceRecord', 'AttendanceStatus', 'ATTENDED_STATUSES',
    'Enrollment', 'EnrollmentStatus'
]
