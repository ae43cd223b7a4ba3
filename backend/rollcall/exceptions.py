"""Error taxonomy for the attendance session engine.

Every error here is recoverable by the caller: the API layer renders it as a
JSON error envelope with the matching HTTP status, nothing is process-fatal.
"""
from typing import Any, Dict


class AttendanceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400
    code = 'attendance_error'
    message = 'Attendance request failed'

    def __init__(self, message: str = None):
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': True,
            'code': self.code,
            'message': self.message,
            'status_code': self.status_code
        }


class ValidationError(AttendanceError):
    """Request payload failed boundary validation."""
    code = 'validation_error'
    message = 'Invalid request data'


class MalformedToken(AttendanceError):
    """The scanned value could not be parsed as an attendance token."""
    code = 'malformed_token'
    message = 'Invalid QR code format'


class InvalidToken(AttendanceError):
    """Expired or forged token. The reason is never exposed to the client."""
    code = 'invalid_token'
    message = 'QR code is invalid or has expired'


class SessionNotOpen(AttendanceError):
    """Session missing, paused, completed or cancelled."""
    status_code = 404
    code = 'session_not_open'
    message = 'Session not found or not active'


class NotEnrolled(AttendanceError):
    status_code = 403
    code = 'not_enrolled'
    message = 'You are not enrolled in this class'


class AlreadyRecorded(AttendanceError):
    """A record already exists for this (session, student) pair."""
    status_code = 409
    code = 'already_recorded'
    message = 'You have already marked attendance for this session'

    def __init__(self, record, message: str = None):
        super().__init__(message)
        self.record = record

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['data'] = self.record.to_dict()
        return result


class PreconditionFailed(AttendanceError):
    """Lifecycle transition attempted from a state that does not allow it."""
    status_code = 409
    code = 'precondition_failed'
    message = 'Session is not in a state that allows this action'


class SessionNotFound(PreconditionFailed):
    status_code = 404
    code = 'session_not_found'
    message = 'Session not found'


class RecordNotFound(AttendanceError):
    status_code = 404
    code = 'record_not_found'
    message = 'Attendance record not found'


class StoreUnavailable(AttendanceError):
    """The database could not be reached. Safe for the caller to retry."""
    status_code = 503
    code = 'store_unavailable'
    message = 'Attendance storage is temporarily unavailable'
