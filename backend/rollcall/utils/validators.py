"""Request variants and boundary validation.

Each engine operation takes its own small request type carrying only the
fields it needs. ``Validator`` builds them from raw JSON payloads and raises
``ValidationError`` before anything reaches the state machine.
"""
import json
from dataclasses import dataclass
from datetime import date, time
from typing import Any, Dict, List, Optional, Tuple

from rollcall.exceptions import ValidationError
from rollcall.models.attendance import AttendanceStatus

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
MAX_NOTES_LENGTH = 1000
MAX_FINGERPRINT_LENGTH = 255


@dataclass(frozen=True)
class ActivateRequest:
    session_id: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class PauseRequest:
    session_id: int


@dataclass(frozen=True)
class ResumeRequest:
    session_id: int


@dataclass(frozen=True)
class CompleteRequest:
    session_id: int


@dataclass(frozen=True)
class CancelRequest:
    session_id: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class RedeemRequest:
    token: str
    student_id: int
    device_fingerprint: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class StatusOverrideRequest:
    record_id: int
    status: AttendanceStatus
    changed_by: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class GenerateSessionsRequest:
    class_id: int
    first_date: date
    last_date: date
    weekdays: Tuple[int, ...]
    start_time: time
    end_time: time
    instructor_id: Optional[int] = None
    room_location: Optional[str] = None


LIFECYCLE_REQUESTS = {
    'activate': ActivateRequest,
    'pause': PauseRequest,
    'resume': ResumeRequest,
    'complete': CompleteRequest,
    'cancel': CancelRequest,
}


class Validator:
    """Validation helper class."""

    @staticmethod
    def validate_required_fields(data: Dict, required_fields: List[str]) -> Dict[str, Any]:
        """Validate required fields in data."""
        errors = []

        for field in required_fields:
            if field not in data or data[field] in (None, ''):
                errors.append(f"{field} is required")

        return {
            "is_valid": len(errors) == 0,
            "errors": errors
        }

    @staticmethod
    def require(data: Optional[Dict], required_fields: List[str]) -> Dict:
        if data is None or not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        result = Validator.validate_required_fields(data, required_fields)
        if not result['is_valid']:
            raise ValidationError('; '.join(result['errors']))
        return data

    @staticmethod
    def optional_text(data: Dict, field: str, max_length: int) -> Optional[str]:
        value = data.get(field)
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a string")
        value = value.strip()
        if len(value) > max_length:
            raise ValidationError(f"{field} is too long")
        return value or None

    @staticmethod
    def parse_date(value: Any, field: str) -> date:
        try:
            return date.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")

    @staticmethod
    def parse_time(value: Any, field: str) -> time:
        try:
            return time.fromisoformat(str(value))
        except ValueError:
            raise ValidationError(f"{field} must be a time in HH:MM format")

    @staticmethod
    def parse_int(value: Any, field: str) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be an integer")

    @staticmethod
    def lifecycle_request(action: str, session_id: int, data: Optional[Dict] = None):
        """Build the request variant for a lifecycle ``action``."""
        request_cls = LIFECYCLE_REQUESTS.get(action)
        if request_cls is None:
            raise ValidationError(f"Unknown session action: {action}")
        data = data or {}
        if request_cls in (ActivateRequest, CancelRequest):
            return request_cls(session_id=session_id,
                               notes=Validator.optional_text(data, 'notes', MAX_NOTES_LENGTH))
        return request_cls(session_id=session_id)

    @staticmethod
    def redeem_request(
        data: Optional[Dict],
        student_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> RedeemRequest:
        """Scan payload: ``{"token": ..., "device_fingerprint": ...}``.

        ``qr_data`` is accepted as an alias for ``token``; the fingerprint
        falls back to the caller's User-Agent.
        """
        if isinstance(data, dict) and 'token' not in data and 'qr_data' in data:
            data = dict(data, token=data['qr_data'])
        data = Validator.require(data, ['token'])

        token = data['token']
        if isinstance(token, dict):
            # Some scanners hand over the decoded JSON object
            token = json.dumps(token, separators=(",", ":"))
        if not isinstance(token, str):
            raise ValidationError("token must be a string")

        fingerprint = Validator.optional_text(data, 'device_fingerprint', MAX_FINGERPRINT_LENGTH)
        if fingerprint is None and user_agent:
            fingerprint = user_agent[:MAX_FINGERPRINT_LENGTH]

        return RedeemRequest(
            token=token,
            student_id=student_id,
            device_fingerprint=fingerprint or 'unknown',
            ip_address=ip_address
        )

    @staticmethod
    def status_override_request(record_id: int, data: Optional[Dict], changed_by: int) -> StatusOverrideRequest:
        data = Validator.require(data, ['status'])
        try:
            status = AttendanceStatus(str(data['status']).lower())
        except ValueError:
            allowed = ', '.join(s.value for s in AttendanceStatus)
            raise ValidationError(f"status must be one of: {allowed}")
        return StatusOverrideRequest(
            record_id=record_id,
            status=status,
            changed_by=changed_by,
            reason=Validator.optional_text(data, 'reason', MAX_NOTES_LENGTH)
        )

    @staticmethod
    def generate_sessions_request(class_id: int, data: Optional[Dict]) -> GenerateSessionsRequest:
        data = Validator.require(data, ['first_date', 'last_date', 'days_of_week', 'start_time', 'end_time'])

        first_date = Validator.parse_date(data['first_date'], 'first_date')
        last_date = Validator.parse_date(data['last_date'], 'last_date')
        if last_date < first_date:
            raise ValidationError("last_date must not be before first_date")

        start_time = Validator.parse_time(data['start_time'], 'start_time')
        end_time = Validator.parse_time(data['end_time'], 'end_time')
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")

        days = data['days_of_week']
        if isinstance(days, str):
            days = [day for day in days.split(',') if day.strip()]
        if not isinstance(days, list) or not days:
            raise ValidationError("days_of_week must be a non-empty list of weekday names")
        weekdays = []
        for day in days:
            name = str(day).strip().lower()
            if name not in WEEKDAYS:
                raise ValidationError(f"Unknown weekday: {day}")
            weekdays.append(WEEKDAYS.index(name))

        instructor_id = data.get('instructor_id')
        return GenerateSessionsRequest(
            class_id=class_id,
            first_date=first_date,
            last_date=last_date,
            weekdays=tuple(sorted(set(weekdays))),
            start_time=start_time,
            end_time=end_time,
            instructor_id=Validator.parse_int(instructor_id, 'instructor_id') if instructor_id is not None else None,
            room_location=Validator.optional_text(data, 'room_location', 100)
        )

