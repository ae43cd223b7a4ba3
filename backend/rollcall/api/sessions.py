"""Session lifecycle and instructor-facing session endpoints."""
from flask import Blueprint, g, request
from flask_jwt_extended import jwt_required

from rollcall.engine import get_engine
from rollcall.exceptions import PreconditionFailed, SessionNotFound, ValidationError
from rollcall.models.class_session import SessionStatus
from rollcall.models.user import UserRole
from rollcall.services.event_bus import counts_payload
from rollcall.services.token_service import build_scan_url, parse_token, render_qr_image
from rollcall.utils.decorators import teacher_required
from rollcall.utils.helpers import error_response, success_response
from rollcall.utils.validators import LIFECYCLE_REQUESTS, Validator

sessions_bp = Blueprint('sessions', __name__)
classes_bp = Blueprint('classes', __name__)

ACTION_MESSAGES = {
    'activate': 'Session activated',
    'pause': 'Session paused',
    'resume': 'Session resumed',
    'complete': 'Session completed',
    'cancel': 'Session cancelled',
}


def _load_session(session_id: int):
    session = get_engine().sessions.get(session_id)
    if session is None:
        raise SessionNotFound(f'Session {session_id} not found')
    return session


def _forbidden_unless_owner(session):
    """Admins manage every session, teachers only their own."""
    user = g.current_user
    if user.role is UserRole.ADMIN or session.instructor_id in (None, user.id):
        return None
    return error_response("You are not the instructor of this session", 403)


def _forbidden_unless_class_owner(class_id: int):
    """Teachers reach a class only while no other instructor holds a session in it."""
    user = g.current_user
    if user.role is UserRole.ADMIN:
        return None
    if get_engine().sessions.instructor_ids_for_class(class_id) - {user.id}:
        return error_response("You are not the instructor of this class", 403)
    return None


@sessions_bp.route('/<int:session_id>', methods=['GET'])
@jwt_required()
@teacher_required
def get_session(session_id):
    session = _load_session(session_id)
    denied = _forbidden_unless_owner(session)
    if denied:
        return denied

    data = session.to_dict()
    data['attendance_rate'] = counts_payload(session)['attendance_rate']
    data['is_rotating'] = get_engine().rotation.is_rotating(session_id)
    return success_response(data=data)


@sessions_bp.route('/<int:session_id>/<action>', methods=['POST'])
@jwt_required()
@teacher_required
def change_status(session_id, action):
    """activate, pause, resume, complete or cancel a session."""
    if action not in LIFECYCLE_REQUESTS:
        return error_response(f"Unknown session action: {action}", 404)

    session = _load_session(session_id)
    denied = _forbidden_unless_owner(session)
    if denied:
        return denied

    lifecycle_request = Validator.lifecycle_request(action, session_id, request.get_json(silent=True))
    session = get_engine().lifecycle.apply(lifecycle_request)

    return success_response(data=session.to_dict(), message=ACTION_MESSAGES[action])


@sessions_bp.route('/<int:session_id>/qr', methods=['GET'])
@jwt_required()
@teacher_required
def current_qr(session_id):
    """Current token of an active session, rendered for projection."""
    engine = get_engine()
    session = _load_session(session_id)
    denied = _forbidden_unless_owner(session)
    if denied:
        return denied

    if session.status is not SessionStatus.ACTIVE or not session.qr_token:
        raise PreconditionFailed(f'Session {session_id} is {session.status.value}, no QR code is displayed')

    token = parse_token(session.qr_token)
    scan_url = build_scan_url(token, engine.rotation.scan_base_url)

    return success_response(data={
        'session_id': session_id,
        'token': token.to_string(),
        'scan_url': scan_url,
        'qr_image': render_qr_image(scan_url),
        'expires_at': token.expires_at_datetime.isoformat(),
        'time_remaining': token.seconds_remaining(engine.clock.now())
    })


@sessions_bp.route('/<int:session_id>/attendance', methods=['GET'])
@jwt_required()
@teacher_required
def session_attendance(session_id):
    engine = get_engine()
    session = _load_session(session_id)
    denied = _forbidden_unless_owner(session)
    if denied:
        return denied

    records = engine.records.list_for_session(session_id)
    data = counts_payload(session)
    data['status'] = session.status.value
    data['records'] = [record.to_dict() for record in records]
    return success_response(data=data)


@classes_bp.route('/<int:class_id>/sessions', methods=['GET'])
@jwt_required()
@teacher_required
def list_class_sessions(class_id):
    denied = _forbidden_unless_class_owner(class_id)
    if denied:
        return denied

    status = request.args.get('status')
    if status:
        try:
            status = SessionStatus(status.lower())
        except ValueError:
            raise ValidationError(f"Unknown session status: {status}")

    sessions = get_engine().sessions.list_for_class(class_id, status=status or None)
    return success_response(data=[session.to_dict() for session in sessions])


@classes_bp.route('/<int:class_id>/sessions/generate', methods=['POST'])
@jwt_required()
@teacher_required
def generate_sessions(class_id):
    """Create scheduled sessions from a weekly template."""
    denied = _forbidden_unless_class_owner(class_id)
    if denied:
        return denied

    user = g.current_user
    data = request.get_json(silent=True)
    if isinstance(data, dict) and user.role is UserRole.TEACHER:
        if data.get('instructor_id') not in (None, user.id):
            return error_response("Teachers can only schedule their own sessions", 403)
        data = dict(data, instructor_id=user.id)

    generate_request = Validator.generate_sessions_request(class_id, data)
    sessions = get_engine().planner.generate(generate_request)

    return success_response(
        data=[session.to_dict() for session in sessions],
        message=f"Generated {len(sessions)} sessions",
        status_code=201
    )


@classes_bp.route('/<int:class_id>/backfill-attendance', methods=['POST'])
@jwt_required()
@teacher_required
def backfill_attendance(class_id):
    """Mark missing students absent in every completed session of a class."""
    denied = _forbidden_unless_class_owner(class_id)
    if denied:
        return denied

    engine = get_engine()
    result = engine.reconciler.backfill_class(class_id, engine.clock.now())
    return success_response(
        data=result,
        message=f"Created {result['records_created']} absent records"
    )
