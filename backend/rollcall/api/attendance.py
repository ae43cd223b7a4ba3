"""Attendance API: token redemption, instructor overrides, student history."""
from flask import Blueprint, g, request
from flask_jwt_extended import jwt_required

from rollcall import limiter
from rollcall.engine import get_engine
from rollcall.exceptions import RecordNotFound
from rollcall.models.user import UserRole
from rollcall.utils.decorators import student_required, teacher_required
from rollcall.utils.helpers import client_ip, error_response, success_response
from rollcall.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)


@attendance_bp.route('/scan', methods=['POST'])
@limiter.limit("30 per minute")
@jwt_required()
@student_required
def scan():
    """Redeem a scanned QR token for the calling student."""
    redeem_request = Validator.redeem_request(
        request.get_json(silent=True),
        student_id=g.current_user.id,
        ip_address=client_ip(request),
        user_agent=request.headers.get('User-Agent')
    )
    record = get_engine().recorder.redeem(redeem_request)

    return success_response(
        data=record.to_dict(),
        message=f"Attendance marked as {record.status.value}",
        status_code=201
    )


@attendance_bp.route('/<int:record_id>', methods=['PUT'])
@jwt_required()
@teacher_required
def override_status(record_id):
    """Instructor correction of a single record."""
    engine = get_engine()
    record = engine.records.get(record_id)
    if record is None:
        raise RecordNotFound()

    user = g.current_user
    session = engine.sessions.get(record.session_id)
    if user.role is not UserRole.ADMIN and session.instructor_id not in (None, user.id):
        return error_response("You are not the instructor of this session", 403)

    override_request = Validator.status_override_request(record_id, request.get_json(silent=True), user.id)
    record = engine.recorder.override_status(override_request)

    return success_response(data=record.to_dict(), message="Attendance status updated")


@attendance_bp.route('/me', methods=['GET'])
@jwt_required()
@student_required
def my_attendance():
    limit = request.args.get('limit', 50)
    limit = max(1, min(Validator.parse_int(limit, 'limit'), 200))

    records = get_engine().recorder.history_for_student(g.current_user.id, limit=limit)
    return success_response(data=[record.to_dict() for record in records])
