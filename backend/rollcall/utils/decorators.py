"""Custom decorators for authorization."""
from functools import wraps

from flask import g
from flask_jwt_extended import get_jwt_identity

from rollcall import db
from rollcall.models.user import User
from rollcall.utils.helpers import error_response


def _current_user():
    identity = get_jwt_identity()
    try:
        user_id = int(identity)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def teacher_required(f):
    """Decorator to require teacher role or higher. Sets ``g.current_user``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _current_user()

        if not user or not user.is_active:
            return error_response("User not found", 404)

        if not user.is_teacher():
            return error_response("Teacher access required", 403)

        g.current_user = user
        return f(*args, **kwargs)
    return decorated_function


def student_required(f):
    """Decorator to require student role. Sets ``g.current_user``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _current_user()

        if not user or not user.is_active:
            return error_response("User not found", 404)

        if not user.is_student():
            return error_response("Student access required", 403)

        g.current_user = user
        return f(*args, **kwargs)
    return decorated_function
