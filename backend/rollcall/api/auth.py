"""Authentication API."""
from flask import Blueprint, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from rollcall import db, limiter
from rollcall.models.user import User
from rollcall.services.auth_service import AuthService
from rollcall.utils.helpers import success_response, error_response

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    """Email and password login for teachers, admins and students."""
    data = request.get_json(silent=True)

    if not data:
        return error_response("Request body must be JSON", 400)

    email = str(data.get("email") or "").strip()
    password = str(data.get("password") or "")

    if not email or not password:
        return error_response("Email and password are required", 400)

    result, error = AuthService.login(email, password)

    if error:
        return error_response(error, 401)

    return success_response(
        data=result,
        message="Login successful"
    )


@auth_bp.route("/me", methods=["GET"])
@jwt_required()
def me():
    """Profile of the authenticated caller."""
    user = db.session.get(User, int(get_jwt_identity()))
    if not user:
        return error_response("User not found", 404)
    return success_response(data=user.to_dict())
