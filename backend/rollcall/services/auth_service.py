"""Authentication of API callers."""
import re
from typing import Optional, Tuple

from flask_jwt_extended import create_access_token

from rollcall.models.user import User

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class AuthService:
    @staticmethod
    def validate_email(email: str) -> bool:
        """Validate email format."""
        return EMAIL_PATTERN.match(email) is not None

    @staticmethod
    def login(email: str, password: str) -> Tuple[Optional[dict], Optional[str]]:
        """Authenticate user and return an access token carrying the role claim."""
        if not email or not password:
            return None, "Email and password are required"

        if not AuthService.validate_email(email):
            return None, "Invalid email format"

        user = User.query.filter_by(email=email.lower().strip()).first()

        if not user or not user.check_password(password):
            return None, "Invalid email or password"

        if not user.is_active:
            return None, "Account is deactivated"

        # JWT subjects must be strings
        access_token = create_access_token(
            identity=str(user.id),
            additional_claims={'role': user.role.value}
        )

        return {
            "access_token": access_token,
            "user": user.to_dict()
        }, None
