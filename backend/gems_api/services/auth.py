import secrets

from gems_api.core.config import get_settings
from gems_api.core.security import ADMIN_ROLE, create_access_token, verify_password


class AuthenticationError(Exception):
    """Raised when admin authentication fails."""


def authenticate_admin(username: str, password: str) -> str:
    """Check the configured admin credentials and return the admin's username."""
    settings = get_settings()
    if not settings.admin_password_hash:
        raise AuthenticationError("Admin login is not configured")
    if not secrets.compare_digest(username, settings.admin_username):
        raise AuthenticationError("Invalid credentials")
    if not verify_password(password, settings.admin_password_hash):
        raise AuthenticationError("Invalid credentials")
    return settings.admin_username


def create_token_for_admin(username: str) -> str:
    return create_access_token(subject=username, role=ADMIN_ROLE)
