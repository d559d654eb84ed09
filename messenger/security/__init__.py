from .auth import create_access_token, get_password_hash, verify_password, verify_token
from .validation import validate_message, validate_password_strength, validate_username

__all__ = [
    "create_access_token",
    "get_password_hash",
    "verify_password",
    "verify_token",
    "validate_message",
    "validate_password_strength",
    "validate_username",
]
