import re
from typing import Any, Dict, Optional

from messenger.config import settings
from messenger.models.message import MessageType

MESSAGE_TYPES = {t.value for t in MessageType}

def validate_message(content: Optional[str], message_type: str = "text",
                     has_attachment: bool = False,
                     max_length: Optional[int] = None) -> Dict[str, Any]:
    """Validate an outgoing message and return validation result"""
    errors = []
    max_length = max_length or settings.MAX_MESSAGE_LENGTH
    # Checks run on what would be stored
    sanitized = sanitize_input(content or "")

    if message_type not in MESSAGE_TYPES:
        errors.append(f"Unknown message type {message_type!r}.")

    # Check message length
    if len(sanitized) > max_length:
        errors.append(f"Message too long. Maximum {max_length} characters allowed.")

    # Content may only be empty when a file reference carries the message
    if not sanitized and not has_attachment:
        errors.append("Message content cannot be empty.")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors,
        "sanitized_content": sanitized,
    }

def sanitize_input(text: str) -> str:
    """Drop control characters other than newline and tab, trim the ends"""
    if not text:
        return text
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text).strip()

def validate_username(username: str) -> bool:
    """Validate username format"""
    if not username or len(username) < 3 or len(username) > 50:
        return False

    # Only allow alphanumeric characters, underscores, and hyphens
    pattern = r'^[a-zA-Z0-9_-]+$'
    return re.match(pattern, username) is not None

def validate_password_strength(password: str) -> Dict[str, Any]:
    """Validate password strength"""
    errors = []

    if len(password) < 8:
        errors.append("Password must be at least 8 characters long.")

    if not re.search(r'[A-Za-z]', password):
        errors.append("Password must contain at least one letter.")

    if not re.search(r'\d', password):
        errors.append("Password must contain at least one number.")

    common_passwords = ['password', '12345678', 'qwerty123', 'password123']
    if password.lower() in common_passwords:
        errors.append("Password is too common.")

    return {
        "is_valid": len(errors) == 0,
        "errors": errors,
    }
