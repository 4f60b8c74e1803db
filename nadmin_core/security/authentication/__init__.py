"""
Authentication module - sessions and the admin password

Provides:
- SessionManager: Session lifecycle with sliding expiration and CSRF binding
- PasswordManager: bcrypt admin password with environment-aware policy
"""

from .session_manager import (
    SessionManager,
    SessionItem,
    SessionSettings,
    SessionError,
    SessionLimitError,
    generate_token,
)
from .password_manager import (
    PasswordManager,
    PasswordResult,
    PasswordRule,
    PasswordValidation,
    validate_password,
)

__all__ = [
    "SessionManager",
    "SessionItem",
    "SessionSettings",
    "SessionError",
    "SessionLimitError",
    "generate_token",
    "PasswordManager",
    "PasswordResult",
    "PasswordRule",
    "PasswordValidation",
    "validate_password",
]
