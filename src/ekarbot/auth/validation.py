"""
Input validation for credentials and new accounts.

Every check raises ValidationInputError before any store access.
"""

import re

from .errors import ValidationInputError

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

MAX_IDENTIFIER_LENGTH = 254
MAX_SECRET_LENGTH = 1000
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6


def _capitalize(label: str) -> str:
    return label[:1].upper() + label[1:]


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return email.strip().lower()


def validate_credentials_input(identifier, secret, label: str, email: bool = False) -> None:
    """
    Check a sign-in attempt before it touches the rate limiter or store.

    Args:
        identifier: Login handle as supplied by the caller
        secret: Password as supplied by the caller
        label: Human name of the identifier ("Sales Agent ID", "email", ...)
        email: Whether the identifier must be an email address

    Raises:
        ValidationInputError: If either value is missing or malformed
    """
    if not isinstance(identifier, str) or not identifier.strip() or not isinstance(secret, str) or not secret:
        raise ValidationInputError(f"{_capitalize(label)} and password are required")

    if len(identifier) > MAX_IDENTIFIER_LENGTH:
        raise ValidationInputError(f"{_capitalize(label)} is too long", field="identifier")

    if len(secret) > MAX_SECRET_LENGTH:
        raise ValidationInputError("Password is too long", field="secret")

    if email and not is_valid_email(identifier.strip()):
        raise ValidationInputError("Invalid email format", field="email")


def validate_sign_up_input(email, password, username) -> None:
    """
    Check a new-account request.

    Raises:
        ValidationInputError: On the first failing rule
    """
    if not email or not password or not username:
        raise ValidationInputError("All fields are required")

    for field, value in (("email", email), ("password", password), ("username", username)):
        if not isinstance(value, str):
            raise ValidationInputError(f"Invalid {field}", field=field)

    if not is_valid_email(email.strip()):
        raise ValidationInputError("Invalid email format", field="email")

    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationInputError(
            f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters",
            field="username",
        )

    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationInputError(
            f"Password must be at least {PASSWORD_MIN_LENGTH} characters", field="password"
        )
