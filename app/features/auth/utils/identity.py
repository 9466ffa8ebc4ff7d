import re
from typing import Any, Tuple

from app.platform.exceptions import ValidationError

PHONE_PATTERN = re.compile(r"^\d{10}$")


def normalize_email(email: Any) -> str:
    """Trim and lowercase an email; emails are stored in this form."""
    if not email or not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required")
    return email.strip().lower()


def resolve_identifier(identifier: Any) -> Tuple[str, str]:
    """
    Work out which user column a login identifier refers to.

    10 digits -> phone_number, contains "@" -> email, anything else ->
    username (lowercased).
    """
    if not identifier or not isinstance(identifier, str) or not identifier.strip():
        raise ValidationError("Identifier is required")
    identifier = identifier.strip()

    if PHONE_PATTERN.match(identifier):
        return "phone_number", identifier
    if "@" in identifier:
        return "email", identifier.lower()
    return "username", identifier.lower()
