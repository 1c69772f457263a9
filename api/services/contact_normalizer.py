"""
Contact input normalization.

Turns raw, untyped email and phone values from a request into the
canonical strings used for matching:
- Emails are trimmed and lower-cased
- Phone numbers are stripped of formatting and kept as bare digits
"""
import re
from dataclasses import dataclass
from typing import Any, Optional

from api.services.errors import ValidationError

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Spaces, hyphens, parentheses and plus signs are formatting, not digits
PHONE_FORMATTING = re.compile(r'[\s\-()+]')

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15


@dataclass(frozen=True)
class NormalizedContact:
    """A validated (email, phone) submission. Absent fields are None."""
    email: Optional[str] = None
    phone_number: Optional[str] = None


def normalize_email(email: Any) -> Optional[str]:
    """
    Validate and normalize an email address.

    Args:
        email: Raw email value from the request

    Returns:
        Lower-cased email, or None if absent

    Examples:
        >>> normalize_email("  Doc@Example.COM ")
        'doc@example.com'
        >>> normalize_email("")

    Raises:
        ValidationError: If the value is not a string or is malformed
    """
    # JSON objects and arrays are rejected even when empty
    if isinstance(email, (dict, list)):
        raise ValidationError("Email must be a string")

    if not email:
        return None

    if not isinstance(email, str):
        raise ValidationError("Email must be a string")

    trimmed = email.strip()
    if not trimmed:
        return None

    if not EMAIL_PATTERN.match(trimmed):
        raise ValidationError("Invalid email format")

    return trimmed.lower()


def normalize_phone(phone_number: Any) -> Optional[str]:
    """
    Validate and normalize a phone number to its digits.

    Args:
        phone_number: Raw phone value (string or number)

    Returns:
        Digits-only phone number, or None if absent

    Examples:
        >>> normalize_phone("+1 (901) 229-5017")
        '19012295017'
        >>> normalize_phone(5551234567)
        '5551234567'

    Raises:
        ValidationError: If the value is an object or array, non-digits
            remain, or the length is out of range
    """
    if isinstance(phone_number, (dict, list)):
        raise ValidationError("Phone number must be a string or number")

    if not phone_number:
        return None

    phone_str = str(phone_number).strip()
    if not phone_str:
        return None

    cleaned = PHONE_FORMATTING.sub('', phone_str)

    if not cleaned.isdigit() or not cleaned.isascii():
        raise ValidationError("Phone number must contain only digits")

    if not MIN_PHONE_DIGITS <= len(cleaned) <= MAX_PHONE_DIGITS:
        raise ValidationError(
            f"Phone number must be between {MIN_PHONE_DIGITS} and {MAX_PHONE_DIGITS} digits"
        )

    return cleaned


def normalize_contact_info(email: Any, phone_number: Any) -> NormalizedContact:
    """
    Validate and normalize a raw (email, phone) pair.

    Raises:
        ValidationError: If either field is malformed or both are absent
    """
    normalized_email = normalize_email(email)
    normalized_phone = normalize_phone(phone_number)

    if not normalized_email and not normalized_phone:
        raise ValidationError("Either email or phoneNumber must be provided")

    return NormalizedContact(email=normalized_email, phone_number=normalized_phone)
