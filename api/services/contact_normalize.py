"""
Contact identifier utilities for identity reconciliation.

Matching is exact-string, so every email and phone number passes through
here before it reaches the resolver or the store.
"""
import re
from typing import Optional

from api.services.errors import InvalidInputError

# Deliberately loose: one @, no whitespace, a dot in the domain
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Separators people type into phone fields
_PHONE_SEPARATORS_RE = re.compile(r"[\s\-\.\(\)]")
_PHONE_RE = re.compile(r"^\+?\d+$")


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number for exact matching.

    Strips separators (spaces, dashes, dots, parentheses) and keeps a
    leading + if present. No country-code inference is done: "1234567890"
    and "+11234567890" stay distinct.

    Args:
        raw: Raw phone number as submitted

    Returns:
        Normalized phone, or None if empty or not a phone number

    Examples:
        >>> normalize_phone("(901) 229-5017")
        '9012295017'
        >>> normalize_phone("+1 901 229 5017")
        '+19012295017'
        >>> normalize_phone("123456")
        '123456'
        >>> normalize_phone("call me") is None
        True
    """
    if not raw:
        return None

    cleaned = _PHONE_SEPARATORS_RE.sub("", raw.strip())
    if not cleaned or not _PHONE_RE.match(cleaned):
        return None
    return cleaned


def normalize_email(raw: Optional[str], lowercase: bool = True) -> Optional[str]:
    """
    Normalize an email address for exact matching.

    Args:
        raw: Raw email as submitted
        lowercase: Fold case (default True)

    Returns:
        Stripped (and lowercased) email, or None if empty
    """
    if not raw:
        return None
    email = raw.strip()
    if not email:
        return None
    return email.lower() if lowercase else email


def is_valid_email(email: Optional[str]) -> bool:
    """Check if a string looks like an email address."""
    if not email:
        return False
    return bool(_EMAIL_RE.match(email))


def normalize_identifiers(
    email: Optional[str],
    phone_number: Optional[str],
    lowercase_emails: bool = True,
) -> tuple[Optional[str], Optional[str]]:
    """
    Normalize and validate a submitted (email, phone) pair.

    Empty strings count as absent.

    Raises:
        InvalidInputError: if a value is malformed or both are absent
    """
    normalized_email = normalize_email(email, lowercase=lowercase_emails)
    if normalized_email is not None and not is_valid_email(normalized_email):
        raise InvalidInputError("Invalid email format")

    normalized_phone = None
    if phone_number is not None and phone_number.strip():
        normalized_phone = normalize_phone(phone_number)
        if normalized_phone is None:
            raise InvalidInputError("Invalid phone number format")

    if normalized_email is None and normalized_phone is None:
        raise InvalidInputError("At least one of email or phoneNumber must be provided")

    return normalized_email, normalized_phone
