from __future__ import annotations

import re
from typing import Any, Iterable

from .errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")
PHONE_NOISE_RE = re.compile(r"[\s\-\(\)]")

MAX_EMAIL_LENGTH = 255
MAX_LINE_QUANTITY = 999

# field -> (min length, max length, required)
ADDRESS_RULES = {
    "first_name": (2, 50, True),
    "last_name": (2, 50, True),
    "company": (0, 100, False),
    "address_line_1": (3, 100, True),
    "address_line_2": (0, 100, False),
    "city": (2, 50, True),
    "state": (2, 50, True),
    "postal_code": (3, 20, True),
    "country": (2, 50, True),
}


def clean_str(value: Any, field: str) -> str | None:
    """Strip strings; None and blank become None. Non-strings are rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    stripped = value.strip()
    return stripped or None


def require_length(value: Any, field: str, min_len: int, max_len: int, *, required: bool = True) -> str | None:
    cleaned = clean_str(value, field)
    if cleaned is None:
        if required:
            raise ValidationError(field, "is required")
        return None
    if len(cleaned) < min_len or len(cleaned) > max_len:
        raise ValidationError(field, f"must be between {min_len} and {max_len} characters")
    return cleaned


def validate_email(value: Any, field: str = "email") -> str:
    cleaned = clean_str(value, field)
    if cleaned is None:
        raise ValidationError(field, "is required")
    if len(cleaned) > MAX_EMAIL_LENGTH or not EMAIL_RE.match(cleaned):
        raise ValidationError(field, "must be a valid email address")
    return cleaned.lower()


def normalize_phone(value: Any, field: str = "phone") -> str | None:
    """Optional phone: spaces, dashes and parentheses are ignored; 7-15 digits with optional +."""
    cleaned = clean_str(value, field)
    if cleaned is None:
        return None
    compact = PHONE_NOISE_RE.sub("", cleaned)
    if not PHONE_RE.match(compact):
        raise ValidationError(field, "must be a valid phone number")
    return compact


def parse_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer parsing: bools, floats, decimals and scientific notation
    are rejected; plain digit strings are accepted.
    """
    if isinstance(value, bool):
        raise ValidationError(field, "must be an integer")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(field, "must be an integer")
        parsed = int(stripped)
    else:
        raise ValidationError(field, "must be an integer")

    if minimum is not None and parsed < minimum:
        raise ValidationError(field, f"must be >= {minimum}")
    if maximum is not None and parsed > maximum:
        raise ValidationError(field, f"must be <= {maximum}")
    return parsed


def validate_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    cleaned = clean_str(value, field)
    if cleaned is None:
        raise ValidationError(field, "is required")
    if cleaned not in choices:
        raise ValidationError(field, f"must be one of {', '.join(choices)}")
    return cleaned


def validate_address_fields(values: dict, prefix: str) -> dict:
    """Validate every address sub-field; errors name the field as e.g. billing_address.city."""
    cleaned = {}
    for name, (min_len, max_len, required) in ADDRESS_RULES.items():
        cleaned[name] = require_length(
            values.get(name),
            f"{prefix}.{name}",
            min_len,
            max_len,
            required=required,
        )
    return cleaned
