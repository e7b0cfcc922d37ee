"""Custom validators and types."""

import re
from typing import Annotated

from pydantic import AfterValidator, Field

# International phone number: optional "+" and 7-15 digits
# Allows optional spaces/dashes/parentheses
PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")

# Academic session such as 2024/2025
SESSION_PATTERN = re.compile(r"^(\d{4})/(\d{4})$")


def validate_phone_number(value: str) -> str:
    """
    Validate and normalize a phone number.

    Accepts formats:
    - +2348012345678
    - +234 801 234 5678
    - +234-801-234-5678
    - 08012345678

    Returns the number with separators removed.
    """
    normalized = re.sub(r"[\s\-\(\)]", "", value)

    if not PHONE_PATTERN.match(normalized):
        raise ValueError(
            "Invalid phone number. Use digits with an optional leading + (e.g., +234 801 234 5678)"
        )

    return normalized


def validate_session(value: str) -> str:
    """Check an academic session is two consecutive years, e.g. 2024/2025."""
    value = value.strip()
    match = SESSION_PATTERN.match(value)
    if not match:
        raise ValueError("Session must look like 2024/2025")
    start, end = (int(part) for part in match.groups())
    if end != start + 1:
        raise ValueError("Session years must be consecutive")
    return value


def normalize_admission_number(value: str) -> str:
    """Admission numbers are stored and matched upper-case."""
    value = value.strip().upper()
    if not value:
        raise ValueError("Admission number is required")
    return value


# Annotated type for phone number validation
PhoneNumber = Annotated[
    str,
    Field(min_length=7, max_length=20),
    AfterValidator(validate_phone_number),
]

AcademicSession = Annotated[str, Field(max_length=20), AfterValidator(validate_session)]

AdmissionNumber = Annotated[
    str,
    Field(min_length=1, max_length=50),
    AfterValidator(normalize_admission_number),
]
