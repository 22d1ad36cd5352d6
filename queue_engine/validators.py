"""
Input rules for turn fields.

The API request models apply the full format rules before a call reaches
the engine. The engine itself only normalizes the mobile number and
re-checks service type membership.
"""

import re

from database.models import ServiceType
from queue_engine.errors import ValidationError

CUSTOMER_NAME_MIN_LENGTH = 2
CUSTOMER_NAME_MAX_LENGTH = 50
MOBILE_MIN_LENGTH = 8
MOBILE_MAX_LENGTH = 15
NOTES_MAX_LENGTH = 500

MOBILE_PATTERN = re.compile(r"^[0-9+\-\s()]+$")


def normalize_mobile(mobile_number: str) -> str:
    """Mobile numbers are compared exactly as entered, minus surrounding whitespace."""
    return mobile_number.strip()


def is_valid_mobile(mobile_number: str) -> bool:
    value = normalize_mobile(mobile_number)
    return (
        MOBILE_MIN_LENGTH <= len(value) <= MOBILE_MAX_LENGTH
        and MOBILE_PATTERN.match(value) is not None
    )


def parse_service_type(value: ServiceType | str) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    try:
        return ServiceType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown service type: {value!r}",
            field="service_type",
            allowed=[s.value for s in ServiceType],
        ) from None
