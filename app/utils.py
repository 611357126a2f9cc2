"""
Utility functions shared by the submission handler and the worker.
"""

import re
import uuid
from datetime import datetime, timezone

# International format: leading +, no leading zero, up to 15 digits
PHONE_NUMBER_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def generate_correlation_id() -> str:
    """Return a fresh 128-bit random correlation id."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """
    Current time as a naive UTC datetime.

    Stored timestamps are naive UTC so that SQLite and Postgres compare them
    the same way.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_valid_phone_number(value: str) -> bool:
    return bool(value) and PHONE_NUMBER_PATTERN.match(value) is not None
