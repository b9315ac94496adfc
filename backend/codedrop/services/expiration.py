"""Retention classes and expiry computation."""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from codedrop.services.errors import InvalidExpirationClass


class ExpirationClass(str, Enum):
    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    ONE_WEEK = "7d"
    ONE_MONTH = "30d"
    NEVER = "never"


DEFAULT_EXPIRATION_CLASS = ExpirationClass.ONE_DAY

# "never" is a far-future timestamp so every activity check is a plain comparison
NEVER_EXPIRES_AT = datetime(2099, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

_OFFSETS = {
    ExpirationClass.ONE_HOUR: timedelta(hours=1),
    ExpirationClass.SIX_HOURS: timedelta(hours=6),
    ExpirationClass.ONE_DAY: timedelta(hours=24),
    ExpirationClass.ONE_WEEK: timedelta(days=7),
    ExpirationClass.ONE_MONTH: timedelta(days=30),
}


def parse_expiration_class(value: Optional[str]) -> ExpirationClass:
    """Validate a user-supplied retention class.

    A missing or empty value means the default (24h). Anything else that is
    not one of the known classes raises InvalidExpirationClass.
    """
    if value is None or value == "":
        return DEFAULT_EXPIRATION_CLASS
    try:
        return ExpirationClass(value)
    except ValueError:
        raise InvalidExpirationClass(f"Invalid expiration type: {value!r}") from None


def compute_expiry(expiration_class: ExpirationClass, now: datetime) -> datetime:
    """Absolute expiry for a record created at `now`."""
    if expiration_class is ExpirationClass.NEVER:
        return NEVER_EXPIRES_AT
    return now + _OFFSETS[expiration_class]
