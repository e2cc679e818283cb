# Overview: Pure derived-status calculations for subscriptions; no state, no I/O.

"""
Subscription Health Calculator

PURPOSE: Derive subscription urgency from raw dates, the same way everywhere.

HEALTH BUCKETS (by days remaining):
    Expired   days < 0
    Critical  0 <= days < 30
    Warning   30 <= days <= 60
    Healthy   days > 60

"Expiring soon" (0 < days <= 7) is a separate nudge, independent of the bucket.

RULES:
1. Every function takes `now` explicitly; nothing reads the clock.
2. Dates are treated as midnight UTC of that day.
3. Extensions anchor to max(expiry, today): a lapsed subscription is extended
   from today, an active one from its current end date.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..time_utils import as_naive_utc


CRITICAL_THRESHOLD_DAYS = 30
WARNING_THRESHOLD_DAYS = 60
EXPIRING_SOON_DAYS = 7

# Duration code -> calendar months
DURATION_MONTHS = {
    "6months": 6,
    "12months": 12,
}


class HealthBucket(str, enum.Enum):
    EXPIRED = "Expired"
    CRITICAL = "Critical"
    WARNING = "Warning"
    HEALTHY = "Healthy"


@dataclass(frozen=True)
class SubscriptionHealth:
    days_remaining: int
    bucket: HealthBucket
    expiring_soon: bool

    def to_dict(self) -> dict:
        return {
            "days_remaining": self.days_remaining,
            "bucket": self.bucket.value,
            "expiring_soon": self.expiring_soon,
        }


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_naive_utc(value)
    return datetime(value.year, value.month, value.day)


def days_remaining(expiry: date | datetime, now: date | datetime) -> int:
    """ceil((expiry - now) / 1 day)."""
    delta = _as_datetime(expiry) - _as_datetime(now)
    return math.ceil(delta / timedelta(days=1))


def health_bucket(days: int) -> HealthBucket:
    if days < 0:
        return HealthBucket.EXPIRED
    if days < CRITICAL_THRESHOLD_DAYS:
        return HealthBucket.CRITICAL
    if days <= WARNING_THRESHOLD_DAYS:
        return HealthBucket.WARNING
    return HealthBucket.HEALTHY


def is_expiring_soon(days: int) -> bool:
    return 0 < days <= EXPIRING_SOON_DAYS


def subscription_health(expiry: date | datetime, now: date | datetime) -> SubscriptionHealth:
    days = days_remaining(expiry, now)
    return SubscriptionHealth(
        days_remaining=days,
        bucket=health_bucket(days),
        expiring_soon=is_expiring_soon(days),
    )


def duration_delta(duration: str) -> relativedelta:
    """
    Convert a duration code into a calendar offset.

    Raises:
        ValueError: If the duration code is unknown
    """
    months = DURATION_MONTHS.get(duration)
    if months is None:
        raise ValueError(
            f"Invalid duration '{duration}'. Must be one of: {', '.join(DURATION_MONTHS)}"
        )
    return relativedelta(months=months)


def extension_end_date(expiry: date, now: date | datetime, duration: str) -> date:
    """newEndDate = max(expiry, today) + duration."""
    today = as_naive_utc(now).date() if isinstance(now, datetime) else now
    anchor = max(expiry, today)
    return anchor + duration_delta(duration)
