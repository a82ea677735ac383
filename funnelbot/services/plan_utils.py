"""Plan helpers shared by the subscription ledger and bot registration."""

import math
from datetime import datetime, timezone
from typing import Optional

PLAN_LEVELS = {
    "none": 0,
    "standard": 1,
    "business": 2,
    "enterprise": 3,
}

PLAN_SLOT_LIMITS = {
    "none": 0,
    "standard": 1,
    "business": 2,
    "enterprise": 4,
}

# sentinel for a subscription without an expiry date
NO_EXPIRATION_DAYS = -999


def _plan_value(plan_name) -> str:
    if plan_name is None:
        return "none"
    return getattr(plan_name, "value", plan_name)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_plan_level(plan_name=None) -> int:
    return PLAN_LEVELS.get(_plan_value(plan_name), 0)


def extra_slot_count(subscription) -> int:
    return sum(slot.count or 0 for slot in (subscription.extra_slots or []))


def slot_capacity(subscription) -> int:
    return PLAN_SLOT_LIMITS.get(_plan_value(subscription.plan_name), 0) + extra_slot_count(subscription)


def has_available_slots(subscription, used_slots: int) -> bool:
    """Base slots for the plan plus purchased extras must exceed what is in use."""
    return used_slots < slot_capacity(subscription)


def is_plan_active(subscription, now: Optional[datetime] = None) -> bool:
    expires_at = _as_aware(subscription.expires_at)
    if not expires_at:
        return False
    return expires_at > (now or datetime.now(timezone.utc))


def is_plan_expired(subscription, now: Optional[datetime] = None) -> bool:
    expires_at = _as_aware(subscription.expires_at)
    if not expires_at:
        return True
    return expires_at <= (now or datetime.now(timezone.utc))


def get_days_until_expiration(subscription, now: Optional[datetime] = None) -> int:
    """Whole days left, rounded up. Negative once expired."""
    expires_at = _as_aware(subscription.expires_at)
    if not expires_at:
        return NO_EXPIRATION_DAYS
    diff = expires_at - (now or datetime.now(timezone.utc))
    return math.ceil(diff.total_seconds() / 86400)


def will_expire_soon(subscription, days_before: int = 7, now: Optional[datetime] = None) -> bool:
    days_remaining = get_days_until_expiration(subscription, now)
    return 0 < days_remaining <= days_before
