from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from oficina.config import settings

SECONDS_PER_DAY = 24 * 3600


class Plan(str, Enum):
    PREMIUM = 'PREMIUM'
    PRO_PLUS = 'PRO+'
    PRO = 'PRO'


CASHFLOW_PLANS = {Plan.PREMIUM, Plan.PRO_PLUS}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_since_signup(created_at: datetime, now: datetime | None = None) -> float:
    now = _aware(now or _now())
    return (now - _aware(created_at)).total_seconds() / SECONDS_PER_DAY


def get_active_plan(created_at: datetime | None, now: datetime | None = None) -> Plan:
    """Plan tier as a pure function of the workshop signup time.

    No subscription state is stored: a workshop without a signup time is on
    PRO, the first five days are PREMIUM, days six to thirteen PRO+, and PRO
    from then on.
    """
    if created_at is None:
        return Plan.PRO
    days = days_since_signup(created_at, now)
    if days <= 5:
        return Plan.PREMIUM
    if days <= 13:
        return Plan.PRO_PLUS
    return Plan.PRO


def trial_days_left(created_at: datetime | None, now: datetime | None = None, trial_days: int | None = None) -> int:
    if created_at is None:
        return 0
    window = settings.trial_days if trial_days is None else trial_days
    remaining = window - days_since_signup(created_at, now)
    return max(int(remaining) + (1 if remaining % 1 else 0), 0)


def can_see_cashflow(plan: Plan) -> bool:
    return plan in CASHFLOW_PLANS
