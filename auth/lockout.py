"""
auth/lockout.py -- Account lockout policy.

Two states per user, derived from the stored lock_until timestamp:

  Unlocked  lock_until is NULL or in the past
  Locked    lock_until is in the future

A failed password check for an existing account increments login_attempts;
reaching the threshold (5 by default) moves the account to Locked for
lockout_seconds (2 hours by default). Locked -> Unlocked happens on its own
once the clock passes lock_until; an admin may also reset the counters. A
successful login resets the counters and clears the lock.

The functions here are pure: they read a User and a clock and return a
decision. The store applies the resulting writes atomically (see
UserStore.record_failed_login).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.models import User
from core.config import get_settings


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse(stamp: str) -> datetime | None:
    try:
        moment = datetime.fromisoformat(stamp)
    except (TypeError, ValueError):
        return None
    # Naive timestamps are UTC.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def threshold() -> int:
    return get_settings().lockout_threshold


def is_locked(user: User, now: datetime | None = None) -> bool:
    """Return True while the account's lockout window is still open.

    An unparsable lock_until is treated as unlocked.
    """
    if not user.lock_until:
        return False
    until = _parse(user.lock_until)
    if until is None:
        return False
    return until > (now or _utcnow())


def lock_expiry(now: datetime | None = None) -> datetime:
    """When a lock triggered at `now` ends."""
    return (now or _utcnow()) + timedelta(seconds=get_settings().lockout_seconds)


def remaining_attempts(user: User) -> int:
    """Failures still allowed before the next lock. Never negative."""
    return max(threshold() - user.login_attempts, 0)
