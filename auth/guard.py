"""
auth/guard.py -- Authorization decisions.

authorize(claims, action, resource) answers allow/deny for every privileged
operation in the API. It only reads: no store access, no mutation. Callers
fetch whatever the rule needs (the ad's owner, the target user's ad count)
and pass it in as a resource reference.

Rules:
  any action       Deny "unauthorized" when claims are absent.
  ADMIN            Deny "forbidden" unless the role is admin.
  MUTATE_AD        Allow the ad's owner or an admin.
  DELETE_USER      Admin only; Deny "user_has_ads" while the target owns ads.

Role comes from the verified token, not from the database -- see the
staleness note in auth/tokens.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.models import Claims, Role


class Action(str, Enum):
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"
    MUTATE_AD = "mutate_ad"
    DELETE_USER = "delete_user"


@dataclass(frozen=True)
class AdRef:
    """The one fact about an ad the guard needs: who created it."""

    owner_id: int | None


@dataclass(frozen=True)
class UserRef:
    user_id: int
    owned_ads: int = 0


@dataclass(frozen=True)
class Decision:
    allowed: bool
    code: str = ""
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def deny(code: str, message: str) -> Decision:
    return Decision(allowed=False, code=code, message=message)


_NOT_AUTHENTICATED = deny("unauthorized", "Authentication required.")
_NOT_ADMIN = deny("forbidden", "Admin access required.")


def authorize(claims: Claims | None, action: Action, resource: AdRef | UserRef | None = None) -> Decision:
    """Decide whether the holder of `claims` may perform `action` on `resource`."""
    if claims is None:
        return _NOT_AUTHENTICATED

    if action is Action.AUTHENTICATED:
        return ALLOW

    if action is Action.ADMIN:
        return ALLOW if claims.role is Role.admin else _NOT_ADMIN

    if action is Action.MUTATE_AD:
        if not isinstance(resource, AdRef):
            raise TypeError("MUTATE_AD requires an AdRef resource")
        if claims.role is Role.admin:
            return ALLOW
        if resource.owner_id is not None and resource.owner_id == claims.user_id:
            return ALLOW
        return deny("forbidden", "You are not allowed to modify this ad.")

    if action is Action.DELETE_USER:
        if not isinstance(resource, UserRef):
            raise TypeError("DELETE_USER requires a UserRef resource")
        if claims.role is not Role.admin:
            return _NOT_ADMIN
        if resource.user_id == claims.user_id:
            return deny("self_deletion", "You cannot delete your own account.")
        if resource.owned_ads > 0:
            return deny("user_has_ads", "A user who still owns ads cannot be deleted.")
        return ALLOW

    raise ValueError(f"Unknown action: {action!r}")
