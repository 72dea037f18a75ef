"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in ads/models.py -- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/, ads/, core/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """The two roles an account can hold. Carried inside every token."""

    user = "user"
    admin = "admin"


@dataclass
class User:
    """A registered account.

    hashed_password is the bcrypt digest and must never leave the server.
    lock_until / last_login / created_at are ISO 8601 UTC strings written by
    the store. is_active and is_banned are independent flags; either one
    blocks login.
    """

    username: str
    name: str
    phone: str
    id: int | None = None
    email: str | None = None
    hashed_password: str | None = None
    role: Role = Role.user
    is_active: bool = True
    is_banned: bool = False
    login_attempts: int = 0
    lock_until: str | None = None
    last_login: str | None = None
    created_at: str | None = None

    def public_profile(self) -> dict:
        """Profile fields safe to hand to a client."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "phone": self.phone,
            "email": self.email,
            "role": self.role.value,
        }


@dataclass(frozen=True)
class Claims:
    """The verified payload of a token.

    issued_at / expires_at are POSIX seconds, exactly as carried in the JWT.
    token_type separates short-lived access tokens from refresh tokens so one
    can never be replayed as the other.
    """

    user_id: int
    username: str
    role: Role
    issued_at: int
    expires_at: int
    token_type: str = "access"

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin
