"""
auth/tokens.py -- JWT issuance/verification, password hashing, and the login flow.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, username, role, issue time, expiry and a token type
       ("access" or "refresh"). Expiry is always server-chosen. Verification
       returns None on any failure -- the dependency layer turns that into
       a 403 (or 401 on the refresh endpoint).

       Expiry is checked here rather than by jose: jose accepts a token at
       exactly exp, and a token must be dead from its expiry instant on.

       Role travels inside the token so privileged requests need no DB round
       trip. The price is staleness: a role change applies on next login or
       when the token expires.

  Passwords: bcrypt with a per-hash random salt and a work factor of 12
       (BCRYPT_ROUNDS). The _DUMMY_HASH constant enables timing equalization
       in authenticate_user() so response time does not reveal whether a
       username exists [C1].

  Lockout: checked BEFORE the password, so a locked account never reveals
       whether the submitted password was right. See auth/lockout.py.

Layer rule: no imports from api/, ads/, or client/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth import lockout
from auth.errors import AccountDisabled, AccountLocked, InvalidCredentials
from auth.models import Claims, Role, User
from core.config import get_settings

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("amlak.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; the API layer rejects longer
    passwords so no input is silently truncated.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed or empty digest yields False instead of an exception.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError, AttributeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("amlak_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(user_id: int, username: str, role: Role | str, token_type: str, duration: int, now: datetime | None) -> str:
    issued = int((now or datetime.now(timezone.utc)).timestamp())
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": Role(role).value,
        "type": token_type,
        "iat": issued,
        "exp": issued + duration,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_access_token(
    user_id: int,
    username: str,
    role: Role | str,
    expire_seconds: int = 0,
    now: datetime | None = None,
) -> str:
    """Encode a signed access token.

    Args:
        user_id:        Numeric user ID stored in the DB.
        username:       Username stored as the JWT subject claim.
        role:           "user" or "admin".
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (7 days).
        now:            Issue time; defaults to the current UTC time.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    return _encode(user_id, username, role, ACCESS, duration, now)


def create_refresh_token(user_id: int, username: str, role: Role | str, now: datetime | None = None) -> str:
    """Encode a refresh token. Only POST /auth/refresh accepts it."""
    return _encode(user_id, username, role, REFRESH, _settings.refresh_token_expire_seconds, now)


def decode_token(token: str | None, expected_type: str = ACCESS, now: datetime | None = None) -> Claims | None:
    """Verify a token and return its Claims, or None on any failure.

    Failure covers: bad signature, other algorithm, unparsable payload,
    missing or mistyped claims, unknown role, wrong token type, and
    now >= exp. Never raises.
    """
    if not isinstance(token, str) or not token:
        return None
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None

    try:
        claims = Claims(
            user_id=int(payload["user_id"]),
            username=str(payload["sub"]),
            role=Role(payload["role"]),
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
            token_type=str(payload["type"]),
        )
    except (KeyError, TypeError, ValueError):
        return None

    if claims.token_type != expected_type:
        return None
    current = (now or datetime.now(timezone.utc)).timestamp()
    if current >= claims.expires_at:
        return None
    return claims


# ---------------------------------------------------------------------------
# User authentication
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str, now: datetime | None = None) -> User:
    """Run the password login flow and return the authenticated User.

    Order matters:
      1. Unknown username: bcrypt still runs against _DUMMY_HASH [C1], no
         lockout state is created, InvalidCredentials.
      2. Locked: AccountLocked, before the password is looked at.
      3. Banned or inactive: AccountDisabled.
      4. Wrong password: one atomic failure increment (may lock),
         InvalidCredentials.
      5. Success: atomic reset + last_login stamp.

    Raises:
        InvalidCredentials, AccountLocked, AccountDisabled
    """
    now = now or datetime.now(timezone.utc)
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        raise InvalidCredentials()

    if lockout.is_locked(user, now):
        logger.info("Login refused for locked account id=%s", user.id)
        raise AccountLocked()

    if user.is_banned:
        raise AccountDisabled("Your account has been banned.")
    if not user.is_active:
        raise AccountDisabled("Your account is inactive.")

    if not verify_password(password, user.hashed_password):
        updated = store.record_failed_login(user.id, lockout.threshold(), lockout.lock_expiry(now))
        if updated is not None and lockout.is_locked(updated, now):
            logger.warning(
                "Account id=%s locked after %d failed login attempts",
                user.id,
                updated.login_attempts,
            )
        raise InvalidCredentials()

    store.record_successful_login(user.id, now)
    return store.get_by_id(user.id) or user
