"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials arrive as an "Authorization: Bearer <token>" header. The three
outcomes are kept apart on purpose:

  no header / not a Bearer header  -> 401 Unauthorized
  token present but fails decode   -> 403 TokenInvalid (bad signature, expired)
  account gone, renamed or blocked -> 403 TokenInvalid
  verified but not permitted       -> 403 Forbidden (from auth/guard.py)

try_get_claims() is the soft variant (returns None on failure).
get_claims() raises on missing/invalid credentials.
require_admin() adds the admin-role check.
enforce() turns any guard Decision into the matching AuthError.

Layer rule: no imports from api/, ads/, or client/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthError, Conflict, Forbidden, TokenInvalid, Unauthorized
from auth.guard import Action, Decision, authorize
from auth.models import Claims
from auth.store import UserStore
from auth.tokens import decode_token

_DENIAL_ERRORS: dict[str, type[AuthError]] = {
    "unauthorized": Unauthorized,
    "forbidden": Forbidden,
    "user_has_ads": Conflict,
    "self_deletion": Forbidden,
}


def bearer_token(request: Request) -> str | None:
    """Return the raw bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _live_claims(request: Request, claims: Claims | None) -> Claims | None:
    """Return claims only while the account they name still exists and may act.

    A deleted, banned or deactivated account keeps a signature-valid token
    until exp, so the account row is re-read and its username must match.
    """
    if claims is None:
        return None
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None or user.username != claims.username or user.is_banned or not user.is_active:
        return None
    return claims


def try_get_claims(request: Request) -> Claims | None:
    """Return verified claims, or None when absent, invalid or stale. Never raises."""
    return _live_claims(request, decode_token(bearer_token(request)))


def get_claims(request: Request) -> Claims:
    """Require a valid access token for an account that can still act.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_claims)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise Unauthorized()
    claims = _live_claims(request, decode_token(token))
    if claims is None:
        raise TokenInvalid()
    return claims


def require_admin(request: Request) -> Claims:
    """Require a valid access token carrying the admin role."""
    claims = get_claims(request)
    enforce(authorize(claims, Action.ADMIN))
    return claims


def enforce(decision: Decision) -> None:
    """Raise the AuthError matching a Deny decision; return silently on Allow."""
    if decision.allowed:
        return
    error_cls = _DENIAL_ERRORS.get(decision.code, Forbidden)
    raise error_cls(decision.message, code=decision.code)
