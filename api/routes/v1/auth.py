"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/register        -- self-service signup; returns tokens
  POST   /api/v1/auth/login           -- password login; returns tokens
  POST   /api/v1/auth/refresh         -- exchange a refresh token for an access token
  GET    /api/v1/auth/profile         -- current user's profile (requires auth)
  GET    /api/v1/auth/my-ads          -- current user's ads (requires auth)
  GET    /api/v1/auth/dashboard       -- current user's ad statistics (requires auth)
  GET    /api/v1/auth/users           -- list all users (admin only)
  PATCH  /api/v1/auth/users/{id}      -- moderate: active/banned/role/unlock (admin only)
  DELETE /api/v1/auth/users/{id}      -- delete a user without ads (admin only)

Security:
  [H2] /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT,
       REGISTER_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization and the lockout
       check -- use it, never inline the lookup + verify.
  [M5] Cache-Control: no-store on every response that carries a token.
  Register never honours a client-supplied role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from ads.store import AdStore
from api.limiter import limiter
from api.models import (
    AdResponse,
    AdStatsResponse,
    AuthResponse,
    DashboardResponse,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserAdminRow,
    UserPatch,
    UserProfile,
)
from auth import lockout
from auth.dependencies import enforce, get_claims, require_admin
from auth.errors import Conflict, InvalidCredentials
from auth.guard import Action, UserRef, authorize
from auth.models import Claims, Role, User
from auth.store import UserStore
from auth.tokens import (
    REFRESH,
    authenticate_user,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
)
from core.config import get_settings

logger = logging.getLogger("amlak.api.auth")

_settings = get_settings()

# Auth policy:
# - POST   /auth/register, /auth/login, /auth/refresh: public
# - GET    /auth/profile, /auth/my-ads, /auth/dashboard: requires auth (get_claims)
# - GET    /auth/users, PATCH/DELETE /auth/users/{id}:  requires admin (require_admin)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a "user"-role account and log it in.

    Username and phone are checked up front so the caller learns which field
    collides. IntegrityError still maps to 409 for the concurrent-insert race.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.get_by_username(body.username) is not None:
        raise Conflict("This username is already taken.", code="username_taken")
    if user_store.get_by_phone(body.phone) is not None:
        raise Conflict("This phone number is already registered.", code="phone_taken")

    new_user = User(
        username=body.username,
        name=body.name,
        phone=body.phone,
        email=body.email,
        hashed_password=hash_password(body.password),
        role=Role.user,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise Conflict("Username or phone number is already registered.") from exc

    created = user_store.get_by_id(user_id)
    logger.info("Registered user id=%s", user_id)
    return _auth_response(created, "Registration successful.", status_code=201)


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    401 bad_credentials for an unknown username or wrong password (same
    message for both), 423 account_locked while the lockout window is open,
    403 account_disabled for banned or inactive accounts.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    return _auth_response(user, "Login successful.")


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Issue a fresh access token for a valid refresh token.

    The account is re-read so a ban, deactivation, lock or role change since
    the refresh token was issued takes effect here.
    """
    user_store: UserStore = request.app.state.user_store
    claims = decode_token(body.refresh_token, expected_type=REFRESH)
    user = user_store.get_by_id(claims.user_id) if claims is not None else None
    if (
        user is None
        or user.username != claims.username
        or user.is_banned
        or not user.is_active
        or lockout.is_locked(user)
    ):
        raise InvalidCredentials("Refresh token is invalid or the account can no longer sign in.", code="invalid_refresh")

    token = create_access_token(user.id, user.username, user.role)
    resp = JSONResponse(
        content=TokenResponse(access_token=token, expires_in=_settings.token_expire_seconds).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/profile", response_model=ProfileResponse)
def profile(request: Request, claims: Claims = Depends(get_claims)) -> ProfileResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None:
        raise _not_found("User not found.")
    return ProfileResponse(**user.public_profile(), last_login=user.last_login, created_at=user.created_at)


@router.get("/auth/my-ads", response_model=list[AdResponse])
def my_ads(request: Request, claims: Claims = Depends(get_claims)) -> list[AdResponse]:
    ad_store: AdStore = request.app.state.ad_store
    return [AdResponse.from_ad(ad) for ad in ad_store.list_by_owner(claims.user_id)]


@router.get("/auth/dashboard", response_model=DashboardResponse)
def dashboard(request: Request, claims: Claims = Depends(get_claims)) -> DashboardResponse:
    """Per-user statistics over the caller's ads plus the five newest."""
    ad_store: AdStore = request.app.state.ad_store
    stats = AdStatsResponse.from_stats(ad_store.get_stats(user_id=claims.user_id))
    recent = ad_store.list_by_owner(claims.user_id)[:5]
    return DashboardResponse(**stats.model_dump(), recent_ads=[AdResponse.from_ad(ad) for ad in recent])


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserAdminRow])
def list_users(request: Request, claims: Claims = Depends(require_admin)) -> list[UserAdminRow]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_admin_row(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserAdminRow)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    claims: Claims = Depends(require_admin),
) -> UserAdminRow:
    """Moderate an account. Admin only.

    Admins cannot ban, deactivate or demote themselves -- with a single
    admin that would leave nobody able to undo it.
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _not_found("User not found.")

    updates: dict = {}
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if body.is_banned is not None:
        updates["is_banned"] = body.is_banned
    if body.role is not None:
        updates["role"] = Role(body.role.value)

    if not updates and not body.unlock:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    if target.id == claims.user_id and (
        updates.get("is_active") is False or updates.get("is_banned") is True or updates.get("role") is Role.user
    ):
        raise HTTPException(
            status_code=400,
            detail={"code": "self_moderation", "message": "You cannot disable or demote your own account."},
        )

    if updates:
        user_store.update_user(user_id, **updates)
    if body.unlock:
        user_store.reset_lockout(user_id)
    logger.info("Admin id=%s updated user id=%s fields=%s unlock=%s", claims.user_id, user_id, sorted(updates), body.unlock)

    return _user_to_admin_row(user_store.get_by_id(user_id))


@router.delete("/auth/users/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: int, claims: Claims = Depends(require_admin)) -> MessageResponse:
    """Delete an account. Refused (409) while the user still owns ads."""
    user_store: UserStore = request.app.state.user_store
    ad_store: AdStore = request.app.state.ad_store

    if user_store.get_by_id(user_id) is None:
        raise _not_found("User not found.")

    enforce(authorize(claims, Action.DELETE_USER, UserRef(user_id=user_id, owned_ads=ad_store.count_by_owner(user_id))))

    user_store.delete_user(user_id)
    logger.info("Admin id=%s deleted user id=%s", claims.user_id, user_id)
    return MessageResponse(message="User deleted.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _auth_response(user: User | None, message: str, status_code: int = 200) -> JSONResponse:
    if user is None:
        raise RuntimeError("User not found after write.")
    body = AuthResponse(
        message=message,
        access_token=create_access_token(user.id, user.username, user.role),
        refresh_token=create_refresh_token(user.id, user.username, user.role),
        token_type="bearer",  # noqa: S106 # nosec B106 -- auth scheme name, not a password
        expires_in=_settings.token_expire_seconds,
        user=UserProfile.from_user(user),
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": message})


def _user_to_admin_row(user: User | None) -> UserAdminRow:
    if user is None:
        raise RuntimeError("User not found after write.")
    return UserAdminRow(
        id=user.id,
        name=user.name,
        username=user.username,
        phone=user.phone,
        email=user.email,
        role=user.role.value,
        is_active=user.is_active,
        is_banned=user.is_banned,
        is_locked=lockout.is_locked(user),
        login_attempts=user.login_attempts,
        last_login=user.last_login,
        created_at=user.created_at or "",
    )
