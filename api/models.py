"""
API request and response models for the Amlak REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
ads/models.py, which own the internal domain representation. Route handlers
map between the two.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ads.models import Ad, AdStats
from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^09\d{9}$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"

# bcrypt reads only the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class PropertyTypeEnum(str, Enum):
    apartment = "apartment"
    villa = "villa"
    office = "office"
    shop = "shop"
    land = "land"


class AdStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"password must be at most {_BCRYPT_MAX_BYTES} bytes")
    return value


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    There is no role field: self-registered accounts are always "user".
    extra="ignore" drops a client-supplied role instead of rejecting the call.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(min_length=1, max_length=50)
    phone: str = Field(pattern=PHONE_PATTERN)
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=6)
    email: Optional[str] = Field(default=None, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(min_length=1, max_length=30)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{id}. Admin only.

    unlock=true clears failed-attempt counters and any active lock.
    """

    is_active: Optional[bool] = None
    is_banned: Optional[bool] = None
    role: Optional[RoleEnum] = None
    unlock: bool = False


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Public profile -- what the client caches. Never carries the hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    username: str
    phone: str
    email: Optional[str] = None
    role: RoleEnum

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(**user.public_profile())


class ProfileResponse(UserProfile):
    """GET /api/v1/auth/profile -- public profile plus activity stamps."""

    last_login: Optional[str] = None
    created_at: Optional[str] = None


class AuthResponse(BaseModel):
    """Successful login or registration."""

    model_config = ConfigDict(frozen=True)

    message: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserProfile


class TokenResponse(BaseModel):
    """POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserAdminRow(BaseModel):
    """One row in the admin user list."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    username: str
    phone: str
    email: Optional[str] = None
    role: RoleEnum
    is_active: bool
    is_banned: bool
    is_locked: bool
    login_attempts: int
    last_login: Optional[str] = None
    created_at: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Ads -- requests
# ---------------------------------------------------------------------------


class AdCreate(BaseModel):
    """Request body for POST /api/v1/ads."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    address: str = Field(min_length=1, max_length=500)
    province: str = Field(min_length=1, max_length=100)
    city: str = Field(min_length=1, max_length=100)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    phone: str = Field(min_length=1, max_length=15)
    user_notes: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    area: Optional[float] = Field(default=None, ge=0)
    rooms: Optional[int] = Field(default=None, ge=0)
    property_type: PropertyTypeEnum = PropertyTypeEnum.apartment
    images: list[str] = Field(default_factory=list, max_length=10)


class AdUpdate(BaseModel):
    """Request body for PUT /api/v1/ads/{id}. Omitted fields keep their value."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    province: Optional[str] = Field(default=None, min_length=1, max_length=100)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    phone: Optional[str] = Field(default=None, min_length=1, max_length=15)
    user_notes: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    area: Optional[float] = Field(default=None, ge=0)
    rooms: Optional[int] = Field(default=None, ge=0)
    property_type: Optional[PropertyTypeEnum] = None
    images: Optional[list[str]] = Field(default=None, max_length=10)


class AdStatusUpdate(BaseModel):
    status: AdStatusEnum
    admin_notes: Optional[str] = None


class AdRating(BaseModel):
    stars: int = Field(ge=1, le=5)


# ---------------------------------------------------------------------------
# Ads -- responses
# ---------------------------------------------------------------------------


class AdResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: str
    address: str
    province: str
    city: str
    lat: float
    lng: float
    images: list[str]
    phone: str
    user_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    price: Optional[float] = None
    area: Optional[float] = None
    rooms: Optional[int] = None
    property_type: str
    status: str
    stars: int
    view_count: int
    click_count: int
    user_id: Optional[int] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_ad(cls, ad: Ad, include_admin_notes: bool = True) -> "AdResponse":
        """Build the response from a domain Ad.

        Public catalog views pass include_admin_notes=False: moderation notes
        are for the owner and admins only.
        """
        return cls(
            id=ad.id,
            title=ad.title,
            description=ad.description,
            address=ad.address,
            province=ad.province,
            city=ad.city,
            lat=ad.lat,
            lng=ad.lng,
            images=ad.images,
            phone=ad.phone,
            user_notes=ad.user_notes,
            admin_notes=ad.admin_notes if include_admin_notes else None,
            price=ad.price,
            area=ad.area,
            rooms=ad.rooms,
            property_type=ad.property_type,
            status=ad.status,
            stars=ad.stars,
            view_count=ad.view_count,
            click_count=ad.click_count,
            user_id=ad.user_id,
            created_at=ad.created_at,
            updated_at=ad.updated_at,
        )


class AdListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ads: list[AdResponse]
    page: int
    limit: int


class AdStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_ads: int
    approved_ads: int
    pending_ads: int
    rejected_ads: int
    total_views: int
    total_clicks: int

    @classmethod
    def from_stats(cls, stats: AdStats) -> "AdStatsResponse":
        return cls(
            total_ads=stats.total,
            approved_ads=stats.approved,
            pending_ads=stats.pending,
            rejected_ads=stats.rejected,
            total_views=stats.total_views,
            total_clicks=stats.total_clicks,
        )


class DashboardResponse(AdStatsResponse):
    """GET /api/v1/auth/dashboard -- the caller's own ad statistics."""

    recent_ads: list[AdResponse] = Field(default_factory=list)
