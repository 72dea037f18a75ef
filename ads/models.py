"""
ads/models.py -- Domain dataclasses for property listings.

Pure data containers with zero logic. Moderation state transitions and
statistics live in ads/store.py; who may change an ad is decided by
auth/guard.py.

Separation of concerns: these dataclasses are the catalog's domain truth, just
as auth/models.py is the identity layer's. Neither layer imports the other.
"""

from dataclasses import dataclass, field
from typing import Optional

PROPERTY_TYPES = ("apartment", "villa", "office", "shop", "land")
AD_STATUSES = ("pending", "approved", "rejected")


@dataclass
class Ad:
    """A property listing.

    user_id is the owner -- the account that created the ad. New ads start
    as "pending" and only appear in the public catalog once an admin sets
    them to "approved".

    images holds already-uploaded image URLs; file storage is handled outside
    this service.

    id is None before the record is written to the database.
    """

    title: str
    description: str
    address: str
    province: str
    city: str
    lat: float
    lng: float
    phone: str
    user_id: Optional[int] = None
    images: list[str] = field(default_factory=list)
    user_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    price: Optional[float] = None
    area: Optional[float] = None
    rooms: Optional[int] = None
    property_type: str = "apartment"  # see PROPERTY_TYPES
    status: str = "pending"  # see AD_STATUSES
    stars: int = 0
    view_count: int = 0
    click_count: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class AdStats:
    """Counts over a set of ads -- the admin stats view and the user dashboard."""

    total: int = 0
    approved: int = 0
    pending: int = 0
    rejected: int = 0
    total_views: int = 0
    total_clicks: int = 0
